"""
Live end-to-end checks against the CDE download site.

Skipped unless CASCHOOLDATA_LIVE_TESTS=true; these download full
statewide files and take a while.
"""

import os

import pytest

from caschooldata.pipeline import fetch_enr
from caschooldata.utilities.cds_codes import AggregationLevel

LIVE_TESTS = os.getenv("CASCHOOLDATA_LIVE_TESTS", "false").lower() == "true"

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(not LIVE_TESTS, reason="CASCHOOLDATA_LIVE_TESTS not enabled"),
]


class TestLiveEnrollment:
    """One year per era, straight from the source."""

    @pytest.mark.parametrize("end_year", [1990, 2000, 2010, 2020, 2024])
    def test_single_state_total(self, end_year):
        """Every era yields exactly one state TOTAL/total row with percentage 1."""
        df = fetch_enr(end_year, use_cache=False)
        state = df[
            (df["agg_level"] == AggregationLevel.STATE.value)
            & (df["subgroup"] == "total")
            & (df["grade_level"] == "TOTAL")
            & (df["charter_status"] == "ALL")
        ]
        assert len(state) == 1
        assert state["n_students"].iloc[0] > 4_000_000
        assert state["pct"].iloc[0] == pytest.approx(1.0)
