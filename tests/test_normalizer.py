"""
Tests for the schema normalizer (era adapter + aggregate synthesis).
"""

import pytest

from caschooldata.exceptions import UnsupportedYearError
from caschooldata.processing.normalizer import SchemaNormalizer, normalize
from caschooldata.processing.quality import QualityReport, WarningCode
from caschooldata.processing.records import counts_by_level, wide_rows_to_frame
from caschooldata.processing.reporting_categories import get_code_map
from caschooldata.processing.suppression import SUPPRESSED, Completeness
from caschooldata.utilities.cds_codes import STATE_CDS_CODE, AggregationLevel, classify


def by_key(rows):
    return {(r.cds_code, r.reporting_category): r for r in rows}


class TestHistoricalNormalization:
    """School-only files gain synthesized aggregates."""

    def test_all_levels_present(self, numeric_era_table):
        """Schools, districts, counties and the state are all produced."""
        rows = normalize(numeric_era_table, 2010)
        assert counts_by_level(rows) == {"School": 11, "District": 8, "County": 8, "State": 6}

    def test_state_totals(self, numeric_era_table):
        """The state row sums every school."""
        state = by_key(normalize(numeric_era_table, 2010))[(STATE_CDS_CODE, "TA")]
        assert state.total_enrollment == 42
        assert state.grade("01") == 25
        assert state.grade("K") == 17
        assert state.completeness_of("K") == Completeness.PARTIAL
        assert state.completeness_of("01") == Completeness.COMPLETE

    def test_partitions_sum_to_total(self, numeric_era_table):
        """Race and gender categories each add up to the total at every level."""
        rows = normalize(numeric_era_table, 2010)
        partitions = get_code_map().partitions
        entities = {r.cds_code for r in rows}
        for cds_code in entities:
            entity_rows = [r for r in rows if r.cds_code == cds_code]
            total = next(r.total_enrollment for r in entity_rows if r.reporting_category == "TA")
            for members in partitions.values():
                assert sum(r.total_enrollment for r in entity_rows if r.reporting_category in members) == total

    def test_levels_match_codes(self, numeric_era_table):
        """Every row's level agrees with its CDS code pattern."""
        for row in normalize(numeric_era_table, 2010):
            assert classify(row.cds_code) == row.agg_level
            assert len(row.cds_code) == 14

    def test_unique_keys(self, numeric_era_table):
        """(year, entity, charter, category) is unique."""
        rows = normalize(numeric_era_table, 2010)
        keys = [(r.end_year, r.cds_code, r.charter_status, r.reporting_category) for r in rows]
        assert len(keys) == len(set(keys))

    def test_year_stamped(self, numeric_era_table):
        """Every row carries the requested year."""
        assert {r.end_year for r in normalize(numeric_era_table, 2012)} == {2012}

    def test_idempotent(self, numeric_era_table):
        """The same input gives the same output."""
        assert normalize(numeric_era_table, 2010) == normalize(numeric_era_table, 2010)

    def test_carry_names(self, numeric_era_table):
        """The normalizer can carry unanimous names onto aggregates."""
        rows = SchemaNormalizer(carry_names=True).normalize(numeric_era_table, 2010)
        district = by_key(rows)[("01100170000000", "TA")]
        assert district.district_name == "Alameda Unified"
        assert district.county_name == "Alameda"

    def test_aggregate_names_default_to_none(self, numeric_era_table):
        """Without carry_names aggregates have no names."""
        district = by_key(normalize(numeric_era_table, 2010))[("01100170000000", "TA")]
        assert district.district_name is None

    def test_wide_frame(self, numeric_era_table):
        """Wide frames have one column per reported grade and no TK."""
        df = wide_rows_to_frame(normalize(numeric_era_table, 2010))
        assert "grade_k" in df.columns
        assert "grade_12" in df.columns
        assert "grade_tk" not in df.columns
        assert df["academic_year"].unique().tolist() == ["2009-10"]
        state = df[(df["agg_level"] == "T") & (df["reporting_category"] == "TA")]
        assert state["total_enrollment"].iloc[0] == 42


class TestModernNormalization:
    """Census-day files already carry aggregates."""

    def test_no_synthesis(self, census_table):
        """Rows come through one-to-one."""
        rows = normalize(census_table, 2024)
        assert len(rows) == 7
        assert counts_by_level(rows) == {"State": 3, "County": 1, "District": 1, "School": 2}

    def test_missing_state_rows(self, census_table):
        """A file without state rows is processed with a warning."""
        table = census_table[census_table["Aggregate Level"] != "T"]
        report = QualityReport(2024)
        rows = normalize(table, 2024, report)
        assert len(rows) == 4
        assert report.has(WarningCode.MISSING_STATE_ROWS)

    def test_suppressed_values_survive(self, census_table):
        """SUPPRESSED is never turned into zero."""
        row = by_key(normalize(census_table, 2024))[("01100170000001", "RE_H")]
        assert row.total_enrollment is SUPPRESSED


class TestNormalizerErrors:
    """Fatal conditions."""

    def test_unsupported_year(self, census_table):
        """A year outside every era raises before any parsing."""
        with pytest.raises(UnsupportedYearError):
            normalize(census_table, 1970)

    def test_era_for(self):
        """era_for exposes the selected adapter."""
        assert SchemaNormalizer().era_for(2010).name == "numeric_0_9"
        assert SchemaNormalizer().era_for(2024).native_aggregates
        assert not SchemaNormalizer().era_for(2010).native_aggregates

    def test_level_values(self, census_table):
        """Aggregation levels use the T/C/D/S letters."""
        levels = {r.agg_level for r in normalize(census_table, 2024)}
        assert levels == set(AggregationLevel)
