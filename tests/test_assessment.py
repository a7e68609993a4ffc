"""
Tests for CAASPP assessment processing.
"""

import pandas as pd
import pytest

from caschooldata.exceptions import MissingColumnError, UnsupportedYearError
from caschooldata.processing.assessment import (
    METRIC_FIELDS,
    assessment_to_frame,
    assessment_years,
    calc_assess_trend,
    id_assess_aggs,
    normalize_grade,
    normalize_subject,
    process_assessment,
    summarize_proficiency,
    tidy_assessment,
)
from caschooldata.processing.quality import QualityReport, WarningCode
from caschooldata.processing.suppression import SUPPRESSED
from caschooldata.utilities.cds_codes import AggregationLevel
from caschooldata.utilities.common import raw_table_from_rows

HEADER = ["County Code", "District Code", "School Code", "Test Id", "Grade", "Student Group ID",
          "Mean Scale Score", "Percentage Standard Met and Above", "Total Students Tested"]


@pytest.fixture
def sb_table():
    return raw_table_from_rows(HEADER, [
        ["00", "00000", "0000000", "1", "13", "1", "2500.5", "47.2", "1,000"],
        ["01", "10017", "0130401", "2", "3", "1", "*", "*", "8"],
    ])


@pytest.fixture
def entities():
    return raw_table_from_rows(
        ["County Code", "District Code", "School Code", "County Name", "District Name", "School Name"],
        [
            ["00", "00000", "0000000", "", "", ""],
            ["01", "10017", "0130401", "Alameda", "Alameda Unified", "Alameda High"],
        ],
    )


class TestProcessAssessment:
    """Research file rows -> AssessmentRecord."""

    def test_levels_and_subjects(self, sb_table):
        """Levels come from the code; subjects fall back to the test id."""
        state, school = process_assessment(sb_table, 2019)
        assert state.agg_level == AggregationLevel.STATE
        assert state.subject == "ELA"
        assert state.grade == "13"
        assert school.agg_level == AggregationLevel.SCHOOL
        assert school.subject == "Math"
        assert school.grade == "03"
        assert school.cds_code == "01100170130401"

    def test_metrics(self, sb_table):
        """Metrics parse with suppression; absent columns are suppressed."""
        state, school = process_assessment(sb_table, 2019)
        assert state.mean_scale_score == pytest.approx(2500.5)
        assert state.pct_met_and_above == pytest.approx(47.2)
        assert state.n_tested == 1000
        assert state.pct_exceeded is SUPPRESSED
        assert school.mean_scale_score is SUPPRESSED
        assert school.n_tested == 8

    def test_entity_names(self, sb_table, entities):
        """Names are joined from the entities file by CDS code."""
        state, school = process_assessment(sb_table, 2019, entities)
        assert school.school_name == "Alameda High"
        assert school.district_name == "Alameda Unified"
        assert state.school_name is None

    def test_percentage_out_of_range(self):
        """Percentages outside 0-100 are reported."""
        table = raw_table_from_rows(HEADER, [["00", "00000", "0000000", "1", "13", "1", "", "101", "5"]])
        report = QualityReport(2019)
        process_assessment(table, 2019, report=report)
        assert report.has(WarningCode.PERCENTAGE_OUT_OF_RANGE)

    def test_malformed_identifier(self):
        """Rows whose codes cannot be composed are dropped."""
        table = raw_table_from_rows(HEADER, [
            ["XX", "00000", "0000000", "1", "13", "1", "", "", ""],
            ["00", "00000", "0000000", "1", "13", "1", "", "", ""],
        ])
        report = QualityReport(2019)
        assert len(process_assessment(table, 2019, report=report)) == 1
        assert report.has(WarningCode.MALFORMED_IDENTIFIER)

    def test_no_testing_in_2020(self, sb_table):
        """2020 had no statewide administration."""
        assert 2020 not in assessment_years()
        with pytest.raises(UnsupportedYearError):
            process_assessment(sb_table, 2020)

    def test_missing_grade_column(self, sb_table):
        """Grade is mandatory."""
        with pytest.raises(MissingColumnError):
            process_assessment(sb_table.drop(columns=["Grade"]), 2019)


class TestAssessmentFrames:
    """Wide and tidy DataFrames."""

    def test_wide_frame(self, sb_table):
        """One column per metric; suppressed metrics are missing."""
        df = assessment_to_frame(process_assessment(sb_table, 2019))
        for field in METRIC_FIELDS:
            assert field in df.columns
        assert df["agg_level"].tolist() == ["T", "S"]
        assert df["mean_scale_score"].isna().tolist() == [False, True]

    def test_tidy_frame(self, sb_table):
        """Only reported metrics become rows."""
        df = tidy_assessment(process_assessment(sb_table, 2019))
        state = df[df["agg_level"] == "T"]
        assert sorted(state["metric_type"]) == ["mean_scale_score", "n_tested", "pct_met_and_above"]
        school = df[df["agg_level"] == "S"]
        assert school["metric_type"].tolist() == ["n_tested"]


class TestNormalizers:
    """Subject and grade labels."""

    def test_subjects(self):
        """Subject labels and test ids map to ELA / Math."""
        assert normalize_subject("English Language Arts/Literacy") == "ELA"
        assert normalize_subject("Mathematics") == "Math"
        assert normalize_subject("", "1") == "ELA"
        assert normalize_subject("", "9") is None

    def test_grades(self):
        """Numeric grades are zero-padded."""
        assert normalize_grade("3") == "03"
        assert normalize_grade("13") == "13"
        assert normalize_grade("") == ""


class TestAnalysisHelpers:
    """Aggregation flags, proficiency summary and trends."""

    def test_id_assess_aggs(self):
        """One boolean flag per aggregation level; the input is untouched."""
        frame = pd.DataFrame({"agg_level": ["T", "C", "D", "S"]})
        flagged = id_assess_aggs(frame)
        assert flagged["is_state"].tolist() == [True, False, False, False]
        assert flagged["is_county"].tolist() == [False, True, False, False]
        assert flagged["is_district"].tolist() == [False, False, True, False]
        assert flagged["is_school"].tolist() == [False, False, False, True]
        assert "is_state" not in frame.columns

    def test_id_assess_aggs_needs_level(self):
        """Frames without agg_level are rejected."""
        with pytest.raises(KeyError):
            id_assess_aggs(pd.DataFrame({"cds_code": ["00000000000000"]}))

    def test_summarize_proficiency(self, sb_table):
        """Only the requested metric remains, without the metric_type column."""
        tidy = tidy_assessment(process_assessment(sb_table, 2019))
        summary = summarize_proficiency(tidy)
        assert "metric_type" not in summary.columns
        assert summary["agg_level"].tolist() == ["T"]
        assert summary["metric_value"].tolist() == [47.2]
        assert summarize_proficiency(tidy, "n_tested")["metric_value"].tolist() == [1000, 8]

    def test_summarize_needs_tidy_data(self, sb_table):
        """The wide frame has no metric_type column."""
        with pytest.raises(ValueError):
            summarize_proficiency(assessment_to_frame(process_assessment(sb_table, 2019)))

    def test_calc_assess_trend(self):
        """Changes are computed per group in year order."""
        nan = float("nan")
        frame = pd.DataFrame({
            "end_year": [2023, 2019, 2021, 2019, 2021, 2019],
            "agg_level": ["T"] * 6,
            "county_name": [None] * 6,
            "subject": ["ELA", "ELA", "ELA", "Math", "Math", "ELA"],
            "metric_type": ["pct_met_and_above"] * 5 + ["n_tested"],
            "metric_value": [47.0, 50.0, 49.0, 0.0, 33.0, 1000.0],
        })
        trend = calc_assess_trend(frame)
        assert trend["end_year"].tolist() == [2019, 2019, 2021, 2021, 2023]
        assert trend["subject"].tolist() == ["ELA", "Math", "ELA", "Math", "ELA"]
        assert trend["change"].tolist() == pytest.approx([nan, nan, -1.0, 33.0, -2.0], nan_ok=True)
        assert trend["pct_change"].tolist() == pytest.approx(
            [nan, nan, -2.0, nan, (47.0 / 49.0 - 1) * 100], nan_ok=True
        )

    def test_calc_assess_trend_without_metric_type(self):
        """A frame already reduced to one metric is used as is."""
        frame = pd.DataFrame({"end_year": [2022, 2021], "metric_value": [55.0, 50.0]})
        trend = calc_assess_trend(frame)
        assert trend["change"].tolist() == pytest.approx([float("nan"), 5.0], nan_ok=True)
        assert trend["pct_change"].iloc[1] == pytest.approx(10.0)
