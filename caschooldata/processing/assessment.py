"""
CAASPP Smarter Balanced assessment processing.

Research files are caret-delimited with one row per entity x test x grade
x student group. A separate entities file supplies names. Grade "13" means
all grades combined.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

import pandas as pd

from caschooldata.exceptions import MalformedIdentifierError, UnsupportedYearError
from caschooldata.processing.era_adapters import ColumnContract, ColumnSpec, RawTable, as_raw_frame
from caschooldata.processing.quality import QualityReport, WarningCode
from caschooldata.processing.suppression import (
    SUPPRESSED,
    ParsedValue,
    numeric_or_none,
    parse_count,
    parse_or_suppressed,
)
from caschooldata.utilities.cds_codes import ZERO_SCHOOL, AggregationLevel, classify, compose
from caschooldata.utilities.common import load_settings

logger = logging.getLogger(__name__)

ALL_GRADES = "13"
TEST_SUBJECTS = {"1": "ELA", "2": "Math"}

PERCENT_FIELDS = ("pct_exceeded", "pct_met", "pct_met_and_above", "pct_nearly_met", "pct_not_met")
COUNT_FIELDS = ("n_tested", "n_exceeded", "n_met", "n_met_and_above", "n_nearly_met", "n_not_met")
METRIC_FIELDS = ("mean_scale_score",) + PERCENT_FIELDS + COUNT_FIELDS

ASSESSMENT_CONTRACT = ColumnContract([
    ColumnSpec("county_code", ("County Code", "CNTYCODE")),
    ColumnSpec("district_code", ("District Code", "DISTCODE")),
    ColumnSpec("school_code", ("School Code", "SCHCODE")),
    ColumnSpec("test_id", ("Test ID", "TestID", "Test Code"), required=False),
    ColumnSpec("subject", ("Subject", "Test Type"), required=False),
    ColumnSpec("grade", ("Grade", "Grade Level")),
    ColumnSpec("student_group", ("Student Group ID", "Student Group Code", "Subgroup ID", "SubgroupID"), required=False),
    ColumnSpec("mean_scale_score", ("Mean Scale Score", "MeanScore", "Average Scale Score"), required=False),
    ColumnSpec("pct_exceeded", ("Percentage Standard Exceeded", "PctExceeded", "Percent Exceeded"), required=False),
    ColumnSpec("pct_met", ("Percentage Standard Met", "PctMet", "Percent Met"), required=False),
    ColumnSpec("pct_met_and_above", ("Percentage Standard Met and Above", "PctMetAndAbove", "Percent Met and Above"), required=False),
    ColumnSpec("pct_nearly_met", ("Percentage Standard Nearly Met", "PctNearlyMet", "Percent Nearly Met"), required=False),
    ColumnSpec("pct_not_met", ("Percentage Standard Not Met", "PctNotMet", "Percent Not Met"), required=False),
    ColumnSpec("n_tested", ("Total Students Tested", "Number Tested", "Students Tested", "TestedCount"), required=False),
    ColumnSpec("n_exceeded", ("Count Standard Exceeded", "Number Exceeded", "ExceededCount"), required=False),
    ColumnSpec("n_met", ("Count Standard Met", "Number Met", "MetCount"), required=False),
    ColumnSpec("n_met_and_above", ("Count Standard Met and Above", "Number Met and Above"), required=False),
    ColumnSpec("n_nearly_met", ("Count Standard Nearly Met", "Number Nearly Met"), required=False),
    ColumnSpec("n_not_met", ("Count Standard Not Met", "Number Not Met"), required=False),
], era="assessment")

ENTITY_CONTRACT = ColumnContract([
    ColumnSpec("county_code", ("County Code", "CNTYCODE")),
    ColumnSpec("district_code", ("District Code", "DISTCODE")),
    ColumnSpec("school_code", ("School Code", "SCHCODE")),
    ColumnSpec("county_name", ("County Name",), required=False),
    ColumnSpec("district_name", ("District Name",), required=False),
    ColumnSpec("school_name", ("School Name",), required=False),
], era="assessment entities")


@dataclass(frozen=True)
class AssessmentRecord:
    end_year: int
    cds_code: str
    agg_level: AggregationLevel
    grade: str
    subject: Optional[str]
    test_id: Optional[str]
    student_group: Optional[str]
    county_name: Optional[str] = None
    district_name: Optional[str] = None
    school_name: Optional[str] = None
    mean_scale_score: ParsedValue = SUPPRESSED
    pct_exceeded: ParsedValue = SUPPRESSED
    pct_met: ParsedValue = SUPPRESSED
    pct_met_and_above: ParsedValue = SUPPRESSED
    pct_nearly_met: ParsedValue = SUPPRESSED
    pct_not_met: ParsedValue = SUPPRESSED
    n_tested: ParsedValue = SUPPRESSED
    n_exceeded: ParsedValue = SUPPRESSED
    n_met: ParsedValue = SUPPRESSED
    n_met_and_above: ParsedValue = SUPPRESSED
    n_nearly_met: ParsedValue = SUPPRESSED
    n_not_met: ParsedValue = SUPPRESSED

    @property
    def county_code(self) -> str:
        return self.cds_code[:2]

    @property
    def district_code(self) -> str:
        return self.cds_code[2:7]

    @property
    def school_code(self) -> str:
        return self.cds_code[7:]


def assessment_years() -> List[int]:
    config = load_settings()["years"]["assessment"]
    skip = set(config.get("skip", []))
    return [y for y in range(int(config["min"]), int(config["max"]) + 1) if y not in skip]


def normalize_subject(subject: str, test_id: str = "") -> Optional[str]:
    """
    'ELA' or 'Math' from a subject label, falling back to the test id.

    Examples:
        >>> normalize_subject("English Language Arts/Literacy")
        'ELA'
        >>> normalize_subject("", "2")
        'Math'
    """
    text = (subject or "").strip()
    lowered = text.lower()
    if "ela" in lowered or "english" in lowered or "literacy" in lowered:
        return "ELA"
    if "math" in lowered:
        return "Math"
    if text:
        return text
    return TEST_SUBJECTS.get((test_id or "").strip())


def normalize_grade(grade: str) -> str:
    """Two-digit grade ('3' -> '03'); non-numeric values pass through."""
    text = (grade or "").strip()
    return f"{int(text):02d}" if text.isdigit() else text


def _cell(record, column) -> str:
    if column is None:
        return ""
    value = record.get(column)
    return "" if value is None else str(value).strip()


def _entity_cds(county: str, district: str, school: str) -> str:
    return compose(county, district or "0", school or ZERO_SCHOOL)


def build_entity_names(entities: RawTable) -> Dict[str, Dict[str, Optional[str]]]:
    """CDS code -> {county_name, district_name, school_name} from the entities file."""
    frame = as_raw_frame(entities)
    columns = ENTITY_CONTRACT.resolve(frame.columns)
    names: Dict[str, Dict[str, Optional[str]]] = {}
    for record in frame.to_dict("records"):
        try:
            cds_code = _entity_cds(
                _cell(record, columns["county_code"]),
                _cell(record, columns["district_code"]),
                _cell(record, columns["school_code"]),
            )
        except MalformedIdentifierError as e:
            logger.debug(f"Skipping entity row: {e}")
            continue
        names.setdefault(cds_code, {
            field: (_cell(record, columns[field]) or None)
            for field in ("county_name", "district_name", "school_name")
        })
    return names


def process_assessment(
    test_table: RawTable,
    end_year: int,
    entities: Optional[RawTable] = None,
    report: Optional[QualityReport] = None,
) -> List[AssessmentRecord]:
    """
    Standardize one year of CAASPP research file rows.

    Args:
        test_table: Raw test results (caret-delimited file, as strings)
        end_year: School year end
        entities: Optional entities table for names
        report: QualityReport for row/value problems

    Returns:
        AssessmentRecord list

    Raises:
        UnsupportedYearError: If the year has no CAASPP administration
        MissingColumnError: If identifier or grade columns are missing
    """
    if end_year not in assessment_years():
        raise UnsupportedYearError(end_year, assessment_years(), domain="assessment")

    report = report if report is not None else QualityReport(end_year)
    frame = as_raw_frame(test_table)
    columns = ASSESSMENT_CONTRACT.resolve(frame.columns)
    names = build_entity_names(entities) if entities is not None else {}

    records: List[AssessmentRecord] = []
    for record in frame.to_dict("records"):
        county = _cell(record, columns["county_code"])
        district = _cell(record, columns["district_code"])
        school = _cell(record, columns["school_code"])
        try:
            cds_code = _entity_cds(county, district, school)
        except MalformedIdentifierError as e:
            report.add(
                WarningCode.MALFORMED_IDENTIFIER,
                f"Dropped row: {e.reason}",
                detail=f"{county}|{district}|{school}",
            )
            continue

        metrics = {}
        for field in METRIC_FIELDS:
            parser = parse_count if field in COUNT_FIELDS else parse_or_suppressed
            metrics[field] = parser(record.get(columns[field]) if columns[field] else None, report, cds_code, field)

        for field in PERCENT_FIELDS:
            value = metrics[field]
            if value is not SUPPRESSED and (value < 0 or value > 100):
                report.add(
                    WarningCode.PERCENTAGE_OUT_OF_RANGE,
                    f"{field} = {value} outside 0-100",
                    cds_code=cds_code,
                    detail=field,
                )

        test_id = _cell(record, columns["test_id"]) or None
        entity_names = names.get(cds_code, {})
        records.append(AssessmentRecord(
            end_year=end_year,
            cds_code=cds_code,
            agg_level=classify(cds_code),
            grade=normalize_grade(_cell(record, columns["grade"])),
            subject=normalize_subject(_cell(record, columns["subject"]), test_id or ""),
            test_id=test_id,
            student_group=_cell(record, columns["student_group"]) or None,
            county_name=entity_names.get("county_name"),
            district_name=entity_names.get("district_name"),
            school_name=entity_names.get("school_name"),
            **metrics,
        ))

    if not any(r.agg_level == AggregationLevel.STATE for r in records):
        report.add(WarningCode.MISSING_STATE_ROWS, "No state-level assessment rows")

    logger.info(f"{end_year}: processed {len(records):,} assessment rows")
    return records


ASSESSMENT_ID_COLUMNS = [
    "end_year", "cds_code", "county_code", "district_code", "school_code",
    "county_name", "district_name", "school_name",
    "agg_level", "grade", "subject", "test_id", "student_group",
]


def assessment_to_frame(records: List[AssessmentRecord]) -> pd.DataFrame:
    rows = []
    for r in records:
        row = {
            "end_year": r.end_year,
            "cds_code": r.cds_code,
            "county_code": r.county_code,
            "district_code": r.district_code,
            "school_code": r.school_code,
            "county_name": r.county_name,
            "district_name": r.district_name,
            "school_name": r.school_name,
            "agg_level": r.agg_level.value,
            "grade": r.grade,
            "subject": r.subject,
            "test_id": r.test_id,
            "student_group": r.student_group,
        }
        for field in METRIC_FIELDS:
            row[field] = numeric_or_none(getattr(r, field))
        rows.append(row)
    return pd.DataFrame.from_records(rows, columns=ASSESSMENT_ID_COLUMNS + list(METRIC_FIELDS))


def tidy_assessment(records: List[AssessmentRecord]) -> pd.DataFrame:
    """
    One row per record x metric with (metric_type, metric_value).

    Suppressed metrics are dropped.
    """
    rows = []
    for r in records:
        base = {
            "end_year": r.end_year,
            "cds_code": r.cds_code,
            "county_code": r.county_code,
            "district_code": r.district_code,
            "school_code": r.school_code,
            "county_name": r.county_name,
            "district_name": r.district_name,
            "school_name": r.school_name,
            "agg_level": r.agg_level.value,
            "grade": r.grade,
            "subject": r.subject,
            "test_id": r.test_id,
            "student_group": r.student_group,
        }
        for field in METRIC_FIELDS:
            value = getattr(r, field)
            if value is SUPPRESSED:
                continue
            rows.append({**base, "metric_type": field, "metric_value": value})
    return pd.DataFrame.from_records(rows, columns=ASSESSMENT_ID_COLUMNS + ["metric_type", "metric_value"])


# =============================================================================
# ANALYSIS HELPERS
# =============================================================================


def id_assess_aggs(frame: pd.DataFrame) -> pd.DataFrame:
    """
    Add is_state / is_county / is_district / is_school columns.

    Works on the wide or the tidy assessment frame.

    Raises:
        KeyError: If the frame has no agg_level column
    """
    if "agg_level" not in frame.columns:
        raise KeyError("id_assess_aggs needs an agg_level column")
    df = frame.copy()
    levels = df["agg_level"].astype(str)
    df["is_state"] = levels == AggregationLevel.STATE.value
    df["is_county"] = levels == AggregationLevel.COUNTY.value
    df["is_district"] = levels == AggregationLevel.DISTRICT.value
    df["is_school"] = levels == AggregationLevel.SCHOOL.value
    return df


def summarize_proficiency(frame: pd.DataFrame, metric: str = "pct_met_and_above") -> pd.DataFrame:
    """
    Rows of one metric from a tidy assessment frame, without metric_type.

    Raises:
        ValueError: If the frame is not in tidy (metric_type) form
    """
    if "metric_type" not in frame.columns:
        raise ValueError("summarize_proficiency needs tidy assessment data (see tidy_assessment)")
    result = frame[frame["metric_type"] == metric].drop(columns=["metric_type"])
    return result.reset_index(drop=True)


def calc_assess_trend(frame: pd.DataFrame, metric: str = "pct_met_and_above") -> pd.DataFrame:
    """
    Year-over-year change of a metric across a multi-year tidy frame.

    Rows are grouped by every column except end_year and metric_value and
    ordered by end_year. Adds:
        change: metric_value minus the previous year's value
        pct_change: percent change from the previous year (NaN when the
            previous value is missing or zero)

    Args:
        frame: Tidy assessment data (several years)
        metric: Metric to keep when metric_type is present

    Returns:
        New DataFrame sorted by end_year
    """
    df = frame
    if "metric_type" in df.columns:
        df = df[df["metric_type"] == metric]
    df = df.sort_values("end_year", kind="mergesort").reset_index(drop=True)

    group_cols = [c for c in df.columns if c not in ("metric_value", "end_year")]
    values = pd.to_numeric(df["metric_value"], errors="coerce")
    if group_cols:
        previous = values.groupby([df[c] for c in group_cols], dropna=False, sort=False).shift(1)
    else:
        previous = values.shift(1)

    df = df.copy()
    df["change"] = values - previous
    df["pct_change"] = (values / previous.where(previous != 0) - 1) * 100
    return df
