"""
Record types shared by the enrollment processing stages.

WideEnrollmentRow: one row per (year, entity, reporting category), counts
per grade. LongEnrollmentRow: one row per (year, entity, subgroup, grade)
with a derived percentage. Both are immutable.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional, Tuple, Union

import pandas as pd

from caschooldata.processing.suppression import (
    SUPPRESSED,
    Completeness,
    ParsedValue,
    numeric_or_none,
)
from caschooldata.utilities.cds_codes import AggregationLevel
from caschooldata.utilities.common import academic_year_label

logger = logging.getLogger(__name__)

# =============================================================================
# GRADE LABELS
# =============================================================================

GRADE_LABELS: Tuple[str, ...] = ("TK", "K") + tuple(f"{g:02d}" for g in range(1, 13))
TOTAL_GRADE = "TOTAL"
GRADE_ORDER: Dict[str, int] = {
    label: i for i, label in enumerate((TOTAL_GRADE,) + GRADE_LABELS)
}

# Charter status values
CHARTER_ALL = "ALL"
CHARTER_YES = "Y"
CHARTER_NO = "N"


def grade_column(label: str) -> str:
    """Wide-table column for a grade label ('K' -> 'grade_k', '01' -> 'grade_01')."""
    return f"grade_{label.lower()}"


def grade_sort_key(label: str) -> Tuple[int, str]:
    return (GRADE_ORDER.get(label, len(GRADE_ORDER)), label)


# =============================================================================
# RECORDS
# =============================================================================

GradeCounts = Tuple[Tuple[str, ParsedValue], ...]


@dataclass(frozen=True)
class WideEnrollmentRow:
    """
    One entity x reporting category for one year.

    `grades` holds only the grade labels the source era populates, in
    GRADE_LABELS order. Entity names and charter status are None when the
    era does not carry them. `completeness` lists only fields that are not
    COMPLETE (TOTAL or a grade label).
    """
    end_year: int
    cds_code: str
    agg_level: AggregationLevel
    reporting_category: str
    total_enrollment: ParsedValue
    grades: GradeCounts = ()
    county_name: Optional[str] = None
    district_name: Optional[str] = None
    school_name: Optional[str] = None
    charter_status: Optional[str] = None
    completeness: Tuple[Tuple[str, Completeness], ...] = field(default=())

    @property
    def county_code(self) -> str:
        return self.cds_code[:2]

    @property
    def district_code(self) -> str:
        return self.cds_code[2:7]

    @property
    def school_code(self) -> str:
        return self.cds_code[7:]

    @property
    def grade_labels(self) -> Tuple[str, ...]:
        return tuple(label for label, _ in self.grades)

    def grade(self, label: str) -> Optional[ParsedValue]:
        """Count for a grade label, or None if the era does not report it."""
        for grade_label, value in self.grades:
            if grade_label == label:
                return value
        return None

    def completeness_of(self, field_name: str) -> Completeness:
        for name, state in self.completeness:
            if name == field_name:
                return state
        if field_name == TOTAL_GRADE:
            value = self.total_enrollment
        else:
            value = self.grade(field_name)
        return Completeness.SUPPRESSED if value is SUPPRESSED else Completeness.COMPLETE


@dataclass(frozen=True)
class LongEnrollmentRow:
    """One entity x subgroup x grade level for one year."""
    end_year: int
    cds_code: str
    agg_level: AggregationLevel
    reporting_category: str
    subgroup: str
    grade_level: str
    n_students: ParsedValue
    pct: Optional[float] = None
    county_name: Optional[str] = None
    district_name: Optional[str] = None
    school_name: Optional[str] = None
    charter_status: Optional[str] = None
    completeness: Completeness = Completeness.COMPLETE

    @property
    def county_code(self) -> str:
        return self.cds_code[:2]

    @property
    def district_code(self) -> str:
        return self.cds_code[2:7]

    @property
    def school_code(self) -> str:
        return self.cds_code[7:]

    @property
    def is_suppressed(self) -> bool:
        return self.n_students is SUPPRESSED


# =============================================================================
# DATAFRAME CONVERSION
# =============================================================================

WIDE_ID_COLUMNS = [
    "end_year", "academic_year", "agg_level",
    "cds_code", "county_code", "district_code", "school_code",
    "county_name", "district_name", "school_name",
    "charter_status", "reporting_category", "total_enrollment",
]

LONG_COLUMNS = [
    "end_year", "academic_year", "agg_level",
    "cds_code", "county_code", "district_code", "school_code",
    "county_name", "district_name", "school_name",
    "charter_status", "grade_level", "reporting_category", "subgroup",
    "n_students", "pct", "is_suppressed", "completeness",
]


def wide_rows_to_frame(rows: Iterable[WideEnrollmentRow]) -> pd.DataFrame:
    """
    Convert wide rows to a DataFrame (one grade_* column per reported grade).

    Suppressed counts become missing values; grade columns no row reports
    are left out entirely.
    """
    rows = list(rows)
    present = {label for row in rows for label in row.grade_labels}
    labels = [label for label in GRADE_LABELS if label in present]

    records = []
    for row in rows:
        record = {
            "end_year": row.end_year,
            "academic_year": academic_year_label(row.end_year),
            "agg_level": row.agg_level.value,
            "cds_code": row.cds_code,
            "county_code": row.county_code,
            "district_code": row.district_code,
            "school_code": row.school_code,
            "county_name": row.county_name,
            "district_name": row.district_name,
            "school_name": row.school_name,
            "charter_status": row.charter_status,
            "reporting_category": row.reporting_category,
            "total_enrollment": numeric_or_none(row.total_enrollment),
        }
        for label in labels:
            record[grade_column(label)] = numeric_or_none(row.grade(label))
        records.append(record)

    columns = WIDE_ID_COLUMNS + [grade_column(label) for label in labels]
    return pd.DataFrame.from_records(records, columns=columns)


def long_rows_to_frame(rows: Iterable[LongEnrollmentRow]) -> pd.DataFrame:
    """Convert tidy rows to a DataFrame with the canonical column order."""
    records = [
        {
            "end_year": row.end_year,
            "academic_year": academic_year_label(row.end_year),
            "agg_level": row.agg_level.value,
            "cds_code": row.cds_code,
            "county_code": row.county_code,
            "district_code": row.district_code,
            "school_code": row.school_code,
            "county_name": row.county_name,
            "district_name": row.district_name,
            "school_name": row.school_name,
            "charter_status": row.charter_status,
            "grade_level": row.grade_level,
            "reporting_category": row.reporting_category,
            "subgroup": row.subgroup,
            "n_students": numeric_or_none(row.n_students),
            "pct": row.pct,
            "is_suppressed": row.is_suppressed,
            "completeness": row.completeness.value,
        }
        for row in rows
    ]
    return pd.DataFrame.from_records(records, columns=LONG_COLUMNS)


def counts_by_level(rows: Iterable[Union[WideEnrollmentRow, LongEnrollmentRow]]) -> Dict[str, int]:
    """Number of rows per aggregation level label, e.g. {'School': 10, 'State': 1}."""
    counts: Dict[str, int] = {}
    for row in rows:
        counts[row.agg_level.label] = counts.get(row.agg_level.label, 0) + 1
    return counts
