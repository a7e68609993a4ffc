"""
Graduation rate processing (California School Dashboard files).

Raw columns (after lower-casing and removing spaces): cds, rtype,
schoolname, districtname, countyname, studentgroup, currnumer (graduates),
currdenom (cohort), currstatus (rate, 0-100).
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

import pandas as pd

from caschooldata.exceptions import MalformedIdentifierError, MissingColumnError, UnsupportedYearError
from caschooldata.processing.era_adapters import RawTable, as_raw_frame
from caschooldata.processing.quality import QualityReport, WarningCode
from caschooldata.processing.suppression import SUPPRESSED, numeric_or_none, parse_count, parse_or_suppressed
from caschooldata.utilities.cds_codes import AggregationLevel, classify, decompose
from caschooldata.utilities.common import load_settings

logger = logging.getLogger(__name__)

RECORD_TYPES = {
    "X": AggregationLevel.STATE,
    "C": AggregationLevel.COUNTY,
    "D": AggregationLevel.DISTRICT,
    "S": AggregationLevel.SCHOOL,
}

GRADUATION_SUBGROUPS: Dict[str, str] = {
    "ALL": "all",
    "AA": "black",
    "AI": "native_american",
    "AS": "asian",
    "FI": "filipino",
    "HI": "hispanic",
    "PI": "pacific_islander",
    "WH": "white",
    "MR": "multiracial",
    "EL": "english_learner",
    "LTEL": "long_term_english_learner",
    "SED": "low_income",
    "SWD": "special_ed",
    "FOS": "foster_care",
    "HOM": "homeless",
}

GRADUATION_COLUMNS = [
    "end_year", "type",
    "district_id", "district_name",
    "school_id", "school_name",
    "subgroup", "metric",
    "grad_rate", "cohort_count", "graduate_count",
    "is_state", "is_district", "is_school",
]


@dataclass(frozen=True)
class GraduationRecord:
    end_year: int
    level: AggregationLevel
    district_id: Optional[str]
    district_name: Optional[str]
    school_id: Optional[str]
    school_name: Optional[str]
    subgroup: str
    grad_rate: float
    cohort_count: object
    graduate_count: object
    metric: str = "combined"


def graduation_years() -> List[int]:
    return [int(y) for y in load_settings()["years"]["graduation"]]


def map_graduation_subgroup(code: str) -> str:
    """
    Examples:
        >>> map_graduation_subgroup("SED")
        'low_income'
        >>> map_graduation_subgroup("NEW")
        'new'
    """
    code = str(code).strip()
    return GRADUATION_SUBGROUPS.get(code.upper(), code.lower())


def _lookup(frame: pd.DataFrame, name: str) -> Optional[str]:
    for column in frame.columns:
        if str(column).replace(" ", "").lower() == name:
            return column
    return None


def process_graduation(
    raw_table: RawTable,
    end_year: int,
    report: Optional[QualityReport] = None,
) -> List[GraduationRecord]:
    """
    Standardize one year of Dashboard graduation data.

    Args:
        raw_table: Raw spreadsheet rows as strings
        end_year: Graduation year
        report: QualityReport for row/value problems

    Returns:
        GraduationRecord list; rows without a rate are dropped

    Raises:
        UnsupportedYearError: If the year has no graduation file
        MissingColumnError: If the cds or currstatus column is missing
    """
    if end_year not in graduation_years():
        raise UnsupportedYearError(end_year, graduation_years(), domain="graduation")

    report = report if report is not None else QualityReport(end_year)
    frame = as_raw_frame(raw_table)

    columns = {
        name: _lookup(frame, name)
        for name in ("cds", "rtype", "schoolname", "districtname", "studentgroup",
                     "currnumer", "currdenom", "currstatus")
    }
    for required in ("cds", "currstatus"):
        if columns[required] is None:
            raise MissingColumnError(required, (required,), era="graduation")

    def cell(record, name):
        column = columns[name]
        if column is None:
            return ""
        value = record.get(column)
        return "" if value is None else str(value).strip()

    records: List[GraduationRecord] = []
    no_rate = 0
    for record in frame.to_dict("records"):
        raw_cds = cell(record, "cds")
        if raw_cds.endswith(".0"):
            # numeric spreadsheet cell
            raw_cds = raw_cds[:-2]
        try:
            cds = decompose(raw_cds)
        except MalformedIdentifierError as e:
            report.add(WarningCode.MALFORMED_IDENTIFIER, f"Dropped row: {e.reason}", detail=str(e.value))
            continue

        rtype = cell(record, "rtype").upper()
        level = RECORD_TYPES.get(rtype) or classify(cds)

        status = parse_or_suppressed(cell(record, "currstatus"), report, cds.code, "currstatus")
        if status is SUPPRESSED:
            no_rate += 1
            continue
        rate = status / 100
        if rate < 0 or rate > 1:
            report.add(
                WarningCode.PERCENTAGE_OUT_OF_RANGE,
                f"Graduation rate {status} outside 0-100",
                cds_code=cds.code,
            )

        is_state = level == AggregationLevel.STATE
        is_school = level == AggregationLevel.SCHOOL
        records.append(GraduationRecord(
            end_year=end_year,
            level=level,
            district_id=None if is_state else cds.district_id,
            district_name=None if is_state else (cell(record, "districtname") or None),
            school_id=cds.code if is_school else None,
            school_name=(cell(record, "schoolname") or None) if is_school else None,
            subgroup=map_graduation_subgroup(cell(record, "studentgroup")),
            grad_rate=rate,
            cohort_count=parse_count(cell(record, "currdenom"), report, cds.code, "currdenom"),
            graduate_count=parse_count(cell(record, "currnumer"), report, cds.code, "currnumer"),
        ))

    if not any(r.level == AggregationLevel.STATE for r in records):
        report.add(WarningCode.MISSING_STATE_ROWS, "No state-level graduation rows")

    logger.info(
        f"{end_year}: processed {len(records):,} graduation rows"
        + (f" ({no_rate:,} without a rate dropped)" if no_rate else "")
    )
    return records


def graduation_to_frame(records: List[GraduationRecord]) -> pd.DataFrame:
    rows = [
        {
            "end_year": r.end_year,
            "type": r.level.label,
            "district_id": r.district_id,
            "district_name": r.district_name,
            "school_id": r.school_id,
            "school_name": r.school_name,
            "subgroup": r.subgroup,
            "metric": r.metric,
            "grad_rate": r.grad_rate,
            "cohort_count": numeric_or_none(r.cohort_count),
            "graduate_count": numeric_or_none(r.graduate_count),
            "is_state": r.level == AggregationLevel.STATE,
            "is_district": r.level == AggregationLevel.DISTRICT,
            "is_school": r.level == AggregationLevel.SCHOOL,
        }
        for r in records
    ]
    return pd.DataFrame.from_records(rows, columns=GRADUATION_COLUMNS)
