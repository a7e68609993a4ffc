"""
Tidier: wide enrollment rows -> long rows with percentage-of-total.

Each wide row explodes into one long row per reported grade plus a TOTAL
row. Percentages use the same entity + charter + grade group's "total"
subgroup row as denominator:

    no total row, or total suppressed  -> pct undefined for the whole group
    total == 0 and count == 0          -> pct 0.0
    total == 0 and count != 0          -> pct undefined, zero_denominator warning
    otherwise                          -> count / total, must lie in [0, 1]
"""

import dataclasses
import logging
from collections import OrderedDict
from typing import Dict, Iterable, List, Optional, Tuple

import pandas as pd

from caschooldata.processing.quality import QualityReport, WarningCode
from caschooldata.processing.records import (
    CHARTER_ALL,
    CHARTER_NO,
    CHARTER_YES,
    TOTAL_GRADE,
    LongEnrollmentRow,
    WideEnrollmentRow,
    grade_sort_key,
)
from caschooldata.processing.reporting_categories import (
    TOTAL_CATEGORY,
    DemographicCodeMap,
    get_code_map,
)
from caschooldata.processing.suppression import (
    SUPPRESSED,
    combine_completeness,
    sum_with_completeness,
)
from caschooldata.utilities.cds_codes import AggregationLevel, classify

logger = logging.getLogger(__name__)

CHARTER_ORDER = {None: 0, CHARTER_ALL: 1, CHARTER_YES: 2, CHARTER_NO: 3}

GroupKey = Tuple[int, str, Optional[str], str]


def _charter_key(charter: Optional[str]) -> Tuple[int, str]:
    return (CHARTER_ORDER.get(charter, len(CHARTER_ORDER)), charter or "")


# =============================================================================
# EXPLODE
# =============================================================================


def explode(rows: Iterable[WideEnrollmentRow], code_map: Optional[DemographicCodeMap] = None) -> List[LongEnrollmentRow]:
    """
    One long row per grade the row reports, plus a TOTAL row.

    Percentages are left unset; see assign_percentages().
    """
    code_map = code_map or get_code_map()
    long_rows = []
    for row in rows:
        subgroup = code_map.subgroup_for(row.reporting_category)
        cells = [(TOTAL_GRADE, row.total_enrollment)] + list(row.grades)
        for grade_level, count in cells:
            long_rows.append(LongEnrollmentRow(
                end_year=row.end_year,
                cds_code=row.cds_code,
                agg_level=row.agg_level,
                reporting_category=row.reporting_category,
                subgroup=subgroup,
                grade_level=grade_level,
                n_students=count,
                pct=None,
                county_name=row.county_name,
                district_name=row.district_name,
                school_name=row.school_name,
                charter_status=row.charter_status,
                completeness=row.completeness_of(grade_level),
            ))
    return long_rows


# =============================================================================
# PERCENTAGES
# =============================================================================


def _percentage(count, denominator, report: QualityReport, row: LongEnrollmentRow) -> Optional[float]:
    if count is SUPPRESSED:
        return None
    if denominator == 0:
        if count == 0:
            return 0.0
        report.add(
            WarningCode.ZERO_DENOMINATOR,
            f"{row.subgroup} count {count} with a zero total (grade {row.grade_level})",
            cds_code=row.cds_code,
            detail=row.grade_level,
        )
        return None

    pct = count / denominator
    if pct < 0 or pct > 1:
        report.add(
            WarningCode.PERCENTAGE_OUT_OF_RANGE,
            f"{row.subgroup} is {pct:.3f} of the total (grade {row.grade_level})",
            cds_code=row.cds_code,
            detail=row.grade_level,
        )
        return None
    return pct


def assign_percentages(
    rows: List[LongEnrollmentRow],
    report: Optional[QualityReport] = None,
) -> List[LongEnrollmentRow]:
    """
    Set pct on every row from its group's total subgroup row.

    Args:
        rows: Exploded long rows
        report: QualityReport for denominator problems

    Returns:
        New LongEnrollmentRow list (input order preserved)
    """
    report = report if report is not None else QualityReport()

    groups: "OrderedDict[GroupKey, List[int]]" = OrderedDict()
    for i, row in enumerate(rows):
        key = (row.end_year, row.cds_code, row.charter_status, row.grade_level)
        groups.setdefault(key, []).append(i)

    result: List[Optional[LongEnrollmentRow]] = [None] * len(rows)
    for (end_year, cds_code, charter, grade_level), indexes in groups.items():
        totals = [i for i in indexes if rows[i].reporting_category == TOTAL_CATEGORY]

        if len(totals) > 1:
            report.add_once(
                ("duplicate_total", end_year, cds_code, charter),
                WarningCode.DUPLICATE_TOTAL_ROW,
                f"{len(totals)} total rows for one group; the first is used",
                cds_code=cds_code,
                end_year=end_year,
            )

        if not totals:
            report.add_once(
                ("missing_total", end_year, cds_code, charter),
                WarningCode.MISSING_TOTAL_ROW,
                "No total row; percentages left undefined",
                cds_code=cds_code,
                end_year=end_year,
                detail=charter,
            )
            denominator = None
        else:
            denominator = rows[totals[0]].n_students
            if denominator is SUPPRESSED:
                report.add(
                    WarningCode.SUPPRESSED_DENOMINATOR,
                    f"Total is suppressed (grade {grade_level}); percentages left undefined",
                    cds_code=cds_code,
                    end_year=end_year,
                    detail=grade_level,
                )
                denominator = None

        for i in indexes:
            row = rows[i]
            pct = None if denominator is None else _percentage(row.n_students, denominator, report, row)
            result[i] = dataclasses.replace(row, pct=pct)

    return result


# =============================================================================
# TIDY
# =============================================================================


def sort_long_rows(rows: Iterable[LongEnrollmentRow], code_map: Optional[DemographicCodeMap] = None) -> List[LongEnrollmentRow]:
    """Stable order: year, entity, charter, grade, then subgroup (code map order)."""
    code_map = code_map or get_code_map()
    return sorted(
        rows,
        key=lambda r: (
            r.end_year,
            r.cds_code,
            _charter_key(r.charter_status),
            grade_sort_key(r.grade_level),
            code_map.sort_key(r.reporting_category),
        ),
    )


def tidy(
    rows: Iterable[WideEnrollmentRow],
    report: Optional[QualityReport] = None,
    code_map: Optional[DemographicCodeMap] = None,
) -> List[LongEnrollmentRow]:
    """
    Pivot wide rows to long form with subgroup names and percentages.

    Args:
        rows: WideEnrollmentRow list (normally from normalize())
        report: QualityReport receiving denominator warnings
        code_map: Demographic code map (default: packaged map)

    Returns:
        Sorted LongEnrollmentRow list

    Example:
        >>> long_rows = tidy(normalize(raw_table, 2024))
        >>> [r.pct for r in long_rows if r.subgroup == "total"][:1]
        [1.0]
    """
    code_map = code_map or get_code_map()
    report = report if report is not None else QualityReport()

    exploded = explode(rows, code_map)
    with_pct = assign_percentages(exploded, report)
    result = sort_long_rows(with_pct, code_map)

    undefined = sum(1 for r in result if r.pct is None)
    logger.info(
        f"Tidied {len(result):,} long rows"
        + (f" ({undefined:,} with undefined pct)" if undefined else "")
    )
    return result


# =============================================================================
# SUPPLEMENTARY VIEWS
# =============================================================================

GRADE_BANDS: Dict[str, Tuple[str, ...]] = {
    "K8": ("TK", "K", "01", "02", "03", "04", "05", "06", "07", "08"),
    "HS": ("09", "10", "11", "12"),
    "K12": ("TK", "K", "01", "02", "03", "04", "05", "06", "07", "08", "09", "10", "11", "12"),
}


def grade_band_aggregates(rows: Iterable[LongEnrollmentRow]) -> List[LongEnrollmentRow]:
    """
    Sum the total subgroup into K8, HS and K12 bands per entity.

    Suppressed grades follow the aggregator's rules: all suppressed ->
    SUPPRESSED, some suppressed -> partial sum.

    Args:
        rows: Tidy rows (any subgroups; only the total subgroup is used)

    Returns:
        LongEnrollmentRow list with grade_level K8/HS/K12, pct 1.0 for a
        positive count, 0.0 for zero, None when suppressed
    """
    by_entity: "OrderedDict[Tuple, Dict[str, LongEnrollmentRow]]" = OrderedDict()
    for row in rows:
        if row.reporting_category != TOTAL_CATEGORY or row.grade_level == TOTAL_GRADE:
            continue
        key = (row.end_year, row.cds_code, row.charter_status)
        by_entity.setdefault(key, {})[row.grade_level] = row

    bands = []
    for grades in by_entity.values():
        template = next(iter(grades.values()))
        for band, members in GRADE_BANDS.items():
            present = [grades[g] for g in members if g in grades]
            if not present:
                continue
            total, state = sum_with_completeness(r.n_students for r in present)
            state = combine_completeness([state] + [r.completeness for r in present if r.n_students is not SUPPRESSED])
            if total is SUPPRESSED:
                pct = None
            else:
                pct = 1.0 if total > 0 else 0.0
            bands.append(LongEnrollmentRow(
                end_year=template.end_year,
                cds_code=template.cds_code,
                agg_level=template.agg_level,
                reporting_category=template.reporting_category,
                subgroup=template.subgroup,
                grade_level=band,
                n_students=total,
                pct=pct,
                county_name=template.county_name,
                district_name=template.district_name,
                school_name=template.school_name,
                charter_status=template.charter_status,
                completeness=state,
            ))
    return bands


def add_aggregation_flags(frame: pd.DataFrame) -> pd.DataFrame:
    """
    Add is_state / is_county / is_district / is_school / is_charter columns.

    Uses agg_level (T/C/D/S) when present, otherwise classifies cds_code.

    Args:
        frame: Tidy or wide enrollment DataFrame

    Returns:
        Copy of the frame with boolean flag columns
    """
    df = frame.copy()
    if "agg_level" in df.columns:
        levels = df["agg_level"].astype(str)
    elif "cds_code" in df.columns:
        levels = df["cds_code"].map(lambda code: classify(code).value)
    else:
        raise KeyError("add_aggregation_flags needs an agg_level or cds_code column")

    df["is_state"] = levels == AggregationLevel.STATE.value
    df["is_county"] = levels == AggregationLevel.COUNTY.value
    df["is_district"] = levels == AggregationLevel.DISTRICT.value
    df["is_school"] = levels == AggregationLevel.SCHOOL.value
    if "charter_status" in df.columns:
        df["is_charter"] = df["charter_status"] == CHARTER_YES
    else:
        df["is_charter"] = pd.NA
    return df
