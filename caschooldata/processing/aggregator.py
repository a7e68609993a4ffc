"""
Historical aggregate synthesis.

Historical CDE school files (1982-2023) carry school rows only. District,
county and state rows are synthesized here by summing school rows that
share an identifier prefix and reporting category.

Suppressed cells count as zero in a sum, but the aggregate remembers that
it was built from redacted inputs:

    all contributors suppressed  -> SUPPRESSED, Completeness.SUPPRESSED
    some contributors suppressed -> sum,        Completeness.PARTIAL
    none suppressed              -> sum,        Completeness.COMPLETE
"""

import logging
from collections import OrderedDict
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from caschooldata.processing.quality import QualityReport, WarningCode
from caschooldata.processing.records import (
    CHARTER_ALL,
    GRADE_LABELS,
    TOTAL_GRADE,
    WideEnrollmentRow,
    counts_by_level,
)
from caschooldata.processing.reporting_categories import get_code_map
from caschooldata.processing.suppression import SUPPRESSED, Completeness, ParsedValue
from caschooldata.utilities.cds_codes import (
    STATE_CDS_CODE,
    AggregationLevel,
    county_code_for,
    district_code_for,
)
from caschooldata.utilities.common import summarize_counts

logger = logging.getLogger(__name__)


class CountAccumulator:
    """
    Field-by-field running sum of a total and a set of grade counts.

    Example:
        >>> acc = CountAccumulator(["K", "01"])
        >>> acc.add(10, {"K": 4, "01": SUPPRESSED})
        >>> acc.add(5, {"K": 1, "01": 2})
        >>> acc.total()
        (15, <Completeness.COMPLETE: 'complete'>)
        >>> acc.value("01")
        (2, <Completeness.PARTIAL: 'partial'>)
    """

    def __init__(self, grade_labels: Sequence[str]):
        self.grade_labels = tuple(grade_labels)
        self._fields = (TOTAL_GRADE,) + self.grade_labels
        self._sums: Dict[str, float] = {f: 0 for f in self._fields}
        self._seen: Dict[str, int] = {f: 0 for f in self._fields}
        self._suppressed: Dict[str, int] = {f: 0 for f in self._fields}
        self._partial: Dict[str, int] = {f: 0 for f in self._fields}
        self.contributors = 0

    def _add_value(self, field: str, value: ParsedValue, state: Completeness) -> None:
        if value is None:
            return
        self._seen[field] += 1
        if value is SUPPRESSED:
            self._suppressed[field] += 1
            return
        self._sums[field] += value
        if state == Completeness.PARTIAL:
            self._partial[field] += 1

    def add(
        self,
        total: ParsedValue,
        grades: Mapping[str, ParsedValue],
        completeness: Optional[Mapping[str, Completeness]] = None,
    ) -> None:
        completeness = completeness or {}
        self.contributors += 1
        self._add_value(TOTAL_GRADE, total, completeness.get(TOTAL_GRADE, Completeness.COMPLETE))
        for label in self.grade_labels:
            if label in grades:
                self._add_value(label, grades[label], completeness.get(label, Completeness.COMPLETE))

    def add_row(self, row: WideEnrollmentRow) -> None:
        self.add(row.total_enrollment, dict(row.grades), dict(row.completeness))

    def value(self, field: str) -> Tuple[ParsedValue, Completeness]:
        seen = self._seen[field]
        if seen == 0:
            return SUPPRESSED, Completeness.SUPPRESSED
        if self._suppressed[field] == seen:
            return SUPPRESSED, Completeness.SUPPRESSED
        if self._suppressed[field] or self._partial[field]:
            return self._sums[field], Completeness.PARTIAL
        return self._sums[field], Completeness.COMPLETE

    def total(self) -> Tuple[ParsedValue, Completeness]:
        return self.value(TOTAL_GRADE)

    def build(self):
        """
        Finished counts.

        Returns:
            (total, grades, completeness) in WideEnrollmentRow field shapes
        """
        total, total_state = self.total()
        grades = []
        incomplete = []
        if total_state != Completeness.COMPLETE:
            incomplete.append((TOTAL_GRADE, total_state))
        for label in self.grade_labels:
            value, state = self.value(label)
            grades.append((label, value))
            if state != Completeness.COMPLETE:
                incomplete.append((label, state))
        return total, tuple(grades), tuple(incomplete)


# =============================================================================
# AGGREGATION
# =============================================================================

# (level, function mapping a school CDS code to the aggregate's CDS code)
AGGREGATE_LEVELS: Tuple[Tuple[AggregationLevel, Callable[[str], str]], ...] = (
    (AggregationLevel.DISTRICT, district_code_for),
    (AggregationLevel.COUNTY, county_code_for),
    (AggregationLevel.STATE, lambda cds_code: STATE_CDS_CODE),
)


def _grade_labels_of(rows: Sequence[WideEnrollmentRow]) -> Tuple[str, ...]:
    present = {label for row in rows for label in row.grade_labels}
    return tuple(label for label in GRADE_LABELS if label in present)


def _ancestor_names(rows: List[WideEnrollmentRow], level: AggregationLevel) -> Dict[str, Optional[str]]:
    """County/district names shared by every contributing school (else None)."""
    names: Dict[str, Optional[str]] = {"county_name": None, "district_name": None}
    wanted = []
    if level in (AggregationLevel.COUNTY, AggregationLevel.DISTRICT):
        wanted.append("county_name")
    if level == AggregationLevel.DISTRICT:
        wanted.append("district_name")
    for attr in wanted:
        values = {getattr(row, attr) for row in rows}
        if len(values) == 1:
            names[attr] = values.pop()
    return names


def aggregate(
    school_rows: Iterable[WideEnrollmentRow],
    report: Optional[QualityReport] = None,
    carry_names: bool = False,
) -> List[WideEnrollmentRow]:
    """
    Synthesize district, county and state rows from school rows.

    District groups share county+district segments, county groups share
    the county segment, and the state group takes every school. Each group
    is further split by reporting category. Aggregate rows get zeroed
    identifier segments, blanket charter status "ALL", and no entity names
    (unless carry_names is set, in which case county/district names that
    all contributing schools agree on are kept).

    Args:
        school_rows: School-level wide rows for one year
        report: QualityReport for rows that are not school-level
        carry_names: Keep unanimous ancestor names on aggregates

    Returns:
        Aggregate rows only, sorted by CDS code then category order
    """
    code_map = get_code_map()
    schools = []
    for row in school_rows:
        if row.agg_level != AggregationLevel.SCHOOL:
            if report is not None:
                report.add(
                    WarningCode.AGGREGATION_LEVEL_MISMATCH,
                    f"{row.agg_level.label}-level row passed to the school aggregator; skipped",
                    cds_code=row.cds_code,
                )
            continue
        schools.append(row)

    if not schools:
        return []

    grade_labels = _grade_labels_of(schools)
    end_year = schools[0].end_year

    aggregates: List[WideEnrollmentRow] = []
    for level, parent_of in AGGREGATE_LEVELS:
        groups: "OrderedDict[Tuple[str, str], CountAccumulator]" = OrderedDict()
        members: Dict[Tuple[str, str], List[WideEnrollmentRow]] = {}
        for row in schools:
            key = (parent_of(row.cds_code), row.reporting_category)
            if key not in groups:
                groups[key] = CountAccumulator(grade_labels)
                members[key] = []
            groups[key].add_row(row)
            if carry_names:
                members[key].append(row)

        for (cds_code, category), acc in groups.items():
            total, grades, incomplete = acc.build()
            names = _ancestor_names(members[(cds_code, category)], level) if carry_names else {}
            aggregates.append(WideEnrollmentRow(
                end_year=end_year,
                cds_code=cds_code,
                agg_level=level,
                reporting_category=category,
                total_enrollment=total,
                grades=grades,
                county_name=names.get("county_name"),
                district_name=names.get("district_name"),
                school_name=None,
                charter_status=CHARTER_ALL,
                completeness=incomplete,
            ))

    aggregates.sort(key=lambda r: (r.cds_code, code_map.sort_key(r.reporting_category)))
    logger.info(
        f"{end_year}: synthesized {len(aggregates):,} aggregate rows "
        f"from {len(schools):,} school rows ({summarize_counts(counts_by_level(aggregates))})"
    )
    return aggregates


def synthesize_hierarchy(
    school_rows: Iterable[WideEnrollmentRow],
    report: Optional[QualityReport] = None,
    carry_names: bool = False,
) -> List[WideEnrollmentRow]:
    """School rows plus their synthesized district/county/state rows."""
    school_rows = list(school_rows)
    return aggregate(school_rows, report=report, carry_names=carry_names) + school_rows
