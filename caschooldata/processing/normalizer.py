"""
Schema normalizer: one raw table + year -> the year's canonical wide rows.
"""

import dataclasses
import logging
from typing import List, Optional, Sequence

from caschooldata.processing.aggregator import synthesize_hierarchy
from caschooldata.processing.era_adapters import EraAdapter, RawTable, era_for_year, get_eras
from caschooldata.processing.quality import QualityReport, WarningCode
from caschooldata.processing.records import WideEnrollmentRow, counts_by_level
from caschooldata.utilities.cds_codes import AggregationLevel
from caschooldata.utilities.common import summarize_counts

logger = logging.getLogger(__name__)


class SchemaNormalizer:
    """
    Selects the era adapter for a year, runs it, and synthesizes aggregates
    for eras whose files carry school rows only.

    Example:
        >>> normalizer = SchemaNormalizer()
        >>> rows = normalizer.normalize(raw_table, 2010)
    """

    def __init__(self, eras: Optional[Sequence[EraAdapter]] = None, carry_names: bool = False):
        self.eras = tuple(eras) if eras is not None else get_eras()
        self.carry_names = carry_names

    def era_for(self, year: int) -> EraAdapter:
        return era_for_year(year, self.eras)

    def normalize(
        self,
        raw_table: RawTable,
        year: int,
        report: Optional[QualityReport] = None,
    ) -> List[WideEnrollmentRow]:
        """
        Produce the complete wide row set for one year.

        Args:
            raw_table: Raw table of string cells (DataFrame or header + rows)
            year: School year end; stamped on every output row
            report: QualityReport receiving warnings (created if None)

        Returns:
            WideEnrollmentRow list covering all four aggregation levels

        Raises:
            UnsupportedYearError: If no era covers `year`
            MissingColumnError: If the era's mandatory columns are missing
        """
        era = self.era_for(year)
        report = report if report is not None else QualityReport(year)
        logger.debug(f"{year}: using {era!r}")

        rows = era.adapt(raw_table, year, report)
        if not era.native_aggregates:
            rows = synthesize_hierarchy(rows, report=report, carry_names=self.carry_names)

        rows = [row if row.end_year == year else dataclasses.replace(row, end_year=year) for row in rows]

        if not any(row.agg_level == AggregationLevel.STATE for row in rows):
            report.add(
                WarningCode.MISSING_STATE_ROWS,
                "No state-level rows after normalization",
                end_year=year,
            )

        logger.info(f"{year}: normalized {len(rows):,} wide rows ({summarize_counts(counts_by_level(rows))})")
        return rows


def normalize(
    raw_table: RawTable,
    year: int,
    report: Optional[QualityReport] = None,
) -> List[WideEnrollmentRow]:
    """normalize() with the default era set."""
    return SchemaNormalizer().normalize(raw_table, year, report)
