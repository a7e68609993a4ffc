"""
Data-quality warnings collected while processing one year of data.

Warnings never change control flow. They are gathered in a QualityReport
that travels with the year's result so callers can audit what happened
(suppressed denominators, missing state rows, unparseable cells, ...).
"""

import logging
from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Hashable, Iterator, List, Optional, Set

logger = logging.getLogger(__name__)


class WarningCode(str, Enum):
    MISSING_TOTAL_ROW = "missing_total_row"
    SUPPRESSED_DENOMINATOR = "suppressed_denominator"
    ZERO_DENOMINATOR = "zero_denominator"
    PERCENTAGE_OUT_OF_RANGE = "percentage_out_of_range"
    NEGATIVE_COUNT = "negative_count"
    MISSING_STATE_ROWS = "missing_state_rows"
    UNPARSEABLE_VALUE = "unparseable_value"
    MALFORMED_IDENTIFIER = "malformed_identifier"
    UNMAPPED_CODE = "unmapped_code"
    DUPLICATE_TOTAL_ROW = "duplicate_total_row"
    AGGREGATION_LEVEL_MISMATCH = "aggregation_level_mismatch"


@dataclass(frozen=True)
class DataQualityWarning:
    """A single non-fatal data-quality finding."""
    code: WarningCode
    message: str
    end_year: Optional[int] = None
    cds_code: Optional[str] = None
    detail: Optional[str] = None

    def __str__(self) -> str:
        where = []
        if self.end_year is not None:
            where.append(str(self.end_year))
        if self.cds_code:
            where.append(self.cds_code)
        prefix = f"[{self.code.value}]"
        if where:
            prefix += f" ({'/'.join(where)})"
        return f"{prefix} {self.message}"


class QualityReport:
    """
    Append-only collection of DataQualityWarning objects.

    One report is created per processed year; it is not shared between
    workers.

    Example:
        >>> report = QualityReport(end_year=2024)
        >>> report.add(WarningCode.MISSING_STATE_ROWS, "no state row")
        >>> report.counts()
        {'missing_state_rows': 1}
    """

    def __init__(self, end_year: Optional[int] = None):
        self.end_year = end_year
        self._warnings: List[DataQualityWarning] = []
        self._seen: Set[Hashable] = set()

    def add(
        self,
        code: WarningCode,
        message: str,
        cds_code: Optional[str] = None,
        detail: Optional[str] = None,
        end_year: Optional[int] = None,
    ) -> DataQualityWarning:
        warning = DataQualityWarning(
            code=WarningCode(code),
            message=message,
            end_year=end_year if end_year is not None else self.end_year,
            cds_code=cds_code,
            detail=detail,
        )
        self._warnings.append(warning)
        logger.debug(str(warning))
        return warning

    def add_once(self, key: Hashable, code: WarningCode, message: str, **kwargs) -> Optional[DataQualityWarning]:
        """Add a warning only the first time `key` is seen in this report."""
        if key in self._seen:
            return None
        self._seen.add(key)
        return self.add(code, message, **kwargs)

    def extend(self, warnings) -> None:
        for warning in warnings:
            self._warnings.append(warning)

    @property
    def warnings(self) -> List[DataQualityWarning]:
        return list(self._warnings)

    def by_code(self, code: WarningCode) -> List[DataQualityWarning]:
        code = WarningCode(code)
        return [w for w in self._warnings if w.code == code]

    def has(self, code: WarningCode) -> bool:
        return bool(self.by_code(code))

    def counts(self) -> Dict[str, int]:
        return dict(Counter(w.code.value for w in self._warnings))

    def log_summary(self, label: str = "") -> None:
        """Log one INFO line with warning counts by code."""
        name = label or (str(self.end_year) if self.end_year is not None else "batch")
        if not self._warnings:
            logger.info(f"{name}: no data-quality warnings")
            return
        summary = ", ".join(f"{code}={count:,}" for code, count in sorted(self.counts().items()))
        logger.info(f"{name}: {len(self._warnings):,} data-quality warnings ({summary})")

    def __len__(self) -> int:
        return len(self._warnings)

    def __iter__(self) -> Iterator[DataQualityWarning]:
        return iter(list(self._warnings))

    def __repr__(self) -> str:
        return f"<QualityReport(end_year={self.end_year}, warnings={len(self._warnings)})>"
