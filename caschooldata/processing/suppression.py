"""
Suppressed-value handling for CDE data files.

CDE redacts small cells (10 or fewer students) with an asterisk. A
suppressed cell is neither zero nor a missing column, so parsing returns
an explicit SUPPRESSED marker instead of None or NaN.

Usage:
    from caschooldata.processing.suppression import parse, SUPPRESSED

    parse("1,234")    # 1234
    parse("*")        # SUPPRESSED
    parse("")         # SUPPRESSED
"""

import logging
import math
import re
from enum import Enum
from typing import Iterable, Optional, Sequence, Union

from caschooldata.exceptions import ValueParseError
from caschooldata.processing.quality import QualityReport, WarningCode
from caschooldata.utilities.common import load_settings

logger = logging.getLogger(__name__)

# =============================================================================
# MARKERS
# =============================================================================


class Suppression(Enum):
    """Marker type for redacted values. Use the module-level SUPPRESSED."""
    SUPPRESSED = "suppressed"

    def __repr__(self) -> str:
        return "SUPPRESSED"


SUPPRESSED = Suppression.SUPPRESSED


class Completeness(str, Enum):
    """
    How much of a value is backed by unsuppressed source cells.

    COMPLETE: every contributing cell was a number.
    PARTIAL: some contributing cells were suppressed; the value is a lower bound.
    SUPPRESSED: every contributing cell was suppressed; no value is reported.
    """
    COMPLETE = "complete"
    PARTIAL = "partial"
    SUPPRESSED = "suppressed"


Number = Union[int, float]
ParsedValue = Union[int, float, Suppression]

DEFAULT_SUPPRESSION_TOKENS = ("*",)

_NUMBER = re.compile(r"[+-]?(?:\d+(?:\.\d*)?|\.\d+)")


def get_suppression_tokens() -> tuple:
    """Suppression tokens from settings, falling back to the asterisk."""
    tokens = load_settings().get("suppression", {}).get("tokens")
    return tuple(tokens) if tokens else DEFAULT_SUPPRESSION_TOKENS


# =============================================================================
# PARSING
# =============================================================================


def parse(text, tokens: Optional[Sequence[str]] = None) -> ParsedValue:
    """
    Convert a raw cell to a number or SUPPRESSED.

    Thousands separators and surrounding whitespace are removed. The
    suppression token(s) and the empty string map to SUPPRESSED.

    Args:
        text: Raw cell (usually a string; ints/floats pass through)
        tokens: Suppression tokens (default: settings, i.e. "*")

    Returns:
        int for integral values, float otherwise, or SUPPRESSED

    Raises:
        ValueParseError: For any other non-numeric content

    Examples:
        >>> parse("1,234")
        1234
        >>> parse(" * ")
        SUPPRESSED
        >>> parse("12.5")
        12.5
    """
    if text is None or text is SUPPRESSED:
        return SUPPRESSED
    if isinstance(text, bool):
        raise ValueParseError(text)
    if isinstance(text, int):
        return text
    if isinstance(text, float):
        if math.isnan(text):
            return SUPPRESSED
        if math.isinf(text):
            raise ValueParseError(text)
        return int(text) if text.is_integer() else text

    stripped = str(text).strip()
    if not stripped:
        return SUPPRESSED
    if stripped in (tokens if tokens is not None else get_suppression_tokens()):
        return SUPPRESSED

    cleaned = stripped.replace(",", "")
    if not _NUMBER.fullmatch(cleaned):
        raise ValueParseError(text)

    if "." in cleaned:
        value = float(cleaned)
        return int(value) if value.is_integer() else value
    return int(cleaned)


def parse_or_suppressed(
    text,
    report: Optional[QualityReport] = None,
    cds_code: Optional[str] = None,
    field: Optional[str] = None,
    tokens: Optional[Sequence[str]] = None,
) -> ParsedValue:
    """
    parse() that records unparseable content as a warning and returns SUPPRESSED.

    Args:
        text: Raw cell
        report: QualityReport receiving an unparseable_value warning
        cds_code: Entity the cell belongs to (for the warning)
        field: Logical field name (for the warning)
        tokens: Suppression tokens

    Returns:
        Parsed value, or SUPPRESSED if the cell could not be parsed
    """
    try:
        return parse(text, tokens)
    except ValueParseError as e:
        if report is not None:
            where = f" in {field}" if field else ""
            report.add(
                WarningCode.UNPARSEABLE_VALUE,
                f"Unparseable value {e.text!r}{where}; treated as suppressed",
                cds_code=cds_code,
                detail=field,
            )
        else:
            logger.debug(f"Unparseable value {e.text!r}; treated as suppressed")
        return SUPPRESSED


def parse_count(
    text,
    report: Optional[QualityReport] = None,
    cds_code: Optional[str] = None,
    field: Optional[str] = None,
    tokens: Optional[Sequence[str]] = None,
) -> ParsedValue:
    """parse_or_suppressed() that also reports negative counts (the value is kept)."""
    value = parse_or_suppressed(text, report, cds_code=cds_code, field=field, tokens=tokens)
    if value is not SUPPRESSED and value < 0 and report is not None:
        report.add(
            WarningCode.NEGATIVE_COUNT,
            f"Negative count {value} in {field or 'count'}",
            cds_code=cds_code,
            detail=field,
        )
    return value


# =============================================================================
# HELPERS
# =============================================================================


def is_suppressed(value) -> bool:
    return value is SUPPRESSED


def numeric_or_none(value) -> Optional[Number]:
    """Numeric value, or None for SUPPRESSED / missing (for DataFrame output)."""
    if value is None or value is SUPPRESSED:
        return None
    return value


def sum_with_completeness(values: Iterable[ParsedValue]):
    """
    Sum values, treating SUPPRESSED as zero while tracking completeness.

    Args:
        values: Numbers and/or SUPPRESSED markers (None entries are skipped)

    Returns:
        (total, Completeness). total is SUPPRESSED when every contributing
        value was suppressed, and None when there were no values at all.

    Examples:
        >>> sum_with_completeness([3, SUPPRESSED, 4])
        (7, <Completeness.PARTIAL: 'partial'>)
        >>> sum_with_completeness([SUPPRESSED, SUPPRESSED])
        (SUPPRESSED, <Completeness.SUPPRESSED: 'suppressed'>)
    """
    total = 0
    seen = suppressed = 0
    for value in values:
        if value is None:
            continue
        seen += 1
        if value is SUPPRESSED:
            suppressed += 1
        else:
            total += value

    if seen == 0:
        return None, Completeness.COMPLETE
    if suppressed == seen:
        return SUPPRESSED, Completeness.SUPPRESSED
    if suppressed:
        return total, Completeness.PARTIAL
    return total, Completeness.COMPLETE


def combine_completeness(states: Iterable[Completeness]) -> Completeness:
    """
    Completeness of a sum whose inputs carry their own completeness.

    Any partial input, or a mix of suppressed and complete inputs, yields
    PARTIAL; all-suppressed stays SUPPRESSED.
    """
    states = list(states)
    if not states:
        return Completeness.COMPLETE
    if all(s == Completeness.SUPPRESSED for s in states):
        return Completeness.SUPPRESSED
    if all(s == Completeness.COMPLETE for s in states):
        return Completeness.COMPLETE
    return Completeness.PARTIAL
