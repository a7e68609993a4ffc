"""
California CDS Code Utility

Handles the County-District-School (CDS) identifier used by every CDE file.

California CDS Format:
- 14 digits: CCDDDDDSSSSSSS
  - CC: County code (2 digits)
  - DDDDD: District code (5 digits)
  - SSSSSSS: School code (7 digits, 0000000 for district-level)
- All-zero segments mark aggregate rows:
  - 00 00000 0000000: state
  - CC 00000 0000000: county
  - CC DDDDD 0000000: district

Segments are always taken by fixed-offset slicing. Composition refuses
missing values outright, so a blank or NA field can never be padded into
an identifier (the "0NA" failure mode of sprintf-style padding).

Usage:
    from caschooldata.utilities.cds_codes import decompose, classify, compose

    code = decompose("1964733012345")      # padded to 14 digits
    classify("19647330000000")             # AggregationLevel.DISTRICT
    compose("19", "64733", 0)              # '19647330000000'
"""

import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import Union

from caschooldata.exceptions import MalformedIdentifierError

COUNTY_WIDTH = 2
DISTRICT_WIDTH = 5
SCHOOL_WIDTH = 7
CDS_WIDTH = COUNTY_WIDTH + DISTRICT_WIDTH + SCHOOL_WIDTH

ZERO_COUNTY = "0" * COUNTY_WIDTH
ZERO_DISTRICT = "0" * DISTRICT_WIDTH
ZERO_SCHOOL = "0" * SCHOOL_WIDTH
STATE_CDS_CODE = "0" * CDS_WIDTH

_DIGITS = re.compile(r"[0-9]+")


class AggregationLevel(Enum):
    """Hierarchy tier of a CDS code. Values are CDE's Aggregate Level letters."""
    STATE = "T"
    COUNTY = "C"
    DISTRICT = "D"
    SCHOOL = "S"

    @property
    def label(self) -> str:
        return self.name.title()

    @classmethod
    def from_letter(cls, letter: str) -> "AggregationLevel":
        return cls(str(letter).strip().upper())


@dataclass(frozen=True)
class CdsCode:
    """A decomposed CDS code. Build with decompose() or compose()."""
    county: str
    district: str
    school: str

    @property
    def code(self) -> str:
        return self.county + self.district + self.school

    @property
    def district_id(self) -> str:
        """7-digit county + district LEA code."""
        return self.county + self.district

    @property
    def level(self) -> "AggregationLevel":
        return classify(self)

    def __str__(self) -> str:
        return self.code


def validate_cds_code(cds_code: str) -> bool:
    """
    Validate a full 14-digit CDS code.

    Args:
        cds_code: CDS code to validate

    Returns:
        True if the code is exactly 14 ASCII digits
    """
    if not cds_code or not isinstance(cds_code, str):
        return False
    return len(cds_code) == CDS_WIDTH and bool(_DIGITS.fullmatch(cds_code))


def decompose(identifier: Union[str, int]) -> CdsCode:
    """
    Split a CDS code into county, district and school segments.

    Short codes (leading zeros lost by a spreadsheet) are left-padded to
    14 digits before slicing.

    Args:
        identifier: CDS code as a string or non-negative integer

    Returns:
        CdsCode with 2/5/7 digit segments

    Raises:
        MalformedIdentifierError: If the code is empty, too long, or has
            anything other than digits after padding

    Example:
        >>> decompose("1100170000000").county
        '01'
    """
    if isinstance(identifier, CdsCode):
        return identifier
    if isinstance(identifier, bool) or identifier is None:
        raise MalformedIdentifierError(identifier, "missing value")
    if isinstance(identifier, int):
        if identifier < 0:
            raise MalformedIdentifierError(identifier, "negative number")
        identifier = str(identifier)
    if not isinstance(identifier, str):
        raise MalformedIdentifierError(identifier, f"unsupported type {type(identifier).__name__}")

    text = identifier.strip()
    if not text:
        raise MalformedIdentifierError(identifier, "empty value")
    if len(text) > CDS_WIDTH:
        raise MalformedIdentifierError(identifier, f"longer than {CDS_WIDTH} characters")

    padded = text.zfill(CDS_WIDTH)
    if not _DIGITS.fullmatch(padded):
        raise MalformedIdentifierError(identifier, "contains non-digit characters")

    return CdsCode(
        county=padded[:COUNTY_WIDTH],
        district=padded[COUNTY_WIDTH:COUNTY_WIDTH + DISTRICT_WIDTH],
        school=padded[COUNTY_WIDTH + DISTRICT_WIDTH:],
    )


def classify(identifier: Union[str, int, CdsCode]) -> AggregationLevel:
    """
    Identify the aggregation level of a CDS code from its zero pattern.

    Checks run State -> County -> District -> School; the state code also
    matches the county pattern, so the order matters.

    Args:
        identifier: CDS code or CdsCode

    Returns:
        AggregationLevel

    Raises:
        MalformedIdentifierError: If the code cannot be decomposed
    """
    code = decompose(identifier)
    if code.county == ZERO_COUNTY and code.district == ZERO_DISTRICT and code.school == ZERO_SCHOOL:
        return AggregationLevel.STATE
    if code.district == ZERO_DISTRICT and code.school == ZERO_SCHOOL:
        return AggregationLevel.COUNTY
    if code.school == ZERO_SCHOOL:
        return AggregationLevel.DISTRICT
    return AggregationLevel.SCHOOL


def _segment(value, width: int, name: str) -> str:
    """Render one segment, refusing anything that is not a non-negative integer."""
    if value is None or isinstance(value, bool):
        raise MalformedIdentifierError(value, f"{name} code is missing")

    if isinstance(value, float):
        if math.isnan(value) or not value.is_integer():
            raise MalformedIdentifierError(value, f"{name} code is not an integer")
        value = int(value)

    if isinstance(value, int):
        if value < 0 or value >= 10 ** width:
            raise MalformedIdentifierError(value, f"{name} code out of range for {width} digits")
        return str(value).zfill(width)

    text = str(value).strip()
    if not text:
        raise MalformedIdentifierError(value, f"{name} code is blank")
    if len(text) > width or not _DIGITS.fullmatch(text):
        raise MalformedIdentifierError(value, f"{name} code is not a {width}-digit number")
    return text.zfill(width)


def compose(county, district, school) -> str:
    """
    Build a 14-digit CDS code from its three segments.

    Each segment must be a non-negative integer (or digit string) that fits
    its width; pass 0 or the zero string for an aggregate level.

    Args:
        county: County code (2 digits)
        district: District code (5 digits)
        school: School code (7 digits)

    Returns:
        14-digit CDS code

    Raises:
        MalformedIdentifierError: If any segment is missing or invalid

    Example:
        >>> compose("1", "10017", "1")
        '01100170000001'
    """
    return (
        _segment(county, COUNTY_WIDTH, "county")
        + _segment(district, DISTRICT_WIDTH, "district")
        + _segment(school, SCHOOL_WIDTH, "school")
    )


def district_code_for(identifier: Union[str, CdsCode]) -> str:
    """CDS code of the district that contains this entity."""
    code = decompose(identifier)
    return code.county + code.district + ZERO_SCHOOL


def county_code_for(identifier: Union[str, CdsCode]) -> str:
    """CDS code of the county that contains this entity."""
    code = decompose(identifier)
    return code.county + ZERO_DISTRICT + ZERO_SCHOOL
