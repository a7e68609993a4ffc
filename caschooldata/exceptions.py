"""
Error taxonomy for caschooldata.

Fatal errors abort the year being processed (UnsupportedYearError,
MissingColumnError). Row-level and value-level errors (MalformedIdentifierError,
ValueParseError) are caught by the processing layer, recorded as data-quality
warnings, and never stop a batch.
"""

from typing import Iterable, Optional, Sequence


class CaSchoolDataError(Exception):
    """Base class for all caschooldata errors."""
    pass


class UnsupportedYearError(CaSchoolDataError, ValueError):
    """Raised when no era or data product covers the requested year."""

    def __init__(self, year, supported: Optional[Iterable[int]] = None, domain: str = "enrollment"):
        self.year = year
        self.supported = sorted(supported) if supported is not None else []
        self.domain = domain
        if self.supported:
            bounds = f"{self.supported[0]}-{self.supported[-1]}"
            message = f"No {domain} data for end_year {year}; supported years are {bounds}"
        else:
            message = f"No {domain} data for end_year {year}"
        super().__init__(message)


class MalformedIdentifierError(CaSchoolDataError, ValueError):
    """Raised when a CDS code cannot be decomposed into fixed-width segments."""

    def __init__(self, value, reason: str = "not a valid CDS code"):
        self.value = value
        self.reason = reason
        super().__init__(f"Malformed CDS identifier {value!r}: {reason}")


class MissingColumnError(CaSchoolDataError):
    """Raised when a mandatory raw column matches none of its accepted spellings."""

    def __init__(self, field: str, spellings: Sequence[str], era: str = ""):
        self.field = field
        self.spellings = tuple(spellings)
        self.era = era
        where = f" in {era} file" if era else ""
        super().__init__(
            f"Required column '{field}' not found{where}; "
            f"accepted spellings: {', '.join(self.spellings)}"
        )


class ValueParseError(CaSchoolDataError, ValueError):
    """Raised for a cell that is neither numeric nor a suppression token."""

    def __init__(self, text):
        self.text = text
        super().__init__(f"Cannot parse {text!r} as a number")


class DownloadError(CaSchoolDataError):
    """Raised when a source file cannot be downloaded or looks like an error page."""
    pass


class CachePayloadError(CaSchoolDataError, ValueError):
    """Raised when a cached payload cannot be decoded into known record types."""
    pass
