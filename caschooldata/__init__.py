"""
California school data for Python.

Multi-era schema reconciliation for CDE enrollment files (1982-present),
plus graduation rates, CAASPP assessment results and the school directory.
"""

from .exceptions import (
    CaSchoolDataError,
    DownloadError,
    MalformedIdentifierError,
    MissingColumnError,
    UnsupportedYearError,
    ValueParseError,
)
from .pipeline import (
    EnrollmentPipeline,
    EnrollmentResult,
    clear_directory_cache,
    fetch_assess_multi,
    fetch_assessment,
    fetch_directory,
    fetch_enr,
    fetch_enr_multi,
    fetch_graduation,
    fetch_graduation_multi,
    get_available_assess_years,
    get_available_grad_years,
    process_enrollment,
)
from .processing.assessment import calc_assess_trend, id_assess_aggs, summarize_proficiency
from .processing.era_adapters import era_for_year, supported_years
from .processing.normalizer import SchemaNormalizer, normalize
from .processing.quality import DataQualityWarning, QualityReport, WarningCode
from .processing.suppression import SUPPRESSED, Completeness, parse
from .processing.tidier import add_aggregation_flags, tidy
from .utilities.cds_codes import AggregationLevel, CdsCode, classify, compose, decompose
from .utilities.common import load_settings, setup_logging

__version__ = "0.1.0"

__all__ = [
    "AggregationLevel",
    "CaSchoolDataError",
    "CdsCode",
    "Completeness",
    "DataQualityWarning",
    "DownloadError",
    "EnrollmentPipeline",
    "EnrollmentResult",
    "MalformedIdentifierError",
    "MissingColumnError",
    "QualityReport",
    "SUPPRESSED",
    "SchemaNormalizer",
    "UnsupportedYearError",
    "ValueParseError",
    "WarningCode",
    "add_aggregation_flags",
    "calc_assess_trend",
    "classify",
    "clear_directory_cache",
    "compose",
    "decompose",
    "era_for_year",
    "fetch_assess_multi",
    "fetch_assessment",
    "fetch_directory",
    "fetch_enr",
    "fetch_enr_multi",
    "fetch_graduation",
    "fetch_graduation_multi",
    "get_available_assess_years",
    "get_available_grad_years",
    "id_assess_aggs",
    "load_settings",
    "normalize",
    "parse",
    "process_enrollment",
    "setup_logging",
    "summarize_proficiency",
    "supported_years",
    "tidy",
]
