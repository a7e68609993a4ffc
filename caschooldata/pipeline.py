"""
Batch driver for California school data

This module orchestrates one year's data flow:
1. Cache lookup (optional)
2. Download raw table
3. Normalize to canonical wide rows (era adapter + aggregate synthesis)
4. Tidy to long rows with percentages
5. Cache write (optional)

Graduation, assessment and school directory fetchers follow the same
cache-or-build flow with their own processors.

Usage:
    from caschooldata import fetch_enr, fetch_enr_multi

    enr = fetch_enr(2024)
    history = fetch_enr_multi(range(2019, 2025), max_workers=4)
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional

import pandas as pd

from caschooldata.database.cache import TableCache
from caschooldata.download import get_raw_assessment, get_raw_directory, get_raw_enr, get_raw_graduation
from caschooldata.exceptions import UnsupportedYearError
from caschooldata.processing.assessment import (
    assessment_to_frame,
    assessment_years,
    process_assessment,
    tidy_assessment,
)
from caschooldata.processing.directory import directory_to_frame, process_directory
from caschooldata.processing.era_adapters import RawTable, era_for_year
from caschooldata.processing.graduation import graduation_to_frame, graduation_years, process_graduation
from caschooldata.processing.normalizer import SchemaNormalizer
from caschooldata.processing.quality import DataQualityWarning, QualityReport
from caschooldata.processing.records import (
    LongEnrollmentRow,
    WideEnrollmentRow,
    long_rows_to_frame,
    wide_rows_to_frame,
)
from caschooldata.processing.tidier import tidy
from caschooldata.utilities.common import load_settings

logger = logging.getLogger(__name__)

_cache: Optional[TableCache] = None
_cache_lock = threading.Lock()


def get_cache() -> TableCache:
    """Shared cache on the default database (created once, on first use)."""
    global _cache
    with _cache_lock:
        if _cache is None:
            _cache = TableCache()
        return _cache


@dataclass
class EnrollmentResult:
    """One processed year: wide rows, tidy rows and data-quality warnings."""
    end_year: int
    wide_rows: List[WideEnrollmentRow] = field(default_factory=list)
    rows: List[LongEnrollmentRow] = field(default_factory=list)
    warnings: List[DataQualityWarning] = field(default_factory=list)

    def to_frame(self, tidy: bool = True) -> pd.DataFrame:
        return long_rows_to_frame(self.rows) if tidy else wide_rows_to_frame(self.wide_rows)


def process_enrollment(
    raw_table: RawTable,
    end_year: int,
    report: Optional[QualityReport] = None,
    normalizer: Optional[SchemaNormalizer] = None,
) -> EnrollmentResult:
    """
    Run the pure core on one raw table: normalize, then tidy.

    Args:
        raw_table: Raw table of string cells
        end_year: School year end
        report: QualityReport to collect warnings into (created if None)
        normalizer: SchemaNormalizer to use (default eras if None)

    Returns:
        EnrollmentResult

    Raises:
        UnsupportedYearError: If no era covers the year
        MissingColumnError: If the era's mandatory columns are missing
    """
    report = report if report is not None else QualityReport(end_year)
    normalizer = normalizer or SchemaNormalizer()

    wide_rows = normalizer.normalize(raw_table, end_year, report)
    long_rows = tidy(wide_rows, report)
    report.log_summary(str(end_year))

    return EnrollmentResult(
        end_year=end_year,
        wide_rows=wide_rows,
        rows=long_rows,
        warnings=report.warnings,
    )


class EnrollmentPipeline:
    """
    Orchestrate fetching one year of enrollment data
    """

    def __init__(
        self,
        end_year: int,
        tidy: bool = True,
        use_cache: bool = True,
        cache: Optional[TableCache] = None,
        fetch_raw: Callable[[int], RawTable] = get_raw_enr,
    ):
        """
        Initialize pipeline

        Args:
            end_year: School year end (e.g., 2024 for 2023-24)
            tidy: Produce long rows (True) or wide rows (False)
            use_cache: Read and write the processed-table cache
            cache: Cache to use (default: shared cache)
            fetch_raw: Raw table provider (default: download from CDE)
        """
        self.end_year = end_year
        self.tidy = tidy
        self.use_cache = use_cache
        self._cache = cache
        self.fetch_raw = fetch_raw

        self.variant = "tidy" if tidy else "wide"
        self.report = QualityReport(end_year)
        self.raw_table: Optional[RawTable] = None
        self.result: Optional[EnrollmentResult] = None
        self.rows: Optional[list] = None
        self.from_cache = False
        self.error: Optional[Exception] = None

        self.steps_completed = []
        self.steps_failed = []

    @property
    def cache(self) -> TableCache:
        if self._cache is None:
            self._cache = get_cache()
        return self._cache

    def step_cache_lookup(self) -> bool:
        """Step 1: Use a fresh cached table if one exists"""
        if not self.use_cache:
            logger.debug("Cache disabled")
            return True

        if self.cache.exists(self.end_year, self.variant):
            self.rows = self.cache.read(self.end_year, self.variant)
            self.from_cache = self.rows is not None
            if self.from_cache:
                logger.info(f"{self.end_year}: using cached {self.variant} table ({len(self.rows):,} rows)")
        return True

    def step_download(self) -> bool:
        """Step 2: Download the raw table"""
        logger.info(f"STEP: DOWNLOAD {self.end_year}")
        self.raw_table = self.fetch_raw(self.end_year)
        return self.raw_table is not None

    def step_process(self) -> bool:
        """Step 3: Normalize and tidy"""
        logger.info(f"STEP: PROCESS {self.end_year}")
        self.result = process_enrollment(self.raw_table, self.end_year, self.report)
        self.rows = self.result.rows if self.tidy else self.result.wide_rows
        return True

    def step_cache_write(self) -> bool:
        """Step 4: Store the processed table"""
        if self.use_cache:
            self.cache.write(self.end_year, self.variant, self.rows)
        return True

    def run(self) -> bool:
        """
        Run the pipeline

        Returns:
            True if all steps succeeded
        """
        start_time = datetime.now()
        logger.info("=" * 60)
        logger.info(f"CA ENROLLMENT {self.end_year} ({self.variant})")
        logger.info("=" * 60)

        self.step_cache_lookup()
        if self.from_cache:
            self.steps_completed.append("Cache")
            return True

        steps = [
            ("Download", self.step_download),
            ("Process", self.step_process),
            ("Cache", self.step_cache_write),
        ]

        for step_name, step_func in steps:
            try:
                success = step_func()
                if success:
                    self.steps_completed.append(step_name)
                    logger.debug(f"{step_name} completed")
                else:
                    self.steps_failed.append(step_name)
                    logger.error(f"{step_name} failed")
                    break
            except Exception as e:
                self.steps_failed.append(step_name)
                self.error = e
                logger.error(f"{step_name} failed with exception: {e}")
                break

        duration = datetime.now() - start_time
        logger.info(f"{self.end_year}: {len(self.steps_completed)}/{len(steps)} steps in {duration}")
        return not self.steps_failed

    def frame(self) -> pd.DataFrame:
        rows = self.rows or []
        return long_rows_to_frame(rows) if self.tidy else wide_rows_to_frame(rows)


# =============================================================================
# PUBLIC FETCH FUNCTIONS
# =============================================================================


def fetch_enr(end_year: int, tidy: bool = True, use_cache: bool = True) -> pd.DataFrame:
    """
    Fetch one year of California enrollment data.

    Args:
        end_year: School year end (1982-2025)
        tidy: Long format with subgroup/grade rows and pct (True), or the
            canonical wide table (False)
        use_cache: Use the processed-table cache

    Returns:
        DataFrame

    Raises:
        UnsupportedYearError: If the year is outside every era
        DownloadError: If the source file cannot be downloaded

    Example:
        >>> enr = fetch_enr(2024)
        >>> enr[(enr.agg_level == "T") & (enr.grade_level == "TOTAL")]
    """
    era_for_year(end_year)
    pipeline = EnrollmentPipeline(end_year, tidy=tidy, use_cache=use_cache)
    if not pipeline.run():
        raise pipeline.error or RuntimeError(f"Enrollment pipeline failed for {end_year}")
    return pipeline.frame()


def fetch_enr_multi(
    end_years: Iterable[int],
    tidy: bool = True,
    use_cache: bool = True,
    max_workers: int = 1,
) -> pd.DataFrame:
    """
    Fetch several years and concatenate them in year order.

    Years are independent, so they may be processed in parallel worker
    threads; the demographic code map is shared read-only.

    Args:
        end_years: School year ends
        tidy: See fetch_enr()
        use_cache: See fetch_enr()
        max_workers: Worker threads (1 = sequential)

    Returns:
        DataFrame with all years
    """
    years = sorted(set(int(y) for y in end_years))
    for year in years:
        era_for_year(year)

    def fetch(year: int) -> pd.DataFrame:
        return fetch_enr(year, tidy=tidy, use_cache=use_cache)

    if max_workers > 1 and len(years) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            frames = list(pool.map(fetch, years))
    else:
        frames = [fetch(year) for year in years]

    if not frames:
        return pd.DataFrame()
    return pd.concat(frames, ignore_index=True)


def _cached_records(
    data_type: str,
    end_year: int,
    build: Callable[[], list],
    use_cache: bool = True,
    variant: str = "processed",
) -> list:
    """
    Processed records for one key: from the cache when a readable fresh
    entry exists, otherwise built and (when caching) written back.
    """
    cache = get_cache() if use_cache else None
    records = None
    if cache is not None and cache.exists(end_year, variant, data_type=data_type):
        records = cache.read(end_year, variant, data_type=data_type)
    if records is not None:
        logger.info(f"Using cached {data_type} data for {end_year} ({len(records):,} rows)")
        return records

    records = build()
    if cache is not None:
        cache.write(end_year, variant, records, data_type=data_type)
    return records


def get_available_grad_years() -> List[int]:
    """End years with a Dashboard graduation file."""
    return graduation_years()


def get_available_assess_years() -> Dict[str, object]:
    """
    CAASPP administration years.

    Returns:
        Dict with min_year, max_year, all_years, skipped_years and a note
    """
    config = load_settings()["years"]["assessment"]
    return {
        "min_year": int(config["min"]),
        "max_year": int(config["max"]),
        "all_years": assessment_years(),
        "skipped_years": sorted(int(y) for y in config.get("skip", [])),
        "note": (
            "CAASPP assessments started in 2014-15 (end_year=2015). "
            "2020 had no statewide testing due to COVID-19. "
            "2021 data has limited participation due to the pandemic."
        ),
    }


def fetch_graduation(end_year: int, use_cache: bool = True) -> pd.DataFrame:
    """
    Fetch one year of graduation rates.

    Raises:
        UnsupportedYearError: If the year has no graduation file
    """
    if end_year not in graduation_years():
        raise UnsupportedYearError(end_year, graduation_years(), domain="graduation")

    def build():
        report = QualityReport(end_year)
        records = process_graduation(get_raw_graduation(end_year), end_year, report)
        report.log_summary(f"graduation {end_year}")
        return records

    return graduation_to_frame(_cached_records("graduation", end_year, build, use_cache))


def fetch_graduation_multi(end_years: Iterable[int], use_cache: bool = True) -> pd.DataFrame:
    """
    Fetch several years of graduation rates, concatenated in year order.

    Raises:
        UnsupportedYearError: If any year has no graduation file (checked
            before anything is downloaded)
    """
    years = sorted(set(int(y) for y in end_years))
    available = graduation_years()
    for year in years:
        if year not in available:
            raise UnsupportedYearError(year, available, domain="graduation")

    frames = []
    for year in years:
        logger.info(f"Fetching graduation {year}")
        frames.append(fetch_graduation(year, use_cache=use_cache))
    if not frames:
        return pd.DataFrame()
    return pd.concat(frames, ignore_index=True)


def fetch_assessment(end_year: int, tidy: bool = False, use_cache: bool = True) -> pd.DataFrame:
    """
    Fetch one year of CAASPP Smarter Balanced results.

    Args:
        end_year: School year end (2015-2025, no 2020)
        tidy: Pivot metrics into metric_type/metric_value rows
        use_cache: Use the processed-table cache

    Raises:
        UnsupportedYearError: If there was no administration that year
    """
    if end_year not in assessment_years():
        raise UnsupportedYearError(end_year, assessment_years(), domain="assessment")

    def build():
        report = QualityReport(end_year)
        test_table, entities = get_raw_assessment(end_year)
        records = process_assessment(test_table, end_year, entities, report)
        report.log_summary(f"assessment {end_year}")
        return records

    records = _cached_records("assessment", end_year, build, use_cache)
    return tidy_assessment(records) if tidy else assessment_to_frame(records)


def fetch_assess_multi(end_years: Iterable[int], tidy: bool = False, use_cache: bool = True) -> pd.DataFrame:
    """
    Fetch several years of CAASPP results, concatenated in year order.

    Years without a statewide administration (2020) are dropped with a
    warning; any other unsupported year fails the whole request before
    anything is downloaded.

    Args:
        end_years: School year ends
        tidy: See fetch_assessment()
        use_cache: See fetch_assessment()

    Raises:
        UnsupportedYearError: If a year is outside the CAASPP range
    """
    available = get_available_assess_years()
    years = sorted(set(int(y) for y in end_years))
    skipped = [y for y in years if y in available["skipped_years"]]
    if skipped:
        logger.warning(f"Excluding {skipped}: no statewide CAASPP testing")
        years = [y for y in years if y not in skipped]
    for year in years:
        if year not in available["all_years"]:
            raise UnsupportedYearError(year, available["all_years"], domain="assessment")

    frames = []
    for year in years:
        logger.info(f"Fetching assessment {year}")
        frames.append(fetch_assessment(year, tidy=tidy, use_cache=use_cache))
    if not frames:
        return pd.DataFrame()
    return pd.concat(frames, ignore_index=True)


# The directory is a current snapshot, so it is cached under one fixed key.
DIRECTORY_KEY = 0


def fetch_directory(tidy: bool = True, use_cache: bool = True) -> pd.DataFrame:
    """
    Fetch the current CDE school directory.

    Args:
        tidy: Standardized columns with CDS segments, agg_level and
            charter_status (True), or the raw export (False, never cached)
        use_cache: Use the processed-table cache

    Returns:
        DataFrame, one row per school or district

    Example:
        >>> directory = fetch_directory()
        >>> directory[(directory.agg_level == "S") & (directory.status == "Active")]
    """
    if not tidy:
        return get_raw_directory()

    def build():
        report = QualityReport()
        records = process_directory(get_raw_directory(), report)
        report.log_summary("directory")
        return records

    return directory_to_frame(_cached_records("directory", DIRECTORY_KEY, build, use_cache, variant="tidy"))


def clear_directory_cache() -> int:
    """
    Remove the cached school directory.

    Returns:
        Number of cache entries removed
    """
    return get_cache().clear(data_type="directory")
