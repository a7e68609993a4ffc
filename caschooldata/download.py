"""
Download and raw-table reading for CDE and CAASPP source files.

Sources:
- Census-day enrollment (2024+): https://www.cde.ca.gov/ds/ad/filesenrcensus.asp
- Historical school enrollment (1982-2023): https://www.cde.ca.gov/ds/ad/fileshistenr8122.asp
- Graduation (Dashboard): https://www3.cde.ca.gov/researchfiles/cadashboard
- CAASPP research files: https://caaspp-elpac.ets.org/caaspp/ResearchFileListSB
- School directory: https://www.cde.ca.gov/SchoolDirectory/

Every reader returns string cells only (dtype=str, keep_default_na=False):
value parsing and suppression handling belong to the processing layer.
"""

import logging
import tempfile
import zipfile
from pathlib import Path
from typing import Optional, Tuple, Union

import pandas as pd
import requests

from caschooldata.exceptions import DownloadError, UnsupportedYearError
from caschooldata.utilities.common import load_settings

logger = logging.getLogger(__name__)

# =============================================================================
# URL BUILDERS
# =============================================================================


def _year_code(end_year: int) -> str:
    """'2324' for end_year 2024."""
    return f"{(end_year - 1) % 100:02d}{end_year % 100:02d}"


def _base_url(kind: str) -> str:
    return load_settings()["download"]["base_urls"][kind].rstrip("/")


def build_enr_url(end_year: int) -> str:
    """
    Census-day enrollment file URL (2024+).

    Examples:
        >>> build_enr_url(2025)
        'https://www3.cde.ca.gov/demo-downloads/census/cdenroll2425.txt'
    """
    suffix = "-v2" if end_year == 2024 else ""
    return f"{_base_url('census')}/cdenroll{_year_code(end_year)}{suffix}.txt"


def build_cumulative_enr_url(end_year: int) -> str:
    """Cumulative enrollment file URL."""
    return f"{_base_url('cumulative')}/cenroll{_year_code(end_year)}.txt"


def build_historical_enr_url(end_year: int) -> str:
    """
    Historical school enrollment file URL.

    Each historical file bundles a span of school years.

    Raises:
        UnsupportedYearError: If no historical file covers the year
    """
    files = load_settings()["historical_files"]
    for entry in files:
        if int(entry["first"]) <= end_year <= int(entry["last"]):
            return f"{_base_url('historical')}/{entry['file']}"
    supported = [y for entry in files for y in range(int(entry["first"]), int(entry["last"]) + 1)]
    raise UnsupportedYearError(end_year, supported, domain="historical enrollment")


def build_grad_url(end_year: int) -> str:
    return f"{_base_url('graduation')}/graddownload{end_year}.xlsx"


CAASPP_FILE_TYPES = {
    "1": "sb_ca{year}_1_{fmt}_{version}.zip",
    "all": "sb_ca{year}_all_{fmt}_{version}.zip",
    "all_ela": "sb_ca{year}_all_{fmt}_ela_{version}.zip",
    "all_math": "sb_ca{year}_all_{fmt}_math_{version}.zip",
}


def build_caaspp_url(end_year: int, file_type: str = "1", fmt: str = "csv") -> str:
    """
    CAASPP Smarter Balanced research file URL.

    Args:
        end_year: School year end
        file_type: "1" (all students), "all", "all_ela" or "all_math"
        fmt: "csv" (caret-delimited) or "ascii"
    """
    if file_type not in CAASPP_FILE_TYPES:
        raise ValueError(f"Unknown CAASPP file type: {file_type}")
    version = load_settings().get("caaspp_versions", {}).get(end_year, "v1")
    filename = CAASPP_FILE_TYPES[file_type].format(year=end_year, fmt=fmt, version=version)
    return f"{_base_url('assessment')}/{filename}"


def build_entities_url(end_year: int, fmt: str = "csv") -> str:
    return f"{_base_url('assessment')}/sb_ca{end_year}entities_{fmt}.zip"


def build_directory_url() -> str:
    """
    School directory export URL (Excel, administrator names included).

    Examples:
        >>> build_directory_url()
        'https://www.cde.ca.gov/SchoolDirectory/report?rid=dl1&tp=xlsx&ict=Y'
    """
    return f"{_base_url('directory')}/report?rid=dl1&tp=xlsx&ict=Y"


# =============================================================================
# DOWNLOAD
# =============================================================================


def download_file(
    url: str,
    output_path: Path,
    timeout: Optional[int] = None,
    min_bytes: int = 0,
) -> Path:
    """
    Download a file from a URL

    Args:
        url: URL to download from
        output_path: Where to save the file
        timeout: Request timeout in seconds (default: settings)
        min_bytes: Smaller files are rejected as error pages

    Returns:
        output_path

    Raises:
        DownloadError: On HTTP/transport failure or a too-small file
    """
    settings = load_settings()["download"]
    timeout = timeout or settings.get("timeout_seconds", 300)
    chunk_size = settings.get("chunk_size", 65536)
    output_path = Path(output_path)

    try:
        logger.info(f"Downloading: {url}")

        response = requests.get(url, stream=True, timeout=timeout)
        response.raise_for_status()

        with open(output_path, 'wb') as f:
            for chunk in response.iter_content(chunk_size=chunk_size):
                if chunk:
                    f.write(chunk)

    except requests.exceptions.RequestException as e:
        logger.error(f"Download failed: {e}")
        raise DownloadError(f"Failed to download {url}: {e}") from e

    size = output_path.stat().st_size
    if size < min_bytes:
        raise DownloadError(
            f"Downloaded file from {url} is {size:,} bytes (expected at least {min_bytes:,}); "
            f"the server may have returned an error page"
        )

    logger.info(f"Saved {size / 1024 / 1024:.1f} MB to: {output_path}")
    return output_path


# =============================================================================
# READERS
# =============================================================================


def read_raw_table(
    path: Union[str, Path],
    delimiter: str = "\t",
    encoding: Optional[str] = None,
) -> pd.DataFrame:
    """
    Read a delimited text file as string cells.

    Args:
        path: File path
        delimiter: Field delimiter (tab for CDE, '^' for CAASPP)
        encoding: Text encoding (default: settings, latin-1)

    Returns:
        DataFrame with object dtype; empty cells are empty strings
    """
    encoding = encoding or load_settings()["download"].get("encoding", "latin-1")
    return pd.read_csv(
        path,
        sep=delimiter,
        dtype=str,
        keep_default_na=False,
        encoding=encoding,
        quoting=3,  # csv.QUOTE_NONE; CDE text files are unquoted
    )


def read_excel_table(path: Union[str, Path]) -> pd.DataFrame:
    """Read the first sheet of a workbook as string cells."""
    df = pd.read_excel(path, dtype=str, engine="openpyxl")
    return df.fillna("")


def read_zipped_table(zip_path: Union[str, Path], marker: str, delimiter: str = "^") -> pd.DataFrame:
    """
    Read the first .txt member of a zip whose name contains `marker`.

    Raises:
        DownloadError: If no matching member exists
    """
    with zipfile.ZipFile(zip_path) as archive:
        members = [
            name for name in archive.namelist()
            if name.lower().endswith(".txt") and marker in Path(name).name
        ]
        if not members:
            raise DownloadError(f"No file matching '{marker}' in {zip_path}")
        with tempfile.TemporaryDirectory() as tmp:
            extracted = archive.extract(members[0], tmp)
            return read_raw_table(extracted, delimiter=delimiter)


# =============================================================================
# RAW FETCHERS
# =============================================================================


def get_raw_enr(end_year: int) -> pd.DataFrame:
    """
    Download one year of raw enrollment data.

    2024+ uses the census-day file; earlier years use the historical
    school file covering the year (the normalizer keeps the requested year).
    """
    settings = load_settings()["download"]
    with tempfile.TemporaryDirectory() as tmp:
        if end_year >= 2024:
            url = build_enr_url(end_year)
            path = download_file(
                url, Path(tmp) / "enrollment.txt",
                timeout=settings["timeout_seconds"],
                min_bytes=settings["min_bytes"]["census"],
            )
        else:
            url = build_historical_enr_url(end_year)
            logger.info("Historical files are large and may take a few minutes to download")
            path = download_file(
                url, Path(tmp) / "enrollment_historical.txt",
                timeout=settings["historical_timeout_seconds"],
                min_bytes=settings["min_bytes"]["historical"],
            )
        df = read_raw_table(path)

    logger.info(f"Loaded {len(df):,} raw enrollment rows for {end_year}")
    return df


def get_raw_graduation(end_year: int) -> pd.DataFrame:
    """Download one year of raw graduation data (Excel)."""
    settings = load_settings()["download"]
    with tempfile.TemporaryDirectory() as tmp:
        path = download_file(
            build_grad_url(end_year), Path(tmp) / "graduation.xlsx",
            timeout=settings["timeout_seconds"],
            min_bytes=settings["min_bytes"]["graduation"],
        )
        df = read_excel_table(path)

    logger.info(f"Loaded {len(df):,} raw graduation rows for {end_year}")
    return df


def get_raw_assessment(end_year: int, file_type: str = "1") -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Download one year of CAASPP data.

    Returns:
        (test_table, entities_table)
    """
    settings = load_settings()["download"]
    with tempfile.TemporaryDirectory() as tmp:
        data_zip = download_file(
            build_caaspp_url(end_year, file_type), Path(tmp) / "caaspp_data.zip",
            timeout=settings["timeout_seconds"],
            min_bytes=settings["min_bytes"]["assessment"],
        )
        entities_zip = download_file(
            build_entities_url(end_year), Path(tmp) / "caaspp_entities.zip",
            timeout=settings["timeout_seconds"],
            min_bytes=settings["min_bytes"]["assessment"],
        )
        test_table = read_zipped_table(data_zip, f"sb_ca{end_year}")
        entities = read_zipped_table(entities_zip, "entities")

    logger.info(f"Loaded {len(test_table):,} assessment rows and {len(entities):,} entities for {end_year}")
    return test_table, entities


def get_raw_directory() -> pd.DataFrame:
    """Download the current school directory (Excel)."""
    settings = load_settings()["download"]
    with tempfile.TemporaryDirectory() as tmp:
        path = download_file(
            build_directory_url(), Path(tmp) / "directory.xlsx",
            timeout=settings["timeout_seconds"],
            min_bytes=settings["min_bytes"]["directory"],
        )
        df = read_excel_table(path)

    logger.info(f"Loaded {len(df):,} raw directory rows")
    return df
