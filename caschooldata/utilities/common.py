"""
Utility functions for the caschooldata package

Logging setup, YAML configuration loading and package settings shared by
the processing, download and cache layers.
"""

import copy
import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import pandas as pd
import yaml

logger = logging.getLogger(__name__)

CONFIG_DIR = Path(__file__).parent.parent / "config"
DEFAULT_SETTINGS_PATH = CONFIG_DIR / "settings.yaml"


def load_yaml_config(config_path: Union[str, Path]) -> dict:
    """
    Load a YAML configuration file

    Args:
        config_path: Path to YAML file

    Returns:
        Dictionary from YAML file

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If file is not valid YAML
    """
    path = Path(config_path)

    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(path, 'r', encoding='utf-8') as f:
        try:
            config = yaml.safe_load(f)
            return config if config else {}
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Error parsing YAML: {e}")


@lru_cache(maxsize=None)
def _load_settings_cached(user_path: Optional[str]) -> dict:
    settings = load_yaml_config(DEFAULT_SETTINGS_PATH)

    if user_path:
        overrides = load_yaml_config(user_path)
        for section, values in overrides.items():
            if isinstance(values, dict) and isinstance(settings.get(section), dict):
                settings[section] = {**settings[section], **values}
            else:
                settings[section] = values
        logger.debug(f"Applied settings overrides from {user_path}")

    return settings


def load_settings(config_path: Optional[Union[str, Path]] = None) -> dict:
    """
    Load package settings, optionally merged with a user YAML file

    Top-level sections in the user file replace keys of the packaged
    defaults one level deep. The caller receives a copy, so the memoized
    settings are never modified.

    Args:
        config_path: Optional user settings file

    Returns:
        Settings dictionary
    """
    key = str(Path(config_path).resolve()) if config_path else None
    return copy.deepcopy(_load_settings_cached(key))


def get_cache_dir() -> Path:
    """
    Get the per-user cache directory for caschooldata

    Honors XDG_CACHE_HOME and falls back to ~/.cache.

    Returns:
        Path to the cache directory (created if missing)
    """
    base = os.getenv("XDG_CACHE_HOME") or str(Path.home() / ".cache")
    cache_dir = Path(base) / "caschooldata"
    cache_dir.mkdir(parents=True, exist_ok=True)
    return cache_dir


def academic_year_label(end_year: int) -> str:
    """
    Build the academic year label for a school year end

    Examples:
        >>> academic_year_label(2024)
        '2023-24'
    """
    return f"{end_year - 1}-{end_year % 100:02d}"


def setup_logging(
    log_level: str = 'INFO',
    log_file: Optional[Path] = None
) -> logging.Logger:
    """
    Set up logging configuration

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional file to write logs to

    Returns:
        Configured logger
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    return root_logger


def raw_table_from_rows(header: List[str], rows: List[List[Any]]) -> pd.DataFrame:
    """
    Build a raw table (all string cells) from a header row and data rows

    Missing cells become empty strings, the same shape the download layer
    produces with keep_default_na=False.

    Args:
        header: Column names
        rows: Data rows, each a list of cell values

    Returns:
        DataFrame with object dtype string cells
    """
    width = len(header)
    cleaned = []
    for row in rows:
        cells = ["" if cell is None else str(cell) for cell in row]
        cells = (cells + [""] * width)[:width]
        cleaned.append(cells)
    return pd.DataFrame(cleaned, columns=list(header), dtype=object)


def summarize_counts(counts: Dict[str, int]) -> str:
    """Render a {label: count} mapping as 'a=1, b=2' sorted by label."""
    return ", ".join(f"{key}={counts[key]:,}" for key in sorted(counts))
