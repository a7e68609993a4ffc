"""
Tests for shared utilities: settings, logging and small helpers.
"""

import logging

import pytest
import yaml

from caschooldata.utilities.common import (
    academic_year_label,
    get_cache_dir,
    load_settings,
    load_yaml_config,
    raw_table_from_rows,
    setup_logging,
    summarize_counts,
)


class TestYamlConfig:
    """YAML loading."""

    def test_missing_file(self, tmp_path):
        """A missing file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            load_yaml_config(tmp_path / "nope.yaml")

    def test_empty_file(self, tmp_path):
        """An empty file loads as an empty dict."""
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_yaml_config(path) == {}

    def test_invalid_yaml(self, tmp_path):
        """Broken YAML is reported as a YAMLError."""
        path = tmp_path / "bad.yaml"
        path.write_text("years: [1982, 2025\n")
        with pytest.raises(yaml.YAMLError):
            load_yaml_config(path)


class TestSettings:
    """Packaged settings and user overrides."""

    def test_defaults(self):
        """Packaged defaults cover the enrollment year range."""
        settings = load_settings()
        assert settings["years"]["enrollment"] == {"min": 1982, "max": 2025}
        assert settings["suppression"]["tokens"] == ["*"]

    def test_returns_copy(self):
        """Mutating the result does not leak into later calls."""
        load_settings()["years"]["enrollment"]["max"] = 1900
        assert load_settings()["years"]["enrollment"]["max"] == 2025

    def test_user_overrides(self, tmp_path):
        """A user file replaces keys one level deep."""
        path = tmp_path / "settings.yaml"
        path.write_text("suppression:\n  tokens: ['*', '--']\n")
        settings = load_settings(path)
        assert settings["suppression"]["tokens"] == ["*", "--"]
        assert settings["years"]["enrollment"]["min"] == 1982


class TestHelpers:
    """Small formatting helpers."""

    def test_academic_year_label(self):
        """End years render as 'YYYY-YY'."""
        assert academic_year_label(2024) == "2023-24"
        assert academic_year_label(2000) == "1999-00"

    def test_summarize_counts(self):
        """Counts are sorted by label with thousands separators."""
        assert summarize_counts({"School": 10000, "District": 2}) == "District=2, School=10,000"

    def test_raw_table_from_rows(self):
        """Short rows are padded and None becomes an empty string."""
        df = raw_table_from_rows(["A", "B"], [["1"], [None, "2"]])
        assert df.values.tolist() == [["1", ""], ["", "2"]]

    def test_cache_dir(self, monkeypatch, tmp_path):
        """The cache directory lives under XDG_CACHE_HOME and is created."""
        monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path))
        path = get_cache_dir()
        assert path == tmp_path / "caschooldata"
        assert path.is_dir()


class TestSetupLogging:
    """Root logger configuration."""

    def test_log_file(self, tmp_path):
        """Messages reach the log file at the requested level."""
        root = logging.getLogger()
        level = root.level
        handlers = list(root.handlers)
        log_file = tmp_path / "logs" / "caschooldata.log"
        try:
            setup_logging("DEBUG", log_file)
            assert root.level == logging.DEBUG
            logging.getLogger("caschooldata.test").debug("normalized 33 wide rows")
            for handler in root.handlers:
                handler.flush()
            assert "normalized 33 wide rows" in log_file.read_text()
        finally:
            for handler in root.handlers[:]:
                if handler not in handlers:
                    root.removeHandler(handler)
                    handler.close()
            root.setLevel(level)
