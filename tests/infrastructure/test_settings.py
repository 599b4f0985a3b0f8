"""Tests for Settings and logging configuration."""

import json
import logging

import pytest

from patient_intake.domain.enums import DirectoryBackend
from patient_intake.infrastructure.logging_config import StructuredFormatter, configure_logging
from patient_intake.infrastructure.settings import (
    DEFAULT_MAX_FILE_SIZE,
    DEFAULT_MAX_WORKERS,
    Settings,
)

SETTINGS_VARIABLES = (
    "PI_LOG_LEVEL",
    "PI_MAX_WORKERS",
    "PI_SAMPLE_ROW_LIMIT",
    "PI_MAX_FILE_SIZE",
    "PI_STRUCTURED_LOGS",
    "PI_DIRECTORY_BACKEND",
    "PI_DIRECTORY_DB_PATH",
)


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    for name in SETTINGS_VARIABLES:
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    monkeypatch.chdir(tmp_path)
    return monkeypatch


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


class TestSettings:
    """Test environment-driven settings."""

    def test_defaults(self, clean_env):
        """Test defaults with no environment variables set."""
        settings = Settings()

        assert settings.log_level == "INFO"
        assert settings.max_workers == DEFAULT_MAX_WORKERS
        assert settings.sample_row_limit == 5
        assert settings.max_file_size == DEFAULT_MAX_FILE_SIZE
        assert settings.structured_logs is False
        assert settings.directory_config.backend is DirectoryBackend.MEMORY

    def test_environment_overrides(self, clean_env):
        """Test that PI_ variables override defaults."""
        clean_env.setenv("PI_LOG_LEVEL", "DEBUG")
        clean_env.setenv("PI_MAX_WORKERS", "0")
        clean_env.setenv("PI_SAMPLE_ROW_LIMIT", "3")
        clean_env.setenv("PI_STRUCTURED_LOGS", "yes")
        clean_env.setenv("PI_DIRECTORY_BACKEND", "duckdb")

        settings = Settings()

        assert settings.log_level == "DEBUG"
        assert settings.max_workers == 1
        assert settings.sample_row_limit == 3
        assert settings.structured_logs is True
        assert settings.directory_config.backend is DirectoryBackend.DUCKDB

    def test_directory_config_is_cached(self, clean_env):
        """Test that the directory configuration is loaded once."""
        settings = Settings()

        assert settings.directory_config is settings.directory_config


class TestLogging:
    """Test logging configuration."""

    def test_structured_formatter(self):
        """Test that log records render as JSON lines."""
        record = logging.LogRecord("patient_intake.test", logging.WARNING, __file__, 10, "row %s", (4,), None)
        record.row_index = 4

        payload = json.loads(StructuredFormatter().format(record))

        assert payload["level"] == "WARNING"
        assert payload["logger"] == "patient_intake.test"
        assert payload["message"] == "row 4"
        assert payload["row_index"] == 4
        assert payload["timestamp"].endswith("Z")

    def test_configure_logging_installs_single_handler(self, restore_root_logger):
        """Test that repeated configuration does not stack handlers."""
        configure_logging("DEBUG")
        configure_logging("WARNING", use_json=True)

        root = restore_root_logger
        assert len(root.handlers) == 1
        assert root.level == logging.WARNING
        assert isinstance(root.handlers[0].formatter, StructuredFormatter)
        assert logging.getLogger("duckdb").level == logging.WARNING

    def test_unknown_level_falls_back_to_info(self, restore_root_logger):
        """Test that an invalid level name is treated as INFO."""
        configure_logging("LOUD")

        assert restore_root_logger.level == logging.INFO
