"""Tests for ConfigManager, DirectoryConfig and campaign config loading.

Tests cover:
- Directory backend validation and defaults
- Loading from environment variables, .env files and JSON files
- Campaign configuration files (valid, missing, malformed)
"""

import json

import pytest
from pydantic import ValidationError

from patient_intake.domain.enums import DirectoryBackend
from patient_intake.domain.ports import ConfigError
from patient_intake.infrastructure.config_manager import (
    ConfigManager,
    DirectoryConfig,
    load_campaign_config,
)


@pytest.fixture
def clean_env(monkeypatch):
    # setenv first so that values loaded from .env files are undone too
    for name in ("PI_DIRECTORY_BACKEND", "PI_DIRECTORY_DB_PATH"):
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    return monkeypatch


class TestDirectoryConfig:
    """Test DirectoryConfig validation."""

    def test_defaults_to_memory(self):
        """Test the default backend."""
        config = DirectoryConfig()

        assert config.backend is DirectoryBackend.MEMORY
        assert config.db_path is None

    def test_duckdb_defaults_to_in_memory_database(self):
        """Test that DuckDB without a path uses ':memory:'."""
        config = DirectoryConfig(backend=" DuckDB ")

        assert config.backend is DirectoryBackend.DUCKDB
        assert config.db_path == ":memory:"

    def test_db_path_directory_must_exist(self, tmp_path):
        """Test path validation for database files."""
        assert DirectoryConfig(backend="duckdb", db_path=str(tmp_path / "p.duckdb")).db_path.endswith("p.duckdb")

        with pytest.raises(ValidationError):
            DirectoryConfig(backend="duckdb", db_path=str(tmp_path / "missing" / "p.duckdb"))

    def test_unknown_backend_rejected(self):
        """Test that unsupported backends fail validation."""
        with pytest.raises(ValidationError):
            DirectoryConfig(backend="postgres")


class TestConfigManager:
    """Test configuration sources."""

    def test_from_environment(self, clean_env, tmp_path):
        """Test reading the backend from environment variables."""
        clean_env.setenv("PI_DIRECTORY_BACKEND", "duckdb")

        config = ConfigManager.from_environment(env_path=tmp_path / "absent.env").get_directory_config()

        assert config.backend is DirectoryBackend.DUCKDB
        assert config.db_path == ":memory:"

    def test_from_env_file(self, clean_env, tmp_path):
        """Test that a .env file populates missing variables."""
        env_file = tmp_path / ".env"
        env_file.write_text(f"PI_DIRECTORY_BACKEND=duckdb\nPI_DIRECTORY_DB_PATH={tmp_path / 'p.duckdb'}\n")

        config = ConfigManager.from_environment(env_path=env_file).get_directory_config()

        assert config.backend is DirectoryBackend.DUCKDB
        assert config.db_path == str(tmp_path / "p.duckdb")

    def test_from_file(self, tmp_path):
        """Test loading a JSON settings file and dotted lookups."""
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({"directory": {"backend": "memory"}, "extra": {"a": {"b": 1}}}))

        manager = ConfigManager.from_file(str(path))

        assert manager.get_directory_config().backend is DirectoryBackend.MEMORY
        assert manager.get("extra.a.b") == 1
        assert manager.get("extra.missing", "fallback") == "fallback"

    def test_from_file_errors(self, tmp_path):
        """Test missing and malformed settings files."""
        with pytest.raises(FileNotFoundError):
            ConfigManager.from_file(str(tmp_path / "nope.json"))

        bad = tmp_path / "bad.json"
        bad.write_text("{not json")
        with pytest.raises(ValueError):
            ConfigManager.from_file(str(bad))

        array = tmp_path / "array.json"
        array.write_text("[]")
        with pytest.raises(ValueError):
            ConfigManager.from_file(str(array))


class TestLoadCampaignConfig:
    """Test campaign configuration files."""

    def test_valid_file(self, tmp_path, campaign_config):
        """Test loading the nested configuration shape from disk."""
        path = tmp_path / "campaign.json"
        path.write_text(json.dumps(campaign_config))

        config = load_campaign_config(str(path))

        assert len(config.patient_fields) == 4
        assert config.campaign_fields[-1].default_value == "Main Clinic"

    def test_missing_file(self, tmp_path):
        """Test that a missing file raises ConfigError."""
        with pytest.raises(ConfigError, match="not found"):
            load_campaign_config(str(tmp_path / "missing.json"))

    def test_invalid_json(self, tmp_path):
        """Test that malformed JSON raises ConfigError."""
        path = tmp_path / "campaign.json"
        path.write_text("{")

        with pytest.raises(ConfigError, match="Invalid JSON"):
            load_campaign_config(str(path))
