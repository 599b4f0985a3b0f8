"""Configuration Manager for the patient directory and campaign configs.

This module loads the patient directory backend settings and campaign field
configurations from trusted sources (environment variables, ``.env`` files
and JSON files) and validates them before use.

Security Impact:
    - Database paths are validated before a connection is attempted
    - Configuration values are never logged in full
    - Campaign configuration files are parsed as JSON only (no code execution)

Architecture:
    - Follows Hexagonal Architecture: Infrastructure layer isolated from domain
    - Type-safe configuration using Pydantic models
    - Fail-fast validation prevents runtime errors
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator

from patient_intake.domain.enums import DirectoryBackend
from patient_intake.domain.models import IngestionConfig
from patient_intake.domain.ports import ConfigError

logger = logging.getLogger(__name__)


class DirectoryConfig(BaseModel):
    """Patient directory backend configuration.

    Parameters:
        backend: Directory implementation (memory or duckdb)
        db_path: DuckDB database file, or ':memory:'
    """

    backend: DirectoryBackend = Field(DirectoryBackend.MEMORY, description="Directory backend")
    db_path: Optional[str] = Field(None, description="Path to database file (for DuckDB)")

    @field_validator("backend", mode="before")
    @classmethod
    def normalize_backend(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("db_path")
    @classmethod
    def validate_db_path(cls, v: Optional[str]) -> Optional[str]:
        """Validate that the database directory exists (the file may not yet)."""
        if v is None or v == ":memory:":
            return v

        db_path_obj = Path(v)
        if not db_path_obj.parent.exists():
            raise ValueError(f"Database directory does not exist: {db_path_obj.parent}")
        return str(db_path_obj)

    @model_validator(mode="after")
    def default_duckdb_path(self) -> "DirectoryConfig":
        if self.backend is DirectoryBackend.DUCKDB and self.db_path is None:
            self.db_path = ":memory:"
        return self


class ConfigManager:
    """Configuration manager for the patient directory backend.

    Example Usage:
        ```python
        # Load from environment variables (and .env)
        config = ConfigManager.from_environment()
        directory_config = config.get_directory_config()

        # Load from file
        config = ConfigManager.from_file("settings.json")
        ```
    """

    def __init__(self, config_data: Dict[str, Any]):
        self._config_data = config_data
        self._directory_config: Optional[DirectoryConfig] = None

    @classmethod
    def from_environment(cls, env_path: Optional[Path] = None) -> "ConfigManager":
        """Load configuration from environment variables.

        Environment Variables:
            - PI_DIRECTORY_BACKEND: memory or duckdb
            - PI_DIRECTORY_DB_PATH: DuckDB file path

        Parameters:
            env_path: Optional .env file; defaults to ``.env`` in the working directory
        """
        env_file = env_path or Path.cwd() / ".env"
        if env_file.exists():
            load_dotenv(env_file)
            logger.debug(f"Loaded environment variables from {env_file}")

        config_data = {
            "directory": {
                "backend": os.getenv("PI_DIRECTORY_BACKEND", DirectoryBackend.MEMORY.value),
                "db_path": os.getenv("PI_DIRECTORY_DB_PATH"),
            }
        }
        return cls(config_data)

    @classmethod
    def from_file(cls, config_path: str) -> "ConfigManager":
        """Load configuration from a JSON file.

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config file is invalid
        """
        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        try:
            with open(config_file, "r") as f:
                config_data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in configuration file: {str(e)}")

        if not isinstance(config_data, dict):
            raise ValueError("Configuration file must contain a JSON object")
        return cls(config_data)

    def get_directory_config(self) -> DirectoryConfig:
        """Get the validated directory configuration."""
        if self._directory_config is None:
            directory_data = {
                k: v for k, v in (self._config_data.get("directory") or {}).items() if v is not None
            }
            self._directory_config = DirectoryConfig(**directory_data)
            logger.debug(f"Patient directory backend: {self._directory_config.backend.value}")
        return self._directory_config

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value by dot-separated key (e.g. ``directory.backend``)."""
        value: Any = self._config_data
        for part in key.split("."):
            if not isinstance(value, dict) or part not in value:
                return default
            value = value[part]
        return value


def load_campaign_config(config_path: str) -> IngestionConfig:
    """Read a campaign field configuration from a JSON file.

    Raises:
        ConfigError: If the file is missing or is not valid JSON
    """
    config_file = Path(config_path)
    if not config_file.exists():
        raise ConfigError(f"Campaign configuration not found: {config_path}", source=config_path)

    try:
        with open(config_file, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in campaign configuration: {str(e)}", source=config_path) from e

    config = IngestionConfig.from_raw(raw)
    logger.info(
        f"Loaded campaign configuration {config_file.name}: "
        f"{len(config.patient_fields)} patient / {len(config.campaign_fields)} campaign fields"
    )
    return config
