"""Application Settings and Configuration.

This module provides application-wide settings that combine environment
variables (prefix ``PI_``) with the configuration manager and sensible
defaults.

Security Impact:
    - Settings are loaded from trusted configuration sources
    - The upload size ceiling bounds memory used per ingestion
"""

import os
from typing import Optional

from patient_intake.infrastructure.config_manager import ConfigManager, DirectoryConfig

# Application metadata
APP_NAME = "patient-intake"
APP_VERSION = "1.0.0"

DEFAULT_MAX_WORKERS = 4
DEFAULT_SAMPLE_ROW_LIMIT = 5

# Default max decoded upload size (50MB)
DEFAULT_MAX_FILE_SIZE = 50 * 1024 * 1024


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, "true" if default else "false").strip().lower() in ("1", "true", "yes")


class Settings:
    """Application settings loaded from the environment.

    Environment Variables:
        - PI_LOG_LEVEL: Logging level (default INFO)
        - PI_MAX_WORKERS: Concurrent row preparation / directory calls (default 4)
        - PI_SAMPLE_ROW_LIMIT: Preview rows per classification (default 5)
        - PI_MAX_FILE_SIZE: Largest decoded upload in bytes (default 50MB)
        - PI_STRUCTURED_LOGS: Emit JSON log lines (default false)
    """

    def __init__(self):
        self._directory_config: Optional[DirectoryConfig] = None
        self._config_manager: Optional[ConfigManager] = None

        self.app_name = os.getenv("PI_APP_NAME", APP_NAME)
        self.log_level = os.getenv("PI_LOG_LEVEL", "INFO")
        self.max_workers = max(1, int(os.getenv("PI_MAX_WORKERS", str(DEFAULT_MAX_WORKERS))))
        self.sample_row_limit = int(os.getenv("PI_SAMPLE_ROW_LIMIT", str(DEFAULT_SAMPLE_ROW_LIMIT)))
        self.max_file_size = int(os.getenv("PI_MAX_FILE_SIZE", str(DEFAULT_MAX_FILE_SIZE)))
        self.structured_logs = _env_bool("PI_STRUCTURED_LOGS", False)

    @property
    def config_manager(self) -> ConfigManager:
        if self._config_manager is None:
            self._config_manager = ConfigManager.from_environment()
        return self._config_manager

    @property
    def directory_config(self) -> DirectoryConfig:
        """Directory configuration, loaded lazily on first access."""
        if self._directory_config is None:
            self._directory_config = self.config_manager.get_directory_config()
        return self._directory_config
