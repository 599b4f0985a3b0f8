"""Wiring for the ingestion engine.

Builds the patient directory and the pipeline from configuration and runs
one ingestion. Callers embedding the engine (an upload service, the CLI)
use ``create_pipeline`` and keep the returned pipeline for the lifetime of
their directory connection.
"""

import logging
import threading
from pathlib import Path
from typing import Optional

from patient_intake.adapters.decoder import FileDecoder
from patient_intake.adapters.directory import DuckDBPatientDirectory, InMemoryPatientDirectory
from patient_intake.adapters.formatters import DefaultDateChecker, E164PhoneFormatter
from patient_intake.domain.enums import DirectoryBackend
from patient_intake.domain.models import IngestionConfig, IngestionResult
from patient_intake.domain.ports import DirectoryError, PatientDirectoryPort
from patient_intake.domain.services.pipeline import IngestionPipeline
from patient_intake.infrastructure.config_manager import DirectoryConfig
from patient_intake.infrastructure.settings import Settings

logger = logging.getLogger(__name__)


def create_patient_directory(directory_config: Optional[DirectoryConfig] = None) -> PatientDirectoryPort:
    """Create the patient directory selected by configuration.

    Raises:
        DirectoryError: If the DuckDB schema cannot be initialised
    """
    directory_config = directory_config or DirectoryConfig()

    if directory_config.backend is DirectoryBackend.DUCKDB:
        logger.info(f"Initializing DuckDB patient directory with path: {directory_config.db_path}")
        directory = DuckDBPatientDirectory(directory_config=directory_config)
        schema_result = directory.initialize_schema()
        if schema_result.is_failure():
            directory.close()
            raise DirectoryError(schema_result.error, operation="initialize_schema")
        return directory

    logger.info("Using in-memory patient directory")
    return InMemoryPatientDirectory()


def create_pipeline(
    settings: Optional[Settings] = None,
    directory: Optional[PatientDirectoryPort] = None,
    max_workers: Optional[int] = None,
) -> IngestionPipeline:
    """Assemble an IngestionPipeline with the default adapters."""
    settings = settings or Settings()
    if directory is None:
        directory = create_patient_directory(settings.directory_config)

    return IngestionPipeline(
        decoder=FileDecoder(max_file_size=settings.max_file_size),
        directory=directory,
        phone_formatter=E164PhoneFormatter(),
        date_checker=DefaultDateChecker(),
        max_workers=max_workers or settings.max_workers,
        sample_limit=settings.sample_row_limit,
    )


def process_ingestion(
    file_path: Path,
    config: IngestionConfig,
    org_id: str,
    pipeline: IngestionPipeline,
    cancel_event: Optional[threading.Event] = None,
) -> IngestionResult:
    """Read ``file_path`` from disk and ingest it.

    Raises:
        ParseError: If the file cannot be parsed
        ConfigError: If no usable field configuration exists
    """
    content = Path(file_path).read_bytes()
    logger.info(f"Read {len(content)} bytes from {Path(file_path).name}")
    return pipeline.ingest(content, Path(file_path).name, config, org_id, cancel_event=cancel_event)
