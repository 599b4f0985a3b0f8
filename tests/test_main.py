"""Tests for engine wiring: directory factory, pipeline assembly and file ingestion."""

import threading

import pytest

from patient_intake.adapters.directory import DuckDBPatientDirectory, InMemoryPatientDirectory
from patient_intake.domain.services.pipeline import IngestionPipeline
from patient_intake.infrastructure.config_manager import DirectoryConfig
from patient_intake.main import create_patient_directory, create_pipeline, process_ingestion


class TestCreatePatientDirectory:
    """Test directory selection from configuration."""

    def test_default_is_in_memory(self):
        """Test the default backend."""
        assert isinstance(create_patient_directory(), InMemoryPatientDirectory)

    def test_duckdb_backend(self, tmp_path):
        """Test that the DuckDB backend is created with its schema."""
        config = DirectoryConfig(backend="duckdb", db_path=str(tmp_path / "patients.duckdb"))

        directory = create_patient_directory(config)
        try:
            assert isinstance(directory, DuckDBPatientDirectory)
            assert directory.count_patients() == 0
        finally:
            directory.close()


class TestCreatePipeline:
    """Test pipeline assembly."""

    def test_uses_given_directory_and_workers(self):
        """Test explicit directory and worker overrides."""
        directory = InMemoryPatientDirectory()

        pipeline = create_pipeline(directory=directory, max_workers=3)

        assert isinstance(pipeline, IngestionPipeline)
        assert pipeline.resolver.directory is directory
        assert pipeline.max_workers == 3


class TestProcessIngestion:
    """Test ingestion from a file on disk."""

    def test_reads_file(self, tmp_path, campaign_config):
        """Test that a roster file is read and ingested."""
        path = tmp_path / "roster.csv"
        path.write_text("First Name,Last Name,DOB,Phone\nAnn,Lee,02/03/1970,5551234567\n")
        pipeline = create_pipeline(directory=InMemoryPatientDirectory())

        result = process_ingestion(path, campaign_config, "org-1", pipeline)

        assert result.stats.valid_rows == 1
        assert result.valid_rows[0].variables["location"] == "Main Clinic"

    def test_cancel_event_forwarded(self, tmp_path, campaign_config):
        """Test that the cancel event reaches the pipeline."""
        path = tmp_path / "roster.csv"
        path.write_text("First Name,Last Name,DOB,Phone\nAnn,Lee,02/03/1970,5551234567\n")
        event = threading.Event()
        event.set()

        result = process_ingestion(
            path, campaign_config, "org-1", create_pipeline(directory=InMemoryPatientDirectory()), cancel_event=event
        )

        assert result.truncated is True

    def test_missing_file(self, tmp_path, campaign_config):
        """Test that a missing file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            process_ingestion(
                tmp_path / "missing.csv", campaign_config, "org-1", create_pipeline(directory=InMemoryPatientDirectory())
            )
