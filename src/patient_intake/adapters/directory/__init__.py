"""Patient directory backends implementing PatientDirectoryPort."""

from patient_intake.adapters.directory.duckdb_directory import DuckDBPatientDirectory
from patient_intake.adapters.directory.memory_directory import InMemoryPatientDirectory

__all__ = ["DuckDBPatientDirectory", "InMemoryPatientDirectory"]
