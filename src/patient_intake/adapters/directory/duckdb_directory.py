"""DuckDB Patient Directory Adapter.

This adapter implements PatientDirectoryPort on top of DuckDB, an in-process
database, so patient identities persist across ingestion runs.

Security Impact:
    - Patients are looked up by organisation and identity hash, never by
      raw name, DOB or phone
    - Connection paths are validated before use; credentials are not needed
      for the embedded engine
    - Identity values are never written to log messages

Architecture:
    - Implements PatientDirectoryPort (Hexagonal Architecture)
    - Single connection guarded by a lock; find-or-create runs as one
      critical section, which makes it idempotent per identity
    - Lookup order: primary hash, then secondary hash fallback
"""

import logging
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import duckdb

from patient_intake.domain.ports import (
    DirectoryError,
    DirectoryMatch,
    PatientDirectoryPort,
    PatientLookup,
    Result,
)
from patient_intake.domain.utils import short_hash
from patient_intake.infrastructure.config_manager import DirectoryConfig

logger = logging.getLogger(__name__)


class DuckDBPatientDirectory(PatientDirectoryPort):
    """DuckDB implementation of PatientDirectoryPort.

    Parameters:
        directory_config: DirectoryConfig from the configuration manager (preferred)
        db_path: Path to the DuckDB file, or ':memory:'

    Example Usage:
        ```python
        directory = DuckDBPatientDirectory(db_path="data/patients.duckdb")
        result = directory.initialize_schema()
        if result.is_success():
            match = directory.find_or_create_patient(lookup)
        ```
    """

    def __init__(
        self,
        directory_config: Optional[DirectoryConfig] = None,
        db_path: Optional[str] = None,
    ):
        if directory_config:
            self.db_path = directory_config.db_path or ":memory:"
        else:
            self.db_path = db_path or ":memory:"

        if self.db_path != ":memory:":
            parent = Path(self.db_path).parent
            if not parent.exists():
                raise DirectoryError(
                    f"Database directory does not exist: {parent}",
                    operation="__init__",
                )

        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._initialized = False
        self._lock = threading.RLock()

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        if self._connection is None:
            try:
                self._connection = duckdb.connect(self.db_path)
                logger.info(f"Connected to DuckDB patient directory: {self.db_path}")
            except Exception as e:
                raise DirectoryError(
                    f"Failed to connect to DuckDB: {str(e)}",
                    operation="connect",
                    details={"db_path": self.db_path},
                )
        return self._connection

    def initialize_schema(self) -> Result[None]:
        """Create the patients table and its lookup indexes if missing.

        Returns:
            Result[None]: Success or failure result
        """
        with self._lock:
            try:
                conn = self._get_connection()
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS patients (
                        patient_id VARCHAR PRIMARY KEY,
                        org_id VARCHAR NOT NULL,
                        patient_hash VARCHAR NOT NULL,
                        secondary_hash VARCHAR,
                        first_name VARCHAR,
                        last_name VARCHAR,
                        dob VARCHAR,
                        primary_phone VARCHAR,
                        secondary_phone VARCHAR,
                        external_id VARCHAR,
                        created_at TIMESTAMP,
                        updated_at TIMESTAMP
                    )
                """)
                conn.execute(
                    "CREATE UNIQUE INDEX IF NOT EXISTS idx_patients_org_hash ON patients(org_id, patient_hash)"
                )
                conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_patients_org_secondary ON patients(org_id, secondary_hash)"
                )
                self._initialized = True
                logger.info("Patient directory schema initialized")
                return Result.success_result(None)

            except Exception as e:
                error_msg = f"Failed to initialize schema: {str(e)}"
                logger.error(error_msg, exc_info=True)
                return Result.failure_result(
                    DirectoryError(error_msg, operation="initialize_schema"),
                    error_type="DirectoryError",
                )

    def find_or_create_patient(self, lookup: PatientLookup) -> DirectoryMatch:
        """Return the patient for ``lookup``, inserting it when absent.

        Raises:
            DirectoryError: If the schema cannot be created or a query fails
        """
        with self._lock:
            self._ensure_schema()

            try:
                conn = self._get_connection()
                existing = self._find(conn, lookup)
                if existing is not None:
                    patient_id, primary_phone, secondary_phone = existing
                    if lookup.phone and lookup.phone != primary_phone and not secondary_phone:
                        conn.execute(
                            "UPDATE patients SET secondary_phone = ?, updated_at = ? WHERE patient_id = ?",
                            [lookup.phone, self._now(), patient_id],
                        )
                        logger.debug(f"Recorded secondary phone for identity {short_hash(lookup.patient_hash)}")
                    return DirectoryMatch(patient_id=patient_id, is_new_patient=False)

                patient_id = str(uuid.uuid4())
                now = self._now()
                conn.execute(
                    """
                    INSERT INTO patients (
                        patient_id, org_id, patient_hash, secondary_hash, first_name, last_name,
                        dob, primary_phone, secondary_phone, external_id, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, NULL, ?, ?, ?)
                    """,
                    [
                        patient_id,
                        lookup.org_id,
                        lookup.patient_hash,
                        lookup.secondary_hash,
                        lookup.first_name,
                        lookup.last_name,
                        lookup.dob,
                        lookup.phone,
                        lookup.external_id,
                        now,
                        now,
                    ],
                )
                logger.debug(f"Created patient for identity {short_hash(lookup.patient_hash)}")
                return DirectoryMatch(patient_id=patient_id, is_new_patient=True)

            except duckdb.Error as e:
                raise DirectoryError(
                    f"Patient lookup failed: {str(e)}",
                    operation="find_or_create_patient",
                    details={"patient_hash": lookup.patient_hash},
                ) from e

    def get_patient(self, patient_id: str) -> Optional[dict[str, Any]]:
        """Fetch a stored patient as a column-name dictionary."""
        with self._lock:
            self._ensure_schema()
            conn = self._get_connection()
            cursor = conn.execute("SELECT * FROM patients WHERE patient_id = ?", [patient_id])
            row = cursor.fetchone()
            if row is None:
                return None
            columns = [desc[0] for desc in cursor.description]
            return dict(zip(columns, row))

    def count_patients(self, org_id: Optional[str] = None) -> int:
        with self._lock:
            self._ensure_schema()
            conn = self._get_connection()
            if org_id is None:
                return conn.execute("SELECT COUNT(*) FROM patients").fetchone()[0]
            return conn.execute("SELECT COUNT(*) FROM patients WHERE org_id = ?", [org_id]).fetchone()[0]

    def close(self) -> None:
        """Close the connection and release resources."""
        with self._lock:
            if self._connection is not None:
                try:
                    self._connection.close()
                    self._connection = None
                    self._initialized = False
                    logger.info("Closed DuckDB connection")
                except Exception as e:
                    logger.warning(f"Error closing connection: {str(e)}")

    def _ensure_schema(self) -> None:
        if not self._initialized:
            schema = self.initialize_schema()
            if schema.is_failure():
                raise DirectoryError(schema.error, operation="initialize_schema")

    @staticmethod
    def _find(conn: duckdb.DuckDBPyConnection, lookup: PatientLookup) -> Optional[tuple]:
        row = conn.execute(
            "SELECT patient_id, primary_phone, secondary_phone FROM patients "
            "WHERE org_id = ? AND patient_hash = ? LIMIT 1",
            [lookup.org_id, lookup.patient_hash],
        ).fetchone()
        if row is None and lookup.secondary_hash:
            row = conn.execute(
                "SELECT patient_id, primary_phone, secondary_phone FROM patients "
                "WHERE org_id = ? AND secondary_hash = ? ORDER BY created_at LIMIT 1",
                [lookup.org_id, lookup.secondary_hash],
            ).fetchone()
        return row

    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)
