"""Tests for the in-memory and DuckDB patient directories.

Tests cover:
- Find-or-create idempotence per organisation and identity hash
- Secondary hash fallback and secondary phone recording
- DuckDB schema creation, persistence across connections and path validation

Security Impact:
    - Verifies that patients are isolated per organisation
"""

import pytest

from patient_intake.adapters.directory import DuckDBPatientDirectory, InMemoryPatientDirectory
from patient_intake.domain.ports import DirectoryError, PatientLookup


def lookup(patient_hash="h1", org_id="org-1", secondary_hash="s1", phone="+15551234567"):
    return PatientLookup(
        patient_hash=patient_hash,
        org_id=org_id,
        first_name="Ann",
        last_name="Lee",
        dob="1970-02-03",
        phone=phone,
        external_id="E-1",
        secondary_hash=secondary_hash,
    )


@pytest.fixture(params=["memory", "duckdb"])
def directory(request):
    """Both directory implementations behind the same port."""
    if request.param == "memory":
        instance = InMemoryPatientDirectory()
    else:
        instance = DuckDBPatientDirectory(db_path=":memory:")
    yield instance
    instance.close()


class TestFindOrCreate:
    """Test the PatientDirectoryPort contract on both implementations."""

    def test_create_then_find(self, directory):
        """Test that the second call returns the same patient as existing."""
        created = directory.find_or_create_patient(lookup())
        found = directory.find_or_create_patient(lookup())

        assert created.is_new_patient is True
        assert found.is_new_patient is False
        assert found.patient_id == created.patient_id

    def test_organisations_are_isolated(self, directory):
        """Test that the same hash in another organisation is a new patient."""
        first = directory.find_or_create_patient(lookup(org_id="org-1"))
        second = directory.find_or_create_patient(lookup(org_id="org-2"))

        assert second.is_new_patient is True
        assert second.patient_id != first.patient_id

    def test_secondary_hash_fallback(self, directory):
        """Test that a new primary hash with a known secondary hash finds the patient."""
        created = directory.find_or_create_patient(lookup(patient_hash="h1", secondary_hash="s1"))
        found = directory.find_or_create_patient(lookup(patient_hash="h2", secondary_hash="s1"))

        assert found.is_new_patient is False
        assert found.patient_id == created.patient_id

    def test_distinct_identities(self, directory):
        """Test that unrelated hashes create separate patients."""
        first = directory.find_or_create_patient(lookup(patient_hash="h1", secondary_hash="s1"))
        second = directory.find_or_create_patient(lookup(patient_hash="h2", secondary_hash="s2"))

        assert first.patient_id != second.patient_id
        assert second.is_new_patient is True


class TestInMemoryDirectory:
    """Test in-memory specifics."""

    def test_secondary_phone_recorded(self):
        """Test that a new phone for a known patient is kept as secondary phone."""
        directory = InMemoryPatientDirectory()
        created = directory.find_or_create_patient(lookup(phone="+15551234567"))
        directory.find_or_create_patient(lookup(patient_hash="h2", phone="+15550000000"))

        entry = directory.get_patient(created.patient_id)
        assert entry.primary_phone == "+15551234567"
        assert entry.secondary_phone == "+15550000000"
        assert len(directory) == 1


class TestDuckDBDirectory:
    """Test DuckDB specifics."""

    def test_initialize_schema_is_idempotent(self):
        """Test that schema creation can run repeatedly."""
        directory = DuckDBPatientDirectory(db_path=":memory:")
        try:
            assert directory.initialize_schema().is_success()
            assert directory.initialize_schema().is_success()
        finally:
            directory.close()

    def test_stored_record_and_counts(self):
        """Test the stored row and per-organisation counts."""
        directory = DuckDBPatientDirectory(db_path=":memory:")
        try:
            created = directory.find_or_create_patient(lookup())
            directory.find_or_create_patient(lookup(patient_hash="h2", secondary_hash="s2", org_id="org-2"))
            directory.find_or_create_patient(lookup(patient_hash="h3", phone="+15550000000"))

            record = directory.get_patient(created.patient_id)
            assert record["org_id"] == "org-1"
            assert record["patient_hash"] == "h1"
            assert record["external_id"] == "E-1"
            assert record["secondary_phone"] == "+15550000000"
            assert directory.count_patients() == 2
            assert directory.count_patients("org-1") == 1
            assert directory.get_patient("missing") is None
        finally:
            directory.close()

    def test_persistence_across_connections(self, tmp_path):
        """Test that patients survive closing and reopening the database file."""
        db_path = str(tmp_path / "patients.duckdb")

        first = DuckDBPatientDirectory(db_path=db_path)
        created = first.find_or_create_patient(lookup())
        first.close()

        second = DuckDBPatientDirectory(db_path=db_path)
        try:
            found = second.find_or_create_patient(lookup())
        finally:
            second.close()

        assert found.patient_id == created.patient_id
        assert found.is_new_patient is False

    def test_missing_directory_rejected(self, tmp_path):
        """Test that a database path in a missing directory raises DirectoryError."""
        with pytest.raises(DirectoryError) as exc_info:
            DuckDBPatientDirectory(db_path=str(tmp_path / "missing" / "patients.duckdb"))

        assert exc_info.value.operation == "__init__"
