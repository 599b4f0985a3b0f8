"""Patient Identity Resolution Service.

Computes deterministic identity hashes from normalized name, DOB and phone,
and coordinates with the patient directory to tell new patients from
existing ones.

Security Impact:
    - The directory is keyed by a SHA-256 digest of normalized identity data,
      so raw PII never serves as a lookup key
    - Log messages reference identities by truncated hash only

Architecture:
    - Domain service depending only on PatientDirectoryPort
    - ``resolve`` is idempotent within a run: concurrent calls for the same
      organisation and hash reach the directory once and share the outcome
"""

import hashlib
import logging
import threading
from typing import Any, Iterable, Mapping, Optional

from patient_intake.domain.models import ProcessedRow
from patient_intake.domain.ports import (
    DirectoryMatch,
    IdentityResolutionError,
    PatientDirectoryPort,
    PatientLookup,
)
from patient_intake.domain.utils import (
    DOB_KEYS,
    EXTERNAL_ID_KEYS,
    FIRST_NAME_KEYS,
    LAST_NAME_KEYS,
    PHONE_KEYS,
    cell_to_text,
    digits_only,
    pick_first,
    short_hash,
)

logger = logging.getLogger(__name__)


def normalize_phone_digits(phone: Any) -> str:
    """Reduce a phone value to its 10 national digits where possible."""
    digits = digits_only(phone)
    if len(digits) == 11 and digits.startswith("1"):
        digits = digits[1:]
    return digits[:10]


def _digest(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


class PatientIdentityResolver:
    """Hashes patient identities and resolves them against a directory.

    Parameters:
        directory: Patient directory collaborator (find-or-create)
    """

    def __init__(self, directory: PatientDirectoryPort):
        self.directory = directory
        self._resolved: dict[tuple[str, str], DirectoryMatch] = {}
        self._key_locks: dict[tuple[str, str], threading.Lock] = {}
        self._lock = threading.Lock()

    @staticmethod
    def hash(first_name: Any, last_name: Any, dob: Any, phone: Any) -> str:
        """Primary identity hash.

        Phone and DOB are reduced to digits, names are lowercased and trimmed.
        Only the first three letters of the first name take part, so
        nicknames and truncations of a long first name still collide.
        """
        first = cell_to_text(first_name).lower().strip()[:3]
        last = cell_to_text(last_name).lower().strip()
        return _digest(f"{normalize_phone_digits(phone)}-{digits_only(dob)}-{first}-{last}")

    @staticmethod
    def secondary_hash(last_name: Any, dob: Any, phone: Any) -> str:
        """Fallback hash from last name, DOB and the last four phone digits."""
        last = cell_to_text(last_name).lower().strip()
        return _digest(f"{last}-{digits_only(dob)}-{digits_only(phone)[-4:]}")

    def compute_hash(self, patient_data: Mapping[str, Any]) -> Optional[str]:
        """Choose the hash the available identity data supports.

        Returns:
            Primary hash when first name, last name, DOB and phone are all
            present; secondary hash when only the first name is missing;
            None otherwise
        """
        first = pick_first(patient_data, FIRST_NAME_KEYS)
        last = pick_first(patient_data, LAST_NAME_KEYS)
        dob = pick_first(patient_data, DOB_KEYS)
        phone = pick_first(patient_data, PHONE_KEYS)

        if last is None or dob is None or phone is None:
            return None
        if first is None:
            return self.secondary_hash(last, dob, phone)
        return self.hash(first, last, dob, phone)

    def build_lookup(self, patient_data: Mapping[str, Any], org_id: str, patient_hash: str) -> PatientLookup:
        """Assemble the normalized identity handed to the directory."""

        def text(keys) -> Optional[str]:
            value = pick_first(patient_data, keys)
            return cell_to_text(value) if value is not None else None

        last = pick_first(patient_data, LAST_NAME_KEYS)
        dob = pick_first(patient_data, DOB_KEYS)
        phone = pick_first(patient_data, PHONE_KEYS)
        secondary = None
        if last is not None and dob is not None and phone is not None:
            secondary = self.secondary_hash(last, dob, phone)

        return PatientLookup(
            patient_hash=patient_hash,
            org_id=org_id,
            first_name=text(FIRST_NAME_KEYS),
            last_name=text(LAST_NAME_KEYS),
            dob=text(DOB_KEYS),
            phone=text(PHONE_KEYS),
            external_id=text(EXTERNAL_ID_KEYS),
            secondary_hash=secondary,
        )

    def resolve(self, patient_data: Mapping[str, Any], org_id: str) -> Optional[DirectoryMatch]:
        """Find or create the patient behind ``patient_data``.

        Returns:
            DirectoryMatch, or None when there is not enough data to hash

        Raises:
            IdentityResolutionError: If the directory lookup fails
        """
        patient_hash = self.compute_hash(patient_data)
        if patient_hash is None:
            return None
        return self.resolve_lookup(self.build_lookup(patient_data, org_id, patient_hash))

    def resolve_lookup(self, lookup: PatientLookup) -> DirectoryMatch:
        """Resolve a prepared lookup, at most once per organisation and hash."""
        cache_key = (lookup.org_id, lookup.patient_hash)
        with self._lock:
            cached = self._resolved.get(cache_key)
            if cached is not None:
                return cached
            key_lock = self._key_locks.setdefault(cache_key, threading.Lock())

        with key_lock:
            with self._lock:
                cached = self._resolved.get(cache_key)
            if cached is not None:
                return cached

            try:
                match = self.directory.find_or_create_patient(lookup)
            except Exception as e:
                logger.error(
                    f"Patient directory lookup failed for identity {short_hash(lookup.patient_hash)}: "
                    f"{type(e).__name__}: {e}"
                )
                raise IdentityResolutionError(
                    f"Patient lookup failed: {e}",
                    source="patient_directory",
                    details={"patient_hash": lookup.patient_hash},
                ) from e

            with self._lock:
                self._resolved[cache_key] = match
            logger.debug(
                f"Resolved identity {short_hash(lookup.patient_hash)} "
                f"({'new' if match.is_new_patient else 'existing'} patient)"
            )
            return match


def extract_unique_patients(valid_rows: Iterable[ProcessedRow]) -> dict[str, dict[str, Any]]:
    """Map each distinct patient to the variables of its first valid row.

    Rows are keyed by patient id when resolved, else by identity hash; rows
    with neither are skipped.
    """
    unique: dict[str, dict[str, Any]] = {}
    for row in valid_rows:
        key = row.patient_id or row.patient_hash
        if key and key not in unique:
            unique[key] = dict(row.variables)
    return unique
