"""In-memory patient directory.

Process-local implementation of PatientDirectoryPort, used by default for
previews and tests. Records live only as long as the instance.
"""

import logging
import threading
import uuid
from dataclasses import dataclass
from typing import Optional

from patient_intake.domain.ports import DirectoryMatch, PatientDirectoryPort, PatientLookup
from patient_intake.domain.utils import short_hash

logger = logging.getLogger(__name__)


@dataclass
class PatientEntry:
    patient_id: str
    org_id: str
    patient_hash: str
    secondary_hash: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    dob: Optional[str] = None
    primary_phone: Optional[str] = None
    secondary_phone: Optional[str] = None
    external_id: Optional[str] = None


class InMemoryPatientDirectory(PatientDirectoryPort):
    """Thread-safe dictionary-backed patient directory.

    Lookups go by primary hash first, then by secondary hash; a secondary
    match registers the new primary hash as an alias of the found patient.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._by_id: dict[str, PatientEntry] = {}
        self._by_hash: dict[tuple[str, str], str] = {}
        self._by_secondary: dict[tuple[str, str], str] = {}

    def find_or_create_patient(self, lookup: PatientLookup) -> DirectoryMatch:
        with self._lock:
            patient_id = self._by_hash.get((lookup.org_id, lookup.patient_hash))
            if patient_id is None and lookup.secondary_hash:
                patient_id = self._by_secondary.get((lookup.org_id, lookup.secondary_hash))
                if patient_id is not None:
                    self._by_hash[(lookup.org_id, lookup.patient_hash)] = patient_id

            if patient_id is not None:
                self._note_phone(self._by_id[patient_id], lookup.phone)
                return DirectoryMatch(patient_id=patient_id, is_new_patient=False)

            entry = PatientEntry(
                patient_id=str(uuid.uuid4()),
                org_id=lookup.org_id,
                patient_hash=lookup.patient_hash,
                secondary_hash=lookup.secondary_hash,
                first_name=lookup.first_name,
                last_name=lookup.last_name,
                dob=lookup.dob,
                primary_phone=lookup.phone,
                external_id=lookup.external_id,
            )
            self._by_id[entry.patient_id] = entry
            self._by_hash[(lookup.org_id, lookup.patient_hash)] = entry.patient_id
            if lookup.secondary_hash:
                self._by_secondary.setdefault((lookup.org_id, lookup.secondary_hash), entry.patient_id)

        logger.debug(f"Created patient for identity {short_hash(lookup.patient_hash)}")
        return DirectoryMatch(patient_id=entry.patient_id, is_new_patient=True)

    def get_patient(self, patient_id: str) -> Optional[PatientEntry]:
        with self._lock:
            return self._by_id.get(patient_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._by_id)

    @staticmethod
    def _note_phone(entry: PatientEntry, phone: Optional[str]) -> None:
        if phone and phone != entry.primary_phone and not entry.secondary_phone:
            entry.secondary_phone = phone
