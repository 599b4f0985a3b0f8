"""Row Validation Service.

Applies the campaign's phone, DOB and name requirements to extracted patient
data. Rules are lenient: a missing identifier is tolerated when another
identifier is present, so records with degraded confidence still get through.

Security Impact:
    - Messages name the failed rule, never the offending value
"""

import logging
from typing import Any, Mapping, Optional

from patient_intake.domain.models import ValidationConfig
from patient_intake.domain.ports import DateCheckerPort
from patient_intake.domain.utils import (
    DOB_KEYS,
    FIRST_NAME_KEYS,
    LAST_NAME_KEYS,
    PHONE_KEYS,
    cell_to_text,
    digits_only,
    pick_first,
)

logger = logging.getLogger(__name__)

MIN_PHONE_DIGITS = 5
MIN_DOB_TEXT_LENGTH = 4

PHONE_REQUIRED_MESSAGE = "Valid phone number is required"
DOB_REQUIRED_MESSAGE = "Valid date of birth is required"
NAME_REQUIRED_MESSAGE = "At least one name field (first or last name) is required"


class RowValidator:
    """Validates extracted patient data against a ValidationConfig."""

    def __init__(self, date_checker: DateCheckerPort):
        self.date_checker = date_checker

    def validate(self, patient_data: Mapping[str, Any], config: ValidationConfig) -> Optional[str]:
        """Return a semicolon-joined failure message, or None when the row passes."""
        first = pick_first(patient_data, FIRST_NAME_KEYS)
        last = pick_first(patient_data, LAST_NAME_KEYS)
        phone = pick_first(patient_data, PHONE_KEYS)
        dob = pick_first(patient_data, DOB_KEYS)

        has_phone = phone is not None and len(digits_only(phone)) >= MIN_PHONE_DIGITS
        has_any_name = first is not None or last is not None
        has_full_name = first is not None and last is not None

        errors: list[str] = []

        if config.require_valid_phone and not has_phone and not has_any_name:
            errors.append(PHONE_REQUIRED_MESSAGE)

        if config.require_valid_dob:
            if dob is None:
                if not has_phone and not has_full_name:
                    errors.append(DOB_REQUIRED_MESSAGE)
            elif not self._is_acceptable_dob(dob):
                errors.append(DOB_REQUIRED_MESSAGE)

        if config.require_name and not has_any_name and not has_phone:
            errors.append(NAME_REQUIRED_MESSAGE)

        return "; ".join(errors) if errors else None

    def _is_acceptable_dob(self, dob: Any) -> bool:
        if isinstance(dob, (int, float)) and not isinstance(dob, bool):
            return True
        if len(cell_to_text(dob)) >= MIN_DOB_TEXT_LENGTH:
            return True
        return self.date_checker.is_plausible_date(dob)
