"""Domain Utilities - small helpers shared by matching, transforms and identity.

Security Impact:
    - No security impact - pure utility functions
"""

import math
import re
from datetime import date, datetime, time
from typing import Any, Iterable, Mapping, Optional

_NON_ALNUM = re.compile(r"[^a-z0-9]")
_NON_DIGIT = re.compile(r"\D")

# Variable keys under which upstream configurations store core identity values.
# The first key present with a non-empty value wins.
FIRST_NAME_KEYS = ("firstName", "first_name")
LAST_NAME_KEYS = ("lastName", "last_name")
PHONE_KEYS = (
    "primaryPhone",
    "phone",
    "phoneNumber",
    "phone_number",
    "primary_phone",
    "cellPhone",
    "cell_phone",
)
DOB_KEYS = ("dob", "dateOfBirth", "date_of_birth")
EXTERNAL_ID_KEYS = ("emrId", "patientNumber")


def is_blank(value: Any) -> bool:
    """True for None, NaN, and empty or whitespace-only strings."""
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    if isinstance(value, str) and not value.strip():
        return True
    return False


def cell_to_text(value: Any) -> str:
    """Render a raw cell value as trimmed text.

    Integral floats lose their ``.0`` (workbooks store phone numbers and ids
    as floats), and dates render in ISO form.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, float):
        if math.isnan(value):
            return ""
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, datetime):
        if value.time() == time(0, 0):
            return value.date().isoformat()
        return value.isoformat()
    if isinstance(value, (date, time)):
        return value.isoformat()
    return str(value).strip()


def digits_only(value: Any) -> str:
    return _NON_DIGIT.sub("", cell_to_text(value))


def normalize_header(value: str) -> str:
    """Lowercase and drop every non-alphanumeric character."""
    return _NON_ALNUM.sub("", str(value).lower())


def pick_first(data: Mapping[str, Any], keys: Iterable[str]) -> Optional[Any]:
    """Return the first non-blank value among ``keys``."""
    for key in keys:
        value = data.get(key)
        if not is_blank(value):
            return value
    return None


def parse_number(value: Any) -> Optional[float]:
    """Read ``value`` as a number, or None when it is not numeric."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if isinstance(value, float) and math.isnan(value):
            return None
        return float(value)
    text = cell_to_text(value)
    if not text:
        return None
    try:
        number = float(text)
    except ValueError:
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def short_hash(value: Optional[str]) -> str:
    """Truncate an identity hash for log messages."""
    return value[:10] if value else "-"
