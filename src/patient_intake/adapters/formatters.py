"""Phone and date helpers implementing the formatter/checker ports.

Security Impact:
    - No security impact - pure string normalization
"""

import logging
import re
from datetime import date, datetime
from typing import Any

from dateutil import parser as date_parser

from patient_intake.domain.ports import DateCheckerPort, PhoneFormatterPort
from patient_intake.domain.utils import cell_to_text, digits_only, is_blank, parse_number

logger = logging.getLogger(__name__)

ISO_DATE = re.compile(r"^\d{4}-\d{1,2}-\d{1,2}")
US_DATE = re.compile(r"^\d{1,2}/\d{1,2}/(\d{2}|\d{4})$")
YEAR_FIRST_DATE = re.compile(r"^\d{4}/\d{1,2}/\d{1,2}$")

MIN_DATE_SERIAL = 1000
MAX_DATE_SERIAL = 2958465


class E164PhoneFormatter(PhoneFormatterPort):
    """Normalizes phone numbers to E.164, assuming North America for 10 digits."""

    def __init__(self, country_code: str = "1"):
        self.country_code = country_code

    def normalize(self, raw: str) -> str:
        text = cell_to_text(raw)
        if text.startswith("+"):
            return text

        digits = digits_only(text)
        if not digits:
            return ""
        if len(digits) == 10:
            return f"+{self.country_code}{digits}"
        return f"+{digits}"


def format_phone_display(raw: Any) -> str:
    """Render a phone as ``(XXX) XXX-XXXX``; other lengths are returned as given."""
    digits = digits_only(raw)
    if len(digits) == 11 and digits.startswith("1"):
        digits = digits[1:]
    if len(digits) != 10:
        return cell_to_text(raw)
    return f"({digits[:3]}) {digits[3:6]}-{digits[6:]}"


class DefaultDateChecker(DateCheckerPort):
    """Accepts native dates, spreadsheet serials and common written forms."""

    def is_plausible_date(self, raw: Any) -> bool:
        if is_blank(raw):
            return False
        if isinstance(raw, (date, datetime)):
            return True

        number = parse_number(raw)
        if number is not None:
            return MIN_DATE_SERIAL < number <= MAX_DATE_SERIAL

        text = cell_to_text(raw)
        if ISO_DATE.match(text) or US_DATE.match(text) or YEAR_FIRST_DATE.match(text):
            return True
        if not any(ch.isdigit() for ch in text):
            return False
        try:
            date_parser.parse(text)
        except (ValueError, OverflowError):
            return False
        return True
