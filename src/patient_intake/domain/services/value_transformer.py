"""Value Transformation Service.

Converts raw spreadsheet cells into semantic values according to a field's
transform kind. Transformation is best-effort: malformed input yields the
original text rather than an exception. Row validation decides whether
the value is acceptable.

Date handling notes:
    - Numeric values above 1000 are spreadsheet date serials, counted from
      the 1899-12-30 epoch (day 1 is 1900-01-01 with the historical leap-year
      offset folded in)
    - Two-digit birth years go through a heuristic: a year above the current
      two-digit year belongs to the previous century; otherwise the current
      century is kept unless the implied age exceeds 80. A result in the
      future is shifted back exactly 100 years
    - ``long_date`` values are appointment-style dates and skip the birth-date
      corrections
"""

import logging
import re
from datetime import date, datetime, time, timedelta
from typing import Any, Callable, Optional

from dateutil import parser as date_parser

from patient_intake.domain.enums import TransformKind
from patient_intake.domain.ports import PhoneFormatterPort
from patient_intake.domain.utils import cell_to_text, is_blank, parse_number

logger = logging.getLogger(__name__)

SPREADSHEET_EPOCH = date(1899, 12, 30)
# Serial of 9999-12-31, the last date spreadsheets can represent
MAX_DATE_SERIAL = 2958465
AGE_THRESHOLD = 80

TWO_DIGIT_YEAR = re.compile(r"^(\d{1,2})[/-](\d{1,2})[/-](\d{2})$")
FOUR_DIGIT_YEAR = re.compile(r"^(\d{1,2})[/-](\d{1,2})[/-](\d{4})$")
COMPACT_DATE = re.compile(r"^(\d{4})(\d{2})(\d{2})$")
CLOCK_TIME = re.compile(
    r"^(\d{1,2})(?::(\d{2}))?(?::(\d{2}))?\s*([ap])\.?\s*m\.?$|^(\d{1,2}):(\d{2})(?::(\d{2}))?$",
    re.IGNORECASE,
)

TRUE_TOKENS = frozenset({"true", "yes", "y", "1"})
FALSE_TOKENS = frozenset({"false", "no", "n", "0"})


def serial_to_date(serial: float) -> date:
    """Convert a spreadsheet date serial to a calendar date."""
    return SPREADSHEET_EPOCH + timedelta(days=int(serial))


def format_long_date(value: date) -> str:
    """Render e.g. ``Tuesday, March 10, 2025``."""
    return f"{value:%A}, {value:%B} {value.day}, {value.year}"


def format_clock(hours: int, minutes: int) -> str:
    return f"{hours:02d}:{minutes:02d}"


def _shift_century(value: date, years: int) -> Optional[date]:
    try:
        return value.replace(year=value.year + years)
    except ValueError:
        # Feb 29 in a year that is not a leap year
        return None


class ValueTransformer:
    """Best-effort converter from raw cells to semantic values.

    Parameters:
        phone_formatter: Collaborator normalizing phone numbers
        today: Clock used by the birth-date heuristics (defaults to date.today)
    """

    def __init__(
        self,
        phone_formatter: PhoneFormatterPort,
        today: Optional[Callable[[], date]] = None,
    ):
        self.phone_formatter = phone_formatter
        self._today = today or date.today

    def transform(self, raw: Any, kind: Any = TransformKind.TEXT) -> Any:
        """Transform ``raw`` per ``kind``. Never raises.

        Returns:
            None for blank input, otherwise the transformed value, or the
            original text when the value cannot be interpreted
        """
        kind = TransformKind.coerce(kind)
        try:
            return self.convert(raw, kind)
        except Exception as e:
            logger.warning(f"Transform '{kind.value}' failed ({type(e).__name__}); keeping raw text")
            return cell_to_text(raw)

    def convert(self, raw: Any, kind: TransformKind) -> Any:
        """Dispatch to the converter for ``kind``.

        Unlike ``transform`` this lets unexpected converter failures
        (e.g. from a custom phone formatter) propagate to the caller.
        """
        if is_blank(raw):
            return None
        if kind is TransformKind.SHORT_DATE:
            return self.to_short_date(raw)
        if kind is TransformKind.LONG_DATE:
            return self.to_long_date(raw)
        if kind is TransformKind.TIME:
            return self.to_time(raw)
        if kind is TransformKind.PHONE:
            return self.to_phone(raw)
        if kind is TransformKind.PROVIDER:
            return self.to_provider(cell_to_text(raw))
        if kind is TransformKind.NUMBER:
            return self.to_number(raw)
        if kind is TransformKind.BOOLEAN:
            return self.to_boolean(raw)
        return cell_to_text(raw)

    # ------------------------------------------------------------------
    # Dates
    # ------------------------------------------------------------------

    def to_short_date(self, raw: Any) -> Any:
        resolved = self.resolve_date(raw, birth_date=True)
        return resolved.isoformat() if resolved else cell_to_text(raw)

    def to_long_date(self, raw: Any) -> Any:
        resolved = self.resolve_date(raw, birth_date=False)
        return format_long_date(resolved) if resolved else cell_to_text(raw)

    def resolve_date(self, raw: Any, birth_date: bool = True) -> Optional[date]:
        """Interpret a raw cell as a calendar date.

        Parameters:
            raw: Cell value (native date, serial number or text)
            birth_date: Apply the two-digit-year and future-date corrections

        Returns:
            The date, or None if no interpretation succeeds
        """
        if isinstance(raw, datetime):
            return raw.date()
        if isinstance(raw, date):
            return raw

        text = cell_to_text(raw)
        number = parse_number(raw)
        if number is not None:
            if 1000 < number <= MAX_DATE_SERIAL:
                return serial_to_date(number)
            compact = COMPACT_DATE.match(text)
            if compact:
                try:
                    return date(*(int(g) for g in compact.groups()))
                except ValueError:
                    return None
            return None

        if birth_date:
            two_digit = TWO_DIGIT_YEAR.match(text)
            if two_digit:
                first, second, year = (int(g) for g in two_digit.groups())
                resolved = self._birth_date(month=first, day=second, two_digit_year=year)
                if resolved is None:
                    resolved = self._birth_date(month=second, day=first, two_digit_year=year)
                if resolved is not None:
                    return resolved

        four_digit = FOUR_DIGIT_YEAR.match(text)
        if four_digit:
            month, day, year = (int(g) for g in four_digit.groups())
            try:
                return date(year, month, day)
            except ValueError:
                pass

        return self._parse_generic(text, birth_date)

    def _birth_date(self, month: int, day: int, two_digit_year: int) -> Optional[date]:
        today = self._today()
        century = today.year // 100 * 100
        if two_digit_year > today.year % 100:
            year = century - 100 + two_digit_year
        else:
            year = century + two_digit_year
            if today.year - year > AGE_THRESHOLD:
                year -= 100

        try:
            resolved = date(year, month, day)
        except ValueError:
            return None

        if resolved > today:
            logger.debug("Two-digit birth year resolved to a future date; shifting back a century")
            resolved = _shift_century(resolved, -100)
        return resolved

    def _parse_generic(self, text: str, birth_date: bool) -> Optional[date]:
        if not any(ch.isdigit() for ch in text):
            return None
        try:
            parsed = date_parser.parse(text).date()
        except (ValueError, OverflowError):
            return None

        if birth_date and parsed > self._today():
            return _shift_century(parsed, -100)
        return parsed

    # ------------------------------------------------------------------
    # Other kinds
    # ------------------------------------------------------------------

    def to_time(self, raw: Any) -> Any:
        if isinstance(raw, datetime):
            raw = raw.time()
        if isinstance(raw, time):
            return format_clock(raw.hour, raw.minute)

        number = parse_number(raw)
        if number is not None and 0 <= number < 1:
            total_minutes = round(number * 24 * 60) % (24 * 60)
            return format_clock(total_minutes // 60, total_minutes % 60)

        text = cell_to_text(raw)
        match = CLOCK_TIME.match(text)
        if not match:
            return text

        if match.group(1) is not None:
            hours = int(match.group(1))
            minutes = int(match.group(2) or 0)
            meridiem = match.group(4).lower()
        else:
            hours = int(match.group(5))
            minutes = int(match.group(6))
            meridiem = None

        if minutes > 59 or hours > 23 or (meridiem and not 1 <= hours <= 12):
            return text
        if meridiem == "p" and hours < 12:
            hours += 12
        elif meridiem == "a" and hours == 12:
            hours = 0
        return format_clock(hours, minutes)

    def to_phone(self, raw: Any) -> str:
        text = cell_to_text(raw)
        return self.phone_formatter.normalize(text) or text

    @staticmethod
    def to_provider(text: str) -> str:
        """Title-case each word, keeping short all-caps words (MD, NP, DO)."""
        words = []
        for word in text.split(" "):
            if word.upper() == word and len(word) <= 3:
                words.append(word)
            else:
                words.append(word[:1].upper() + word[1:].lower())
        return " ".join(words)

    @staticmethod
    def to_number(raw: Any) -> Any:
        if isinstance(raw, bool):
            return int(raw)
        if isinstance(raw, int):
            return raw
        if isinstance(raw, float):
            return int(raw) if raw.is_integer() else raw

        text = cell_to_text(raw)
        cleaned = text.replace(",", "")
        try:
            return int(cleaned)
        except ValueError:
            pass
        try:
            number = float(cleaned)
        except ValueError:
            return text
        return int(number) if number.is_integer() else number

    @staticmethod
    def to_boolean(raw: Any) -> bool:
        if isinstance(raw, bool):
            return raw
        if isinstance(raw, (int, float)):
            return raw != 0
        token = cell_to_text(raw).lower()
        if token in TRUE_TOKENS:
            return True
        if token in FALSE_TOKENS:
            return False
        return bool(token)
