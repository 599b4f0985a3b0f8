"""Column Matching Service.

Finds the spreadsheet header that best corresponds to a configured field.
Uploaded rosters name the same concept in many ways ("DOB", "Birth Date",
"patient_dob"), so matching escalates through four tiers that trade precision
for recall. The first tier producing a match wins.

    1. exact      - normalized equality, or case-insensitive literal equality
    2. all-words  - every candidate word (len > 2) occurs in the header
    3. contains   - header contains candidate or vice versa (shorter len > 3)
    4. keyword    - any candidate word (len >= 3) occurs in the header;
                    opt-in, used only by the under-population fallback

Architecture:
    - Pure, deterministic, side-effect free
    - Candidates are tried in configured order; within a candidate, headers
      are tried in file order
"""

import logging
from functools import lru_cache
from typing import NamedTuple, Optional, Sequence

from patient_intake.domain.utils import normalize_header

logger = logging.getLogger(__name__)

TIER_EXACT = 1
TIER_ALL_WORDS = 2
TIER_CONTAINS = 3
TIER_KEYWORD = 4


class ColumnMatch(NamedTuple):
    header: str
    tier: int
    candidate: str


@lru_cache(maxsize=128)
def _normalize_headers(headers: tuple[str, ...]) -> tuple[tuple[str, str], ...]:
    return tuple((h, normalize_header(h)) for h in headers)


def _candidate_words(candidate: str, min_length: int) -> list[str]:
    words = (normalize_header(w) for w in candidate.lower().split())
    return [w for w in words if len(w) >= min_length]


class ColumnMatcher:
    """Tiered, case-insensitive header matcher."""

    def match(
        self,
        headers: Sequence[str],
        possible_columns: Sequence[str],
        allow_keyword: bool = False,
    ) -> Optional[ColumnMatch]:
        """Return the best header for a field, with the tier that matched it.

        Parameters:
            headers: File headers in column order
            possible_columns: The field's candidate names in preference order
            allow_keyword: Whether the loose single-keyword tier may be used

        Returns:
            ColumnMatch, or None when no tier matches
        """
        if not headers or not possible_columns:
            return None

        normalized = _normalize_headers(tuple(headers))
        candidates = [c for c in possible_columns if c and str(c).strip()]

        for candidate in candidates:
            target = normalize_header(candidate)
            literal = str(candidate).lower()
            for original, norm in normalized:
                if (target and norm == target) or original.lower() == literal:
                    return ColumnMatch(original, TIER_EXACT, candidate)

        for candidate in candidates:
            words = _candidate_words(candidate, 3)
            if not words:
                continue
            for original, norm in normalized:
                if all(word in norm for word in words):
                    return ColumnMatch(original, TIER_ALL_WORDS, candidate)

        for candidate in candidates:
            target = normalize_header(candidate)
            for original, norm in normalized:
                if not norm or not target:
                    continue
                if min(len(norm), len(target)) <= 3:
                    continue
                if target in norm or norm in target:
                    return ColumnMatch(original, TIER_CONTAINS, candidate)

        if allow_keyword:
            return self.match_keyword(headers, candidates)

        return None

    def find_column(
        self,
        headers: Sequence[str],
        possible_columns: Sequence[str],
        allow_keyword: bool = False,
    ) -> Optional[str]:
        """Return the matched header name, or None."""
        found = self.match(headers, possible_columns, allow_keyword=allow_keyword)
        return found.header if found else None

    def match_keyword(
        self,
        headers: Sequence[str],
        keywords: Sequence[str],
        exclude: Sequence[str] = (),
    ) -> Optional[ColumnMatch]:
        """Single-keyword tier: any word of length >= 3 found inside a header."""
        skipped = set(exclude)
        normalized = _normalize_headers(tuple(headers))
        for keyword in keywords:
            for word in _candidate_words(keyword, 3):
                for original, norm in normalized:
                    if original in skipped:
                        continue
                    if word in norm:
                        return ColumnMatch(original, TIER_KEYWORD, keyword)
        return None
