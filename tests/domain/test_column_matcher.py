"""Tests for the tiered ColumnMatcher.

Tests cover:
- Exact matching on normalized and literal header names
- Candidate preference order and file-order tie breaking
- All-words and containment tiers
- The opt-in keyword tier and header exclusion
"""

import pytest

from patient_intake.domain.services.column_matcher import (
    TIER_ALL_WORDS,
    TIER_CONTAINS,
    TIER_EXACT,
    TIER_KEYWORD,
    ColumnMatcher,
)


@pytest.fixture
def matcher():
    return ColumnMatcher()


class TestExactTier:
    """Test normalized and literal equality."""

    def test_exact_match_ignores_case_and_punctuation(self, matcher):
        """Test that 'first_name' matches the header 'First Name'."""
        found = matcher.match(["Patient ID", "First Name"], ["first_name"])

        assert found.header == "First Name"
        assert found.tier == TIER_EXACT
        assert found.candidate == "first_name"

    def test_candidate_order_wins_over_header_order(self, matcher):
        """Test that the first configured candidate decides between headers."""
        headers = ["Date of Birth", "DOB"]

        assert matcher.find_column(headers, ["dob", "date of birth"]) == "DOB"
        assert matcher.find_column(headers, ["date of birth", "dob"]) == "Date of Birth"

    def test_exact_tier_beats_looser_tiers(self, matcher):
        """Test that a later exact candidate is preferred over an earlier loose one."""
        headers = ["Patient First Name", "fname"]

        found = matcher.match(headers, ["first name", "fname"])

        assert found.header == "fname"
        assert found.tier == TIER_EXACT


class TestLooseTiers:
    """Test all-words and containment matching."""

    def test_all_words_tier(self, matcher):
        """Test that every candidate word must occur in the header."""
        found = matcher.match(["Patient First Name", "Last"], ["first name"])

        assert found.header == "Patient First Name"
        assert found.tier == TIER_ALL_WORDS

    def test_containment_tier(self, matcher):
        """Test that a header contained in a candidate matches at tier 3."""
        found = matcher.match(["Cell", "Email"], ["cellphone"])

        assert found.header == "Cell"
        assert found.tier == TIER_CONTAINS

    def test_short_strings_never_match_by_containment(self, matcher):
        """Test that containment needs both sides longer than three characters."""
        assert matcher.match(["DOB"], ["dobdate"]) is None

    def test_no_match_returns_none(self, matcher):
        """Test that unrelated headers yield None."""
        assert matcher.match(["Email", "Notes"], ["phone"]) is None

    def test_empty_inputs(self, matcher):
        """Test that empty headers or candidates yield None."""
        assert matcher.match([], ["phone"]) is None
        assert matcher.match(["Phone"], []) is None
        assert matcher.match(["Phone"], ["", "  "]) is None


class TestKeywordTier:
    """Test the single-keyword fallback tier."""

    def test_keyword_tier_is_opt_in(self, matcher):
        """Test that keyword matching only runs when allowed."""
        headers = ["Patient Mobile #"]

        assert matcher.match(headers, ["mobile number"]) is None

        found = matcher.match(headers, ["mobile number"], allow_keyword=True)
        assert found.header == "Patient Mobile #"
        assert found.tier == TIER_KEYWORD

    def test_match_keyword_skips_excluded_headers(self, matcher):
        """Test that excluded headers are never returned."""
        headers = ["Phone", "Home Phone"]

        found = matcher.match_keyword(headers, ["phone"], exclude=["Phone"])

        assert found.header == "Home Phone"

    def test_match_keyword_ignores_short_words(self, matcher):
        """Test that keywords shorter than three characters are ignored."""
        assert matcher.match_keyword(["ID Number"], ["id"]) is None
