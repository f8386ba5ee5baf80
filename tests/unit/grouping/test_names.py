"""Tests for friend-name matching."""

from __future__ import annotations

from grouping.utils.names import (
    NameCandidate,
    last_name_matches,
    match_friend_name,
    normalize_name,
    parse_name,
)

CANDIDATES = [
    NameCandidate("a1", "Emma", "Johnson"),
    NameCandidate("a2", "Emma", "Simons Zarlin"),
    NameCandidate("a3", "Liam", "Smith"),
    NameCandidate("a4", "Noah", "Goldsmith"),
]


class TestNormalizeName:
    def test_lowercases_and_collapses_whitespace(self):
        assert normalize_name("  Emma   JOHNSON ") == "emma johnson"

    def test_strips_punctuation_but_keeps_hyphens(self):
        assert normalize_name("O'Brien-Smith, Jr.") == "obrien-smith jr"


class TestParseName:
    def test_full_name(self):
        assert parse_name("Emma Rose Johnson") == ("emma", "johnson", True)

    def test_first_name_only(self):
        assert parse_name("Emma") == ("emma", "", False)


class TestLastNameMatches:
    def test_compound_last_name_suffix(self):
        assert last_name_matches("Zarlin", "Simons Zarlin")

    def test_hyphenated_last_name_suffix(self):
        assert last_name_matches("Harris", "Simon-Harris")

    def test_substring_is_not_a_match(self):
        assert not last_name_matches("Smith", "Goldsmith")


class TestMatchFriendName:
    """Free-text friend requests resolve to a single camper or nothing."""

    def test_exact_full_name(self):
        assert match_friend_name("Emma Johnson", CANDIDATES) == "a1"

    def test_exact_match_ignores_case_and_punctuation(self):
        assert match_friend_name("emma  johnson.", CANDIDATES) == "a1"

    def test_first_and_compound_last_name(self):
        assert match_friend_name("Emma Zarlin", CANDIDATES) == "a2"

    def test_unique_bare_first_name(self):
        assert match_friend_name("Liam", CANDIDATES) == "a3"

    def test_ambiguous_first_name(self):
        assert match_friend_name("Emma", CANDIDATES) is None

    def test_ambiguous_containment(self):
        """'Smith' is contained in two full names."""
        assert match_friend_name("Smith", CANDIDATES) is None

    def test_no_match(self):
        assert match_friend_name("Noah Smith", CANDIDATES) is None

    def test_empty_name(self):
        assert match_friend_name("  ", CANDIDATES) is None
