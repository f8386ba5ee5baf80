"""Name parsing and friend-name matching."""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from typing import NamedTuple

logger = logging.getLogger(__name__)


class ParsedName(NamedTuple):
    """Parsed name components."""

    first: str
    last: str
    is_complete: bool


class NameCandidate(NamedTuple):
    """A camper a free-text friend name may refer to."""

    athlete_id: str
    first_name: str
    last_name: str

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


def normalize_name(name: str) -> str:
    """Lowercase, collapse whitespace and drop . , ' " ( ) (hyphens are kept)."""
    name = " ".join(name.strip().lower().split())
    return re.sub(r'[.,\'"()]', "", name)


def parse_name(name: str) -> ParsedName:
    """Parse name into (first, last, is_complete). Middle names are ignored."""
    parts = normalize_name(name).split() if name else []
    if len(parts) < 2:
        return ParsedName(parts[0] if parts else "", "", False)
    return ParsedName(parts[0], parts[-1], True)


def split_last_name_words(last_name: str) -> list[str]:
    """Split a last name into words on spaces and hyphens.

    Examples:
        "Simons Zarlin" -> ["simons", "zarlin"]
        "Simon-Harris" -> ["simon", "harris"]
    """
    return [w.lower() for w in re.split(r"[\s-]+", last_name.strip()) if w]


def last_name_matches(search_last: str, db_last: str) -> bool:
    """True if the searched last name equals, or is a word-suffix of, the stored one.

    Examples:
        ("Zarlin", "Simons Zarlin") -> True
        ("Harris", "Simon-Harris") -> True
        ("Smith", "Goldsmith") -> False
    """
    search_words = split_last_name_words(search_last)
    db_words = split_last_name_words(db_last)

    if not search_words or not db_words or len(search_words) > len(db_words):
        return False
    return db_words[-len(search_words) :] == search_words


def match_friend_name(name: str, candidates: Sequence[NameCandidate]) -> str | None:
    """Resolve a parent-typed friend name to one camper's athlete id.

    Tries, in order, stopping at the first strategy with exactly one hit:
        1. exact full name
        2. first name plus last name (compound last names match by suffix)
        3. first name alone, when the request is a bare first name
        4. the typed text contained in a camper's full name

    Returns None when nothing or more than one camper matches.
    """
    target = normalize_name(name)
    if not target:
        return None

    exact = [c for c in candidates if normalize_name(c.full_name) == target]
    if len(exact) == 1:
        return exact[0].athlete_id
    if len(exact) > 1:
        logger.debug(f"Friend name '{name}' is ambiguous ({len(exact)} exact matches)")
        return None

    parsed = parse_name(target)
    if parsed.is_complete:
        by_parts = [
            c
            for c in candidates
            if normalize_name(c.first_name) == parsed.first and last_name_matches(parsed.last, c.last_name)
        ]
        if len(by_parts) == 1:
            return by_parts[0].athlete_id
    else:
        by_first = [c for c in candidates if normalize_name(c.first_name) == parsed.first]
        if len(by_first) == 1:
            return by_first[0].athlete_id

    contained = [c for c in candidates if target in normalize_name(c.full_name)]
    if len(contained) == 1:
        return contained[0].athlete_id

    return None
