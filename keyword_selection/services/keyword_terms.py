"""Keyword term cleanup shared by every slice loader.

Two steps run on each raw term: generic filler words are stripped from the
display text, then the remainder is canonicalized into the key used for
dedup and attempt-history lookups.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass

GENERIC_RANK_TOKENS = {
    "best",
    "top",
    "good",
    "great",
    "favorite",
    "favorites",
    "popular",
    "near",
    "nearby",
    "around",
    "closest",
    "close",
}

GENERIC_OBJECT_TOKENS = {
    "food",
    "dish",
    "dishes",
    "restaurant",
    "restaurants",
    "place",
    "places",
}

GENERIC_RANK_PATTERN = re.compile(
    r"\b(?:" + "|".join(sorted(GENERIC_RANK_TOKENS, key=len, reverse=True)) + r")\b",
    re.IGNORECASE,
)
WHITESPACE_PATTERN = re.compile(r"\s+")
EDGE_SEPARATOR_PATTERN = re.compile(r"^[\W_]+|[\W_]+$")
ALNUM_TOKEN_PATTERN = re.compile(r"[^\W_]+")
APOSTROPHE_PATTERN = re.compile(r"['‘’`]")
NON_ALNUM_PATTERN = re.compile(r"[\W_]+")


@dataclass(frozen=True, slots=True)
class StrippedTerm:
    """Display text left after removing generic tokens."""

    text: str
    is_generic_only: bool


def strip_generic_tokens(raw: str) -> StrippedTerm:
    """Remove rank/location filler words and flag terms that are only generic nouns.

    ``"best taco"`` becomes ``"taco"``; ``"best restaurant"`` leaves
    ``"restaurant"`` which is flagged as generic-only.
    """
    text = GENERIC_RANK_PATTERN.sub(" ", raw or "")
    text = WHITESPACE_PATTERN.sub(" ", text).strip()
    text = EDGE_SEPARATOR_PATTERN.sub("", text)

    tokens = ALNUM_TOKEN_PATTERN.findall(text.lower())
    is_generic_only = bool(tokens) and all(token in GENERIC_OBJECT_TOKENS for token in tokens)
    return StrippedTerm(text=text, is_generic_only=is_generic_only)


def normalize_keyword_term(text: str) -> str:
    """Canonical lowercase key for a search term.

    Folds case and diacritics, drops apostrophes, turns remaining punctuation
    into spaces and collapses whitespace.
    """
    decomposed = unicodedata.normalize("NFKD", text or "")
    without_marks = "".join(char for char in decomposed if not unicodedata.combining(char))
    lowered = without_marks.casefold()
    lowered = APOSTROPHE_PATTERN.sub("", lowered)
    lowered = NON_ALNUM_PATTERN.sub(" ", lowered)
    return WHITESPACE_PATTERN.sub(" ", lowered).strip()


def term_key(raw: str) -> str:
    """Strip generic tokens and normalize; empty when the term is unusable."""
    stripped = strip_generic_tokens(raw)
    if not stripped.text or stripped.is_generic_only:
        return ""
    return normalize_keyword_term(stripped.text)
