from __future__ import annotations

import re
import unicodedata

from razdel import tokenize


_WORD_RE = re.compile(r"[^\W_]+")

ENGLISH_STOPWORDS = frozenset(
    {
        "a",
        "an",
        "and",
        "are",
        "as",
        "at",
        "be",
        "by",
        "for",
        "from",
        "has",
        "he",
        "in",
        "is",
        "it",
        "its",
        "of",
        "on",
        "that",
        "the",
        "to",
        "was",
        "were",
        "will",
        "with",
    }
)


def normalize_name(value: str) -> str:
    """NFKC, lowercase, collapsed whitespace. Used as the entity identity key."""

    return " ".join(unicodedata.normalize("NFKC", value).lower().split())


def extract_terms(text: str, *, drop_stopwords: bool = False) -> list[str]:
    terms: list[str] = []
    for token in tokenize(unicodedata.normalize("NFKC", text).lower()):
        value = token.text.strip()
        if not value or not _WORD_RE.fullmatch(value):
            continue
        if drop_stopwords and value in ENGLISH_STOPWORDS:
            continue
        terms.append(value)
    return terms


def unique_terms(terms: list[str]) -> list[str]:
    seen: set[str] = set()
    ordered: list[str] = []
    for term in terms:
        if term in seen:
            continue
        seen.add(term)
        ordered.append(term)
    return ordered
