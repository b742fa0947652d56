"""Entity-name hygiene: noise filtering, canonical forms and living-entity checks."""

from __future__ import annotations

import re
from typing import Iterable

from readgraph.graph.models import Entity
from readgraph.search.normalize import normalize_name


_PRONOUN_LEADS = frozenset({"i", "me", "my", "mine", "we", "our", "you", "your", "he", "she", "they"})
_NOISY_LEADS = frozenset(
    {
        "must",
        "wonder",
        "admit",
        "trace",
        "do",
        "shall",
        "had",
        "never",
        "contented",
        "present",
        "said",
        "says",
        "the",
        "a",
        "an",
        "and",
    }
)
NON_HUMAN_MARKERS = (
    "animal",
    "creature",
    "beast",
    "monster",
    "vehicle",
    "ship",
    "car",
    "organization",
    "company",
    "group",
    "robot",
    "machine",
)
_NON_HUMAN_RE = re.compile(r"\b(?:" + "|".join(NON_HUMAN_MARKERS) + r")s?\b", re.IGNORECASE)
_EDGE_PUNCTUATION = "\"'`“”‘’«».,;:!?()[]{}"


def is_noisy_name(name: str, entity_type: str) -> bool:
    """Names the model tends to hallucinate from narration ("I", "said Tom", "my_friend")."""

    if not name or "_" in name:
        return True
    normalized = normalize_name(name)
    if not normalized:
        return True
    if entity_type != "character":
        return False

    tokens = normalized.split()
    first = tokens[0]
    if len(tokens) == 1 and len(first) <= 2:
        return True
    if first in _PRONOUN_LEADS or first in _NOISY_LEADS:
        return True
    return name.lower().startswith("i ")


def canonicalize_name(name: str) -> str:
    """Trim surrounding quotes and punctuation and collapse inner whitespace."""

    return " ".join(name.split()).strip(_EDGE_PUNCTUATION).strip()


def unique_strings(items: Iterable[str]) -> list[str]:
    """Deduplicate by normalized form, keeping the first trimmed spelling."""

    seen: set[str] = set()
    result: list[str] = []
    for item in items:
        trimmed = item.strip()
        if not trimmed:
            continue
        key = normalize_name(trimmed)
        if key in seen:
            continue
        seen.add(key)
        result.append(trimmed)
    return result


def is_living(entity: Entity) -> bool:
    """Characters that are not described as animals, machines or groups."""

    if entity.type != "character":
        return False
    return _NON_HUMAN_RE.search(f"{entity.canonical_name} {entity.description}") is None
