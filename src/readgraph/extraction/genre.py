"""Keyword-based genre detection used to focus the extraction prompt."""

from __future__ import annotations

from dataclasses import dataclass
import re
from typing import Sequence


FALLBACK_GENRE = "fiction"
_MIN_SCORE = 2

GENRE_KEYWORDS: dict[str, tuple[str, ...]] = {
    "fantasy": (
        "fantasy", "magic", "wizard", "dragon", "sword", "sorcery",
        "mythical", "realm", "spell", "kingdom", "myth", "fae",
    ),
    "sci-fi": (
        "science fiction", "sci-fi", "scifi", "space", "future", "alien", "robot",
        "technology", "dystopian", "cyberpunk", "android", "galaxy", "time travel",
    ),
    "mystery": (
        "mystery", "detective", "crime", "murder", "investigation",
        "thriller", "suspense", "noir", "case",
    ),
    "romance": ("romance", "love", "relationship", "wedding", "heart", "passion", "romcom"),
    "history": (
        "history", "historical", "war", "century", "ancient",
        "medieval", "victorian", "revolution", "empire", "dynasty",
    ),
    "biography": ("biography", "memoir", "autobiography", "life story"),
    "non-fiction": (
        "non-fiction", "nonfiction", "essay", "journalism", "documentary", "guide",
        "manual", "self-help", "business", "science", "philosophy", "psychology",
        "economics", "politics", "sociology", "technology", "how to", "case study",
    ),
    "fiction": ("fiction", "novel", "story", "literary", "adventure", "horror", "thriller", "poetry"),
}


@dataclass(frozen=True, slots=True)
class GenreHints:
    genre: str
    hints: tuple[str, ...]
    extraction_focus: tuple[str, ...]


_HINTS: dict[str, GenreHints] = {
    "fantasy": GenreHints(
        "fantasy",
        (
            "Focus on magic systems, factions, and mythical creatures",
            "Track character lineages and prophecies",
            "Identify key artifacts and magical items",
        ),
        ("factions", "magic systems", "artifacts", "lineage", "prophecy"),
    ),
    "sci-fi": GenreHints(
        "sci-fi",
        (
            "Focus on technology, scientific concepts, and institutions",
            "Track space locations and spacecraft",
            "Identify key experiments and discoveries",
        ),
        ("technology", "institutions", "terminology", "locations", "concepts"),
    ),
    "mystery": GenreHints(
        "mystery",
        (
            "Focus on suspects, clues, and motives",
            "Track alibis and timelines carefully",
            "Identify key evidence and red herrings",
        ),
        ("suspects", "clues", "motives", "alibis", "evidence"),
    ),
    "romance": GenreHints(
        "romance",
        (
            "Focus on emotional states and relationship development",
            "Track romantic moments and conflicts",
            "Identify obstacles to the relationship",
        ),
        ("emotions", "relationships", "conflicts", "moments", "obstacles"),
    ),
    "history": GenreHints(
        "history",
        (
            "Focus on historical events and figures",
            "Track timelines and causation",
            "Identify key documents and sources",
        ),
        ("events", "figures", "dates", "causes", "documents"),
    ),
    "biography": GenreHints(
        "biography",
        (
            "Focus on life events and personal relationships",
            "Track career progression and achievements",
            "Identify influential people and mentors",
        ),
        ("events", "relationships", "achievements", "career", "influences"),
    ),
    "non-fiction": GenreHints(
        "non-fiction",
        (
            "Focus on key concepts and definitions",
            "Track arguments and evidence",
            "Identify important claims and conclusions",
        ),
        ("concepts", "definitions", "arguments", "evidence", "claims", "sources"),
    ),
    "fiction": GenreHints(
        "fiction",
        (
            "Focus on character development and plot progression",
            "Track character arcs and conflicts",
            "Identify turning points and conflicts",
        ),
        ("characters", "plot", "conflicts", "development"),
    ),
    "unknown": GenreHints(
        "unknown",
        ("Extract all relevant entities and relationships",),
        ("entities", "relationships", "events"),
    ),
}

_KEYWORD_PATTERNS = {
    genre: [re.compile(rf"\b{re.escape(keyword)}\b", re.IGNORECASE) for keyword in keywords]
    for genre, keywords in GENRE_KEYWORDS.items()
}


def get_genre_hints(genre: str) -> GenreHints:
    return _HINTS.get(genre, _HINTS["unknown"])


def detect_genre(
    *,
    title: str = "",
    description: str = "",
    subjects: Sequence[str] = (),
) -> GenreHints:
    """Score each genre by keyword hits in the metadata; weak signals fall back to fiction."""

    combined = " ".join([*subjects, description, title]).lower()
    best_genre = "unknown"
    best_score = 0
    for genre, patterns in _KEYWORD_PATTERNS.items():
        score = sum(len(pattern.findall(combined)) for pattern in patterns)
        if score > best_score:
            best_genre, best_score = genre, score

    if best_genre == "unknown" or best_score < _MIN_SCORE:
        best_genre = FALLBACK_GENRE
    return get_genre_hints(best_genre)


def build_genre_hints(
    *,
    title: str = "",
    description: str = "",
    subjects: Sequence[str] = (),
) -> list[str]:
    """Prompt-ready hint lines for a book; empty when there is no metadata at all."""

    if not (title or description or subjects):
        return []
    detected = detect_genre(title=title, description=description, subjects=subjects)
    lines = [*detected.hints, *(f"Prioritize {focus} when explicit." for focus in detected.extraction_focus)]
    if subjects:
        lines.append(f"Book subjects: {', '.join(list(subjects)[:8])}")
    return list(dict.fromkeys(lines))
