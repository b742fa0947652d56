from __future__ import annotations

from readgraph.extraction.genre import FALLBACK_GENRE, build_genre_hints, detect_genre, get_genre_hints


def test_detects_mystery_from_subjects_and_description() -> None:
    hints = detect_genre(
        title="The Quiet Valley",
        description="A detective follows a murder investigation.",
        subjects=["Crime"],
    )

    assert hints.genre == "mystery"
    assert "clues" in hints.extraction_focus


def test_weak_signal_falls_back_to_fiction() -> None:
    assert detect_genre(title="Dragon").genre == FALLBACK_GENRE
    assert detect_genre().genre == FALLBACK_GENRE


def test_unknown_genre_has_generic_hints() -> None:
    assert get_genre_hints("cookbook").genre == "unknown"


def test_build_genre_hints_lines() -> None:
    assert build_genre_hints() == []

    lines = build_genre_hints(title="Wizard and Dragon", subjects=["Fantasy", "Magic"])

    assert lines[0] == "Focus on magic systems, factions, and mythical creatures"
    assert "Prioritize artifacts when explicit." in lines
    assert lines[-1] == "Book subjects: Fantasy, Magic"
    assert len(lines) == len(set(lines))
