from __future__ import annotations

import pytest

from readgraph.ingestion.chunking import chunk_section, chunk_sections, find_break_point
from readgraph.ingestion.models import BookSection


def _chunk(text: str, *, cumulative: int = 0) -> list:
    return chunk_section(
        text,
        book_id="book",
        section_index=0,
        chapter_title="One",
        cumulative_chars_before_section=cumulative,
    )


def test_empty_text_yields_no_chunks() -> None:
    assert _chunk("") == []
    assert _chunk("   \n\n  ") == []


def test_short_text_becomes_single_chunk_with_page_from_offset() -> None:
    chunks = _chunk("  Hello there.  ", cumulative=3000)

    assert len(chunks) == 1
    assert chunks[0].id == "book-0-0"
    assert chunks[0].text == "Hello there."
    assert chunks[0].page_number == 2
    assert chunks[0].chapter_title == "One"


def test_paragraph_break_is_preferred_and_pages_follow_position() -> None:
    text = "x" * 480 + "\n\n" + "y" * 600

    chunks = _chunk(text, cumulative=2990)

    assert [chunk.id for chunk in chunks] == ["book-0-0", "book-0-1", "book-0-2"]
    assert chunks[0].text == "x" * 480
    assert chunks[1].text.startswith("x" * 48 + "\n\ny")
    assert chunks[2].text == "y" * 200
    assert [chunk.page_number for chunk in chunks] == [1, 2, 2]


def test_sentence_break_beats_later_word_break() -> None:
    text = "w" * 480 + ". " + "z" * 10 + " " + "q" * 600

    chunks = _chunk(text)

    assert chunks[0].text == "w" * 480 + "."


def test_break_too_close_to_window_start_is_ignored() -> None:
    text = "x" * 470 + "\n\n" + "y" * 600

    assert find_break_point(text, 500) == 500


def test_undersized_tail_is_merged_into_previous_chunk() -> None:
    text = "a" * 480 + ". " + "b" * 38

    chunks = _chunk(text)

    assert len(chunks) == 1
    assert chunks[0].text.startswith("a" * 480 + ". ")
    assert chunks[0].text.endswith("b" * 38)


def test_chunking_is_deterministic() -> None:
    text = " ".join(f"Sentence number {index} is here." for index in range(120))

    first = _chunk(text)
    second = _chunk(text)

    assert [(chunk.id, chunk.text, chunk.page_number) for chunk in first] == [
        (chunk.id, chunk.text, chunk.page_number) for chunk in second
    ]
    assert all(len(chunk.text) >= 100 for chunk in first)


def test_chunk_sections_threads_cumulative_offsets() -> None:
    sections = [
        BookSection(text="a" * 1400, chapter_title="First"),
        BookSection(text="Short second section.", chapter_title="Second"),
    ]

    chunks = chunk_sections(sections, book_id="bk")

    tail = chunks[-1]
    assert tail.id == "bk-1-0"
    assert tail.chapter_title == "Second"
    assert tail.page_number == 0


def test_invalid_overlap_is_rejected() -> None:
    with pytest.raises(ValueError, match="overlap_chars"):
        chunk_section(
            "text",
            book_id="b",
            section_index=0,
            chapter_title="",
            cumulative_chars_before_section=0,
            max_chars=100,
            overlap_chars=80,
        )
