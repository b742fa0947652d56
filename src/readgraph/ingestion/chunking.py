"""Overlapping, page-tagged chunk builder for section plain text."""

from __future__ import annotations

from typing import Sequence

from readgraph.ingestion.models import BookSection, Chunk, page_for_offset


DEFAULT_MAX_CHARS = 500
DEFAULT_OVERLAP_CHARS = 50
DEFAULT_MIN_CHARS = 100
BREAK_SEARCH_RANGE = 50


def find_break_point(text: str, target: int, *, search_range: int = BREAK_SEARCH_RANGE) -> int:
    """Pick a cut position near ``target``: paragraph, sentence, word, else hard cut."""

    start = max(0, target - search_range)
    end = min(len(text), target + search_range)
    window = text[start:end]
    # paragraph and sentence breaks only count past the first half of the range
    min_offset = search_range / 2

    paragraph = window.rfind("\n\n")
    if paragraph != -1 and paragraph > min_offset:
        return start + paragraph + 2

    sentence = window.rfind(". ")
    if sentence != -1 and sentence > min_offset:
        return start + sentence + 2

    word = window.rfind(" ")
    if word != -1:
        return start + word + 1

    return target


def chunk_section(
    text: str,
    *,
    book_id: str,
    section_index: int,
    chapter_title: str,
    cumulative_chars_before_section: int,
    max_chars: int = DEFAULT_MAX_CHARS,
    overlap_chars: int = DEFAULT_OVERLAP_CHARS,
    min_chars: int = DEFAULT_MIN_CHARS,
) -> list[Chunk]:
    """Split one section into deterministic chunks with global page numbers."""

    if max_chars <= 0:
        raise ValueError("max_chars must be positive")
    if overlap_chars < 0:
        raise ValueError("overlap_chars cannot be negative")
    if overlap_chars >= max_chars - BREAK_SEARCH_RANGE:
        raise ValueError("overlap_chars must leave room for forward progress")
    if min_chars < 0:
        raise ValueError("min_chars cannot be negative")
    if cumulative_chars_before_section < 0:
        raise ValueError("cumulative_chars_before_section cannot be negative")

    body = text.strip()
    if not body:
        return []

    def _make(index: int, chunk_text: str, position: int) -> Chunk:
        return Chunk(
            id=f"{book_id}-{section_index}-{index}",
            book_id=book_id,
            section_index=section_index,
            chapter_title=chapter_title,
            text=chunk_text,
            page_number=page_for_offset(cumulative_chars_before_section + position),
        )

    if len(body) < min_chars:
        return [_make(0, body, 0)]

    chunks: list[Chunk] = []
    position = 0
    chunk_index = 0

    while position < len(body):
        chunk_end = position + max_chars

        if chunk_end >= len(body):
            remaining = body[position:].strip()
            if len(remaining) >= min_chars or not chunks:
                chunks.append(_make(chunk_index, remaining, position))
            else:
                tail = chunks[-1]
                tail.text = f"{tail.text} {remaining}"
            break

        chunk_end = find_break_point(body, chunk_end)
        chunk_text = body[position:chunk_end].strip()
        if len(chunk_text) >= min_chars:
            chunks.append(_make(chunk_index, chunk_text, position))
            chunk_index += 1

        position = chunk_end - overlap_chars

    return chunks


def chunk_sections(
    sections: Sequence[BookSection],
    *,
    book_id: str,
    max_chars: int = DEFAULT_MAX_CHARS,
    overlap_chars: int = DEFAULT_OVERLAP_CHARS,
    min_chars: int = DEFAULT_MIN_CHARS,
) -> list[Chunk]:
    """Chunk a whole book, threading the cumulative character offset across sections."""

    chunks: list[Chunk] = []
    cumulative = 0
    for section_index, section in enumerate(sections):
        chunks.extend(
            chunk_section(
                section.text,
                book_id=book_id,
                section_index=section_index,
                chapter_title=section.chapter_title,
                cumulative_chars_before_section=cumulative,
                max_chars=max_chars,
                overlap_chars=overlap_chars,
                min_chars=min_chars,
            )
        )
        cumulative += len(section.text.strip())
    return chunks
