"""Canonical data structures shared by chunking, indexing and retrieval."""

from __future__ import annotations

from dataclasses import dataclass


PAGE_SIZE = 1500


@dataclass(slots=True)
class BookSection:
    """Plain text of one logical section (chapter) as handed over by the host."""

    text: str
    chapter_title: str = ""


@dataclass(slots=True)
class Chunk:
    """Page-tagged slice of a section, immutable once persisted."""

    id: str
    book_id: str
    section_index: int
    chapter_title: str
    text: str
    page_number: int
    embedding: list[float] | None = None

    def to_dict(self) -> dict[str, str | int]:
        return {
            "id": self.id,
            "book_id": self.book_id,
            "section_index": self.section_index,
            "chapter_title": self.chapter_title,
            "text": self.text,
            "page_number": self.page_number,
        }


@dataclass(slots=True)
class ScoredChunk:
    """Query-time chunk with its retrieval score and originating method."""

    chunk: Chunk
    score: float
    method: str

    @property
    def id(self) -> str:
        return self.chunk.id

    @property
    def text(self) -> str:
        return self.chunk.text

    @property
    def page_number(self) -> int:
        return self.chunk.page_number

    def to_dict(self) -> dict[str, str | int | float]:
        payload: dict[str, str | int | float] = dict(self.chunk.to_dict())
        payload["score"] = self.score
        payload["method"] = self.method
        return payload


def page_for_offset(offset: int) -> int:
    return max(0, offset) // PAGE_SIZE
