"""Splitting a page batch into extraction windows and keying the extraction cache."""

from __future__ import annotations

from dataclasses import dataclass, field
import math
from typing import Sequence

from readgraph.graph.models import TextUnit
from readgraph.ingestion.models import Chunk


DEFAULT_WINDOW_MAX_CHARS = 9000
DEFAULT_WINDOW_MAX_UNITS = 14


@dataclass(slots=True)
class ExtractionWindow:
    tag: str
    units: list[TextUnit] = field(default_factory=list)

    @property
    def chars(self) -> int:
        return sum(len(unit.text) for unit in self.units)

    def split(self, split_index: int) -> tuple["ExtractionWindow", "ExtractionWindow"]:
        """Halve the window; the first half gets the extra unit on odd sizes."""

        if len(self.units) < 2:
            raise ValueError("cannot split a window with fewer than two units")
        middle = math.ceil(len(self.units) / 2)
        return (
            ExtractionWindow(tag=f"s{split_index}-a", units=self.units[:middle]),
            ExtractionWindow(tag=f"s{split_index}-b", units=self.units[middle:]),
        )


def chunks_to_text_units(chunks: Sequence[Chunk]) -> list[TextUnit]:
    return [
        TextUnit(id=chunk.id, page=chunk.page_number, text=chunk.text, chapter_title=chunk.chapter_title)
        for chunk in chunks
    ]


def build_windows(
    units: Sequence[TextUnit],
    *,
    max_chars: int = DEFAULT_WINDOW_MAX_CHARS,
    max_units: int = DEFAULT_WINDOW_MAX_UNITS,
) -> list[ExtractionWindow]:
    """Greedy, order-preserving packing; an oversized single unit still gets its own window."""

    if max_chars < 1 or max_units < 1:
        raise ValueError("max_chars and max_units must be positive")

    windows: list[ExtractionWindow] = []
    current: list[TextUnit] = []
    total = 0
    for unit in units:
        exceeds_chars = bool(current) and total + len(unit.text) > max_chars
        if exceeds_chars or len(current) >= max_units:
            windows.append(ExtractionWindow(tag=f"w{len(windows)}", units=current))
            current = []
            total = 0
        current.append(unit)
        total += len(unit.text)

    if current:
        windows.append(ExtractionWindow(tag=f"w{len(windows)}", units=current))
    return windows


def chunk_hash(units: Sequence[TextUnit]) -> str:
    return "|".join(f"{unit.id}:{unit.page}" for unit in units)


def cache_key(
    *,
    book_id: str,
    prompt_version: int,
    page_start: int,
    page_end: int,
    window_tag: str,
    units: Sequence[TextUnit],
) -> str:
    return f"{book_id}:{prompt_version}:{page_start}-{page_end}:{window_tag}:{chunk_hash(units)}"
