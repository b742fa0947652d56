"""Domain errors raised by the extraction pipeline."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class SchemaInvalid(RuntimeError):
    """Model output could not be parsed into a valid extraction."""

    window_tag: str
    message: str

    def __str__(self) -> str:
        return f"{self.message} (window={self.window_tag or '-'})"


@dataclass(slots=True)
class ExtractionUnavailable(RuntimeError):
    """The extraction capability cannot be used at all: missing, unauthorized or unreachable."""

    provider: str
    message: str

    def __str__(self) -> str:
        return f"{self.message} (provider={self.provider})"


@dataclass(slots=True)
class NotIndexed(RuntimeError):
    book_id: str

    def __str__(self) -> str:
        return f"Book must be indexed before extraction (book_id={self.book_id})"


@dataclass(slots=True)
class ExtractionFailed(RuntimeError):
    """Every window of a batch failed during a forced run."""

    book_id: str
    page_start: int
    page_end: int

    def __str__(self) -> str:
        return f"Extraction failed for pages {self.page_start}-{self.page_end} (book_id={self.book_id})"
