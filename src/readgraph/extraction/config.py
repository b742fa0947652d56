"""Tunables of the incremental extraction run."""

from __future__ import annotations

from dataclasses import dataclass
import os
from typing import Mapping

from readgraph.extraction.windows import DEFAULT_WINDOW_MAX_CHARS, DEFAULT_WINDOW_MAX_UNITS


MAX_BATCH_PAGES = 10
DEFAULT_MAX_BATCHES_PER_RUN = 6
DEFAULT_MAX_RUN_SECONDS = 20.0
CONCURRENCY_FALLBACK = 2
MAX_WINDOW_CONCURRENCY = 3


def default_window_concurrency(cpu_count: int | None = None) -> int:
    cores = cpu_count if cpu_count is not None else os.cpu_count()
    if not cores:
        return CONCURRENCY_FALLBACK
    return max(1, min(MAX_WINDOW_CONCURRENCY, cores // 2))


def _positive_int(source: Mapping[str, str], name: str, default: int) -> int:
    raw = source.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer") from exc
    if value < 1:
        raise ValueError(f"{name} must be >= 1")
    return value


@dataclass(frozen=True, slots=True)
class ExtractionSettings:
    window_max_chars: int = DEFAULT_WINDOW_MAX_CHARS
    window_max_units: int = DEFAULT_WINDOW_MAX_UNITS
    window_concurrency: int = CONCURRENCY_FALLBACK
    max_batches_per_run: int = DEFAULT_MAX_BATCHES_PER_RUN
    max_run_seconds: float = DEFAULT_MAX_RUN_SECONDS
    batch_pages: int = MAX_BATCH_PAGES

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "ExtractionSettings":
        source: Mapping[str, str] = os.environ if environ is None else environ

        raw_seconds = source.get("READGRAPH_MAX_RUN_SECONDS", "").strip()
        max_run_seconds = DEFAULT_MAX_RUN_SECONDS
        if raw_seconds:
            try:
                max_run_seconds = float(raw_seconds)
            except ValueError as exc:
                raise ValueError("READGRAPH_MAX_RUN_SECONDS must be a number") from exc
            if max_run_seconds <= 0:
                raise ValueError("READGRAPH_MAX_RUN_SECONDS must be positive")

        return cls(
            window_max_chars=_positive_int(source, "READGRAPH_WINDOW_MAX_CHARS", DEFAULT_WINDOW_MAX_CHARS),
            window_max_units=_positive_int(source, "READGRAPH_WINDOW_MAX_UNITS", DEFAULT_WINDOW_MAX_UNITS),
            window_concurrency=min(
                MAX_WINDOW_CONCURRENCY,
                _positive_int(source, "READGRAPH_WINDOW_CONCURRENCY", default_window_concurrency()),
            ),
            max_batches_per_run=_positive_int(source, "READGRAPH_MAX_BATCHES_PER_RUN", DEFAULT_MAX_BATCHES_PER_RUN),
            max_run_seconds=max_run_seconds,
        )
