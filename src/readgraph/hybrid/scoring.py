"""Score normalization and fusion utilities for hybrid search."""

from __future__ import annotations

from dataclasses import replace
from typing import Iterable, Sequence

from readgraph.ingestion.models import ScoredChunk


VECTOR_WEIGHT = 1.0
LEXICAL_WEIGHT = 0.8
HYBRID_METHOD = "hybrid"
MERGE_KEY_CHARS = 100


def normalize_scores(results: Sequence[ScoredChunk], *, weight: float) -> list[ScoredChunk]:
    """Min-max normalize one result set into ``[0, weight]``; a single-valued set maps to ``weight``."""

    if weight < 0.0:
        raise ValueError("weight cannot be negative")
    if not results:
        return []

    scores = [float(result.score) for result in results]
    minimum = min(scores)
    maximum = max(scores)
    if minimum == maximum:
        return [replace(result, score=weight) for result in results]

    span = maximum - minimum
    return [replace(result, score=((float(result.score) - minimum) / span) * weight) for result in results]


def merge_key(result: ScoredChunk) -> str:
    return result.text[:MERGE_KEY_CHARS]


def order_results(results: Iterable[ScoredChunk]) -> list[ScoredChunk]:
    """Score descending with chunk id as the deterministic tie-break."""

    return sorted(results, key=lambda result: (-float(result.score), result.id))


def fuse_results(
    vector_results: Sequence[ScoredChunk],
    lexical_results: Sequence[ScoredChunk],
    *,
    top_k: int,
    vector_weight: float = VECTOR_WEIGHT,
    lexical_weight: float = LEXICAL_WEIGHT,
) -> list[ScoredChunk]:
    """Merge both branches by leading text, keeping the max score; collisions become ``hybrid``."""

    if top_k <= 0:
        raise ValueError("top_k must be positive")

    weighted = [
        *normalize_scores(vector_results, weight=vector_weight),
        *normalize_scores(lexical_results, weight=lexical_weight),
    ]

    merged: dict[str, ScoredChunk] = {}
    for result in weighted:
        key = merge_key(result)
        existing = merged.get(key)
        if existing is None:
            merged[key] = result
            continue
        merged[key] = replace(existing, score=max(existing.score, result.score), method=HYBRID_METHOD)

    return order_results(merged.values())[:top_k]
