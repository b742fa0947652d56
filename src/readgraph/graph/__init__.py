"""Book knowledge graph records and their persistence."""

from .cache import GraphCache, InMemoryBookCache, NullCache
from .models import BookGraph, Entity, Evidence, ExtractionState, GraphSnapshot, Relationship, TextUnit
from .repository import GraphRepository, build_snapshot

__all__ = [
    "BookGraph",
    "Entity",
    "Evidence",
    "ExtractionState",
    "GraphCache",
    "GraphRepository",
    "GraphSnapshot",
    "InMemoryBookCache",
    "NullCache",
    "Relationship",
    "TextUnit",
    "build_snapshot",
]
