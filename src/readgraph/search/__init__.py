"""Chunk storage and FTS5 lexical search."""

from .repository import ChunkRecord, SearchRepository

__all__ = ["ChunkRecord", "SearchRepository"]
