"""Spoiler-safe knowledge graph extraction and hybrid retrieval over books."""

__version__ = "0.1.0"
