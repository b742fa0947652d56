"""Section chunking interfaces."""

from .chunking import chunk_section, chunk_sections
from .models import PAGE_SIZE, BookSection, Chunk, ScoredChunk

__all__ = ["PAGE_SIZE", "BookSection", "Chunk", "ScoredChunk", "chunk_section", "chunk_sections"]
