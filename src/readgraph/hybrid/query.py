"""Hybrid query orchestration across the lexical and vector engines of one book."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol, Sequence

import numpy as np

from readgraph.hybrid.scoring import fuse_results, order_results
from readgraph.ingestion.models import ScoredChunk
from readgraph.search.query import search_chunks
from readgraph.search.repository import SearchRepository
from readgraph.semantic.providers import EmbeddingRequestError
from readgraph.semantic.semantic_repository import EmbeddingSpace, SemanticRepository
from readgraph.semantic.vector_store import VectorIndexDirectory, VectorStoreError


LOGGER = logging.getLogger(__name__)

VECTOR_METHOD = "vector"


class _QueryEmbedder(Protocol):
    embedding_model: str

    def embed_query(self, text: str) -> np.ndarray:
        ...


class HybridRetriever:
    """Page-bounded lexical, vector and fused retrieval for a single book."""

    def __init__(
        self,
        *,
        search_repository: SearchRepository,
        embedder: _QueryEmbedder | None = None,
        vectors: VectorIndexDirectory | None = None,
        owns_repository: bool = False,
    ) -> None:
        self._search_repository = search_repository
        self._semantic = SemanticRepository(search_repository.connection)
        self._embedder = embedder
        self._vectors = vectors
        self._owns_repository = owns_repository

    @classmethod
    def from_db_path(cls, *, db_path: str | Path, embedder: _QueryEmbedder | None = None) -> "HybridRetriever":
        return cls(search_repository=SearchRepository(db_path), embedder=embedder, owns_repository=True)

    @property
    def repository(self) -> SearchRepository:
        return self._search_repository

    def close(self) -> None:
        if self._owns_repository:
            self._search_repository.close()

    def __enter__(self) -> "HybridRetriever":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def is_indexed(self, book_id: str) -> bool:
        return self._search_repository.is_indexed(book_id)

    def lexical_search(self, book_id: str, query: str, top_k: int = 10, max_page: int | None = None) -> list[ScoredChunk]:
        return search_chunks(
            self._search_repository.connection,
            book_id=book_id,
            query=query,
            limit=top_k,
            max_page=max_page,
        )

    def vector_search(
        self,
        book_id: str,
        query_embedding: np.ndarray | Sequence[float],
        top_k: int = 10,
        max_page: int | None = None,
    ) -> list[ScoredChunk]:
        """Cosine search restricted to the book's embedded chunks at or before ``max_page``."""

        if top_k <= 0:
            raise ValueError("top_k must be positive")

        space = self._semantic.embedding_space()
        vectors = self._open_vectors(space)
        if space is None or vectors is None or not vectors.has(book_id):
            return []

        allowed_ids = self._semantic.vector_ids(book_id=book_id, model=space.model, max_page=max_page)
        if not allowed_ids:
            return []

        hits = vectors.get(book_id).query(query_embedding, top_k=top_k, allowed_ids=allowed_ids)
        chunks = self._search_repository.get_chunks_by_row_ids([hit.vector_id for hit in hits])
        results = [
            ScoredChunk(chunk=chunks[hit.vector_id], score=hit.score, method=VECTOR_METHOD)
            for hit in hits
            if hit.vector_id in chunks
        ]
        return order_results(results)[:top_k]

    def hybrid_search(self, book_id: str, query: str, top_k: int = 10, max_page: int | None = None) -> list[ScoredChunk]:
        """Fuse both branches; without a working embedder the result is lexical only."""

        if top_k <= 0:
            raise ValueError("top_k must be positive")
        if not query.strip():
            return []

        branch_limit = top_k * 2
        lexical_results = self.lexical_search(book_id, query, branch_limit, max_page)
        vector_results = self._safe_vector_search(book_id, query, branch_limit, max_page)
        return fuse_results(vector_results, lexical_results, top_k=top_k)

    def _safe_vector_search(self, book_id: str, query: str, top_k: int, max_page: int | None) -> list[ScoredChunk]:
        if self._embedder is None:
            return []
        try:
            query_embedding = self._embedder.embed_query(query)
            return self.vector_search(book_id, query_embedding, top_k, max_page)
        except (EmbeddingRequestError, VectorStoreError, ValueError) as exc:
            LOGGER.warning("Vector search unavailable for %s, using lexical results only: %s", book_id, exc)
            return []

    def _open_vectors(self, space: EmbeddingSpace | None) -> VectorIndexDirectory | None:
        if self._vectors is None and space is not None:
            self._vectors = VectorIndexDirectory(space.vectors_dir, dimension=space.dimension)
        return self._vectors
