"""Book indexing: chunk sections, store them, embed them into the book's vector index."""

from __future__ import annotations

from dataclasses import dataclass, field
import hashlib
import logging
from pathlib import Path
import time
from typing import Protocol, Sequence

import numpy as np

from readgraph.ingestion.chunking import chunk_sections
from readgraph.ingestion.models import BookSection
from readgraph.search.repository import ChunkRecord, SearchRepository
from readgraph.semantic.semantic_repository import ChunkVector, EmbeddingSpace, SemanticRepository
from readgraph.semantic.vector_store import VectorIndexDirectory, VectorStoreError


LOGGER = logging.getLogger(__name__)

EMBED_BATCH_SIZE = 32


class _BatchEmbedder(Protocol):
    embedding_model: str

    def embed(self, texts: Sequence[str], *, stage: str = "chunks") -> np.ndarray:
        ...


@dataclass(slots=True)
class BookIndexStats:
    book_id: str
    chunks: int = 0
    embedded_chunks: int = 0
    skipped_unchanged: int = 0
    removed_vectors: int = 0
    errors: int = 0
    duration_ms: int = 0
    model: str = ""
    error_details: list[dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, int | str | list[dict[str, str]]]:
        return {
            "book_id": self.book_id,
            "chunks": self.chunks,
            "embedded_chunks": self.embedded_chunks,
            "skipped_unchanged": self.skipped_unchanged,
            "removed_vectors": self.removed_vectors,
            "errors": self.errors,
            "duration_ms": self.duration_ms,
            "model": self.model,
            "error_details": self.error_details,
        }


def _semantic_fingerprint(text: str, model: str) -> str:
    payload = f"{model}\n{text}".encode("utf-8")
    return hashlib.sha256(payload).hexdigest()



class BookIndexer:
    """Replaces a book's chunks and keeps its vector index in step with them."""

    def __init__(
        self,
        *,
        repository: SearchRepository,
        vectors_dir: str | Path,
        embedder: _BatchEmbedder | None = None,
        batch_size: int = EMBED_BATCH_SIZE,
    ) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")

        self._repository = repository
        self._semantic = SemanticRepository(repository.connection)
        self._vectors_dir = Path(vectors_dir)
        self._embedder = embedder
        self._batch_size = batch_size
        self._directory: VectorIndexDirectory | None = None

    def close(self) -> None:
        self._repository.close()

    def __enter__(self) -> "BookIndexer":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def index_book(self, book_id: str, sections: Sequence[BookSection], *, title: str | None = None) -> BookIndexStats:
        """Chunk and store a whole book, then embed it; embedding failures leave it lexically searchable."""

        if not book_id.strip():
            raise ValueError("book_id cannot be empty")

        started = time.perf_counter()
        stats = BookIndexStats(book_id=book_id, model=self._embedder.embedding_model if self._embedder else "")

        chunks = chunk_sections(sections, book_id=book_id)
        stats.chunks = self._repository.replace_book_chunks(book_id=book_id, title=title, chunks=chunks)
        LOGGER.info("Stored %s chunks for book %s", stats.chunks, book_id)

        # replaced chunks get new row ids, so none of the old vectors can be reused
        directory = self._open_directory()
        if directory is not None:
            stats.removed_vectors = directory.drop(book_id)

        if self._embedder is not None:
            self._embed_records(self._repository.get_chunk_records(book_id), stats)
            self._flush()

        stats.duration_ms = int((time.perf_counter() - started) * 1000)
        return stats

    def embed_book(self, book_id: str) -> BookIndexStats:
        """Embed stored chunks that have no vector yet or whose text changed."""

        if self._embedder is None:
            raise ValueError("embed_book requires an embedder")

        started = time.perf_counter()
        stats = BookIndexStats(book_id=book_id, model=self._embedder.embedding_model)
        records = self._repository.get_chunk_records(book_id)
        stats.chunks = len(records)
        self._embed_records(records, stats)
        self._flush()
        stats.duration_ms = int((time.perf_counter() - started) * 1000)
        return stats

    def _embed_records(self, records: list[ChunkRecord], stats: BookIndexStats) -> None:
        assert self._embedder is not None
        model = self._embedder.embedding_model
        known = self._semantic.fingerprints(book_id=stats.book_id, model=model)

        pending: list[tuple[ChunkRecord, str]] = []
        for record in records:
            fingerprint = _semantic_fingerprint(record.chunk.text, model)
            if known.get(record.row_id) == fingerprint:
                stats.skipped_unchanged += 1
            else:
                pending.append((record, fingerprint))

        for start in range(0, len(pending), self._batch_size):
            batch = pending[start : start + self._batch_size]
            failure = self._embed_batch(stats.book_id, batch, model)
            if failure is None:
                stats.embedded_chunks += len(batch)
                continue
            stage, error = failure
            LOGGER.warning("Embedding batch failed for %s at %s: %s", stats.book_id, stage, error)
            stats.errors += len(batch)
            stats.error_details.append(
                {"stage": stage, "chunk_ids": ",".join(record.chunk.id for record, _ in batch), "error": error}
            )

    def _embed_batch(self, book_id: str, batch: list[tuple[ChunkRecord, str]], model: str) -> tuple[str, str] | None:
        """Embed and store one batch; returns ``(stage, error)`` instead of raising."""

        assert self._embedder is not None
        try:
            vectors = self._embedder.embed([record.chunk.text for record, _ in batch], stage="chunks")
        except Exception as exc:
            return "embed", str(exc)
        if vectors.ndim != 2 or vectors.shape[0] != len(batch):
            return "embed", f"Embedding count mismatch: expected {len(batch)}, got {vectors.shape[0]}"

        try:
            directory = self._require_directory(model=model, dimension=int(vectors.shape[1]))
            directory.get(book_id).upsert([record.row_id for record, _ in batch], vectors)
        except VectorStoreError as exc:
            return "vector_store", str(exc)

        self._semantic.record_vectors(
            ChunkVector(chunk_row_id=record.row_id, book_id=book_id, model=model, fingerprint=fingerprint)
            for record, fingerprint in batch
        )
        return None

    def _open_directory(self) -> VectorIndexDirectory | None:
        if self._directory is None:
            space = self._semantic.embedding_space()
            if space is not None:
                self._directory = VectorIndexDirectory(space.vectors_dir, dimension=space.dimension)
        return self._directory

    def _require_directory(self, *, model: str, dimension: int) -> VectorIndexDirectory:
        space = self._semantic.embedding_space()
        if space is None:
            space = EmbeddingSpace(
                model=model,
                dimension=dimension,
                metric=VectorIndexDirectory.metric,
                vectors_dir=str(self._vectors_dir),
            )
            self._semantic.record_embedding_space(space)
        if space.model != model:
            raise VectorStoreError(f"Vectors were built with '{space.model}', not the configured '{model}'")
        if space.dimension != dimension:
            raise VectorStoreError(f"Embedding dimension mismatch: index has {space.dimension}, model returned {dimension}")

        directory = self._open_directory()
        assert directory is not None
        return directory

    def _flush(self) -> None:
        if self._directory is not None:
            written = self._directory.flush()
            LOGGER.debug("Flushed %d vector index file(s)", written)
