"""Per-book FAISS indexes of unit-length chunk vectors, searched by cosine similarity."""

from __future__ import annotations

from dataclasses import dataclass
import hashlib
import logging
from pathlib import Path
import re
from typing import Any, Sequence

import numpy as np


LOGGER = logging.getLogger(__name__)

METRIC_INNER_PRODUCT = "ip"
INDEX_SUFFIX = ".faiss"

_UNSAFE_FILENAME_RE = re.compile(r"[^A-Za-z0-9_.-]+")


@dataclass(slots=True)
class VectorHit:
    vector_id: int
    score: float


@dataclass(slots=True)
class VectorStoreError(RuntimeError):
    message: str

    def __str__(self) -> str:
        return self.message


def load_faiss() -> Any:
    try:
        import faiss
    except ImportError as exc:  # pragma: no cover - environment-dependent
        raise VectorStoreError(f"faiss-cpu is required for vector search: {exc}") from exc
    return faiss


def unit_rows(values: np.ndarray | Sequence[float] | Sequence[Sequence[float]], *, dimension: int) -> np.ndarray:
    """Float32, C-contiguous, one L2-normalized row per vector; a 1D input becomes a single row."""

    rows = np.array(values, dtype=np.float32, ndmin=2)
    if rows.ndim != 2 or rows.shape[0] == 0:
        raise ValueError("expected a non-empty vector or 2D matrix of vectors")
    if rows.shape[1] != dimension:
        raise ValueError(f"vector dimension mismatch: expected {dimension}, got {rows.shape[1]}")
    norms = np.linalg.norm(rows, axis=1, keepdims=True)
    norms[norms == 0.0] = 1.0
    return np.ascontiguousarray(rows / norms)


def index_filename(book_id: str) -> str:
    """Filesystem-safe and collision-free name for a book's index file."""

    readable = _UNSAFE_FILENAME_RE.sub("_", book_id).strip("._")[:48] or "book"
    digest = hashlib.sha1(book_id.encode("utf-8")).hexdigest()[:10]
    return f"{readable}-{digest}{INDEX_SUFFIX}"


class BookVectorIndex:
    """Vectors of one book keyed by chunk row id; inner product over unit vectors is cosine."""

    def __init__(self, path: str | Path, *, dimension: int) -> None:
        if dimension <= 0:
            raise ValueError("dimension must be positive")

        self.path = Path(path)
        self.dimension = dimension
        self._faiss = load_faiss()
        self._index = self._read() if self.path.exists() else self._empty()
        self._dirty = False

    def __len__(self) -> int:
        return int(self._index.ntotal)

    def upsert(self, vector_ids: Sequence[int], vectors: np.ndarray | Sequence[Sequence[float]]) -> None:
        ids = np.asarray(vector_ids, dtype=np.int64)
        if ids.ndim != 1 or ids.size == 0:
            raise ValueError("vector_ids must be a non-empty 1D sequence")
        if np.unique(ids).size != ids.size:
            raise ValueError("vector_ids must be unique")

        rows = unit_rows(vectors, dimension=self.dimension)
        if rows.shape[0] != ids.size:
            raise ValueError(f"got {rows.shape[0]} vectors for {ids.size} ids")

        self._index.remove_ids(ids)
        self._index.add_with_ids(rows, ids)
        self._dirty = True

    def discard(self, vector_ids: Sequence[int]) -> int:
        if len(vector_ids) == 0:
            return 0
        removed = int(self._index.remove_ids(np.asarray(vector_ids, dtype=np.int64)))
        self._dirty = self._dirty or removed > 0
        return removed

    def query(
        self,
        vector: np.ndarray | Sequence[float],
        *,
        top_k: int,
        allowed_ids: Sequence[int] | None = None,
    ) -> list[VectorHit]:
        """Best ``top_k`` cosine hits; ``allowed_ids`` is applied as a FAISS selector before scoring."""

        if top_k <= 0:
            raise ValueError("top_k must be positive")
        candidates = len(self) if allowed_ids is None else min(len(self), len(allowed_ids))
        if candidates == 0:
            return []

        query = unit_rows(vector, dimension=self.dimension)
        if query.shape[0] != 1:
            raise ValueError("query must be a single vector")

        params = None
        if allowed_ids is not None:
            selector = self._faiss.IDSelectorBatch(np.asarray(allowed_ids, dtype=np.int64))
            params = self._faiss.SearchParameters(sel=selector)
        scores, ids = self._index.search(query, min(top_k, candidates), params=params)

        return [
            VectorHit(vector_id=int(vector_id), score=float(score))
            for score, vector_id in zip(scores[0], ids[0])
            if vector_id >= 0
        ]

    def flush(self) -> bool:
        """Write the index if it changed, through a temporary file so readers never see a partial one."""

        if not self._dirty:
            return False
        self.path.parent.mkdir(parents=True, exist_ok=True)
        staging = self.path.with_name(self.path.name + ".tmp")
        self._faiss.write_index(self._index, str(staging))
        staging.replace(self.path)
        self._dirty = False
        return True

    def _empty(self) -> Any:
        return self._faiss.IndexIDMap2(self._faiss.IndexFlatIP(self.dimension))

    def _read(self) -> Any:
        try:
            index = self._faiss.read_index(str(self.path))
        except RuntimeError as exc:
            raise VectorStoreError(f"Failed to load FAISS index '{self.path}': {exc}") from exc
        if int(index.d) != self.dimension:
            raise VectorStoreError(f"FAISS index '{self.path}' has dimension {index.d}, expected {self.dimension}")
        return index


class VectorIndexDirectory:
    """One index file per book under ``root``; opened indexes stay cached until flushed or dropped."""

    metric = METRIC_INNER_PRODUCT

    def __init__(self, root: str | Path, *, dimension: int) -> None:
        if dimension <= 0:
            raise ValueError("dimension must be positive")
        self.root = Path(root)
        self.dimension = dimension
        self._open: dict[str, BookVectorIndex] = {}

    def path_for(self, book_id: str) -> Path:
        return self.root / index_filename(book_id)

    def has(self, book_id: str) -> bool:
        return book_id in self._open or self.path_for(book_id).exists()

    def get(self, book_id: str) -> BookVectorIndex:
        index = self._open.get(book_id)
        if index is None:
            index = BookVectorIndex(self.path_for(book_id), dimension=self.dimension)
            self._open[book_id] = index
        return index

    def drop(self, book_id: str) -> int:
        """Delete a book's index; returns how many vectors it held."""

        if not self.has(book_id):
            return 0
        removed = len(self.get(book_id))
        del self._open[book_id]
        self.path_for(book_id).unlink(missing_ok=True)
        LOGGER.debug("Dropped %d vectors for %s", removed, book_id)
        return removed

    def flush(self) -> int:
        return sum(1 for index in self._open.values() if index.flush())
