"""SQLite bookkeeping for which chunks have vectors, under which model, and where they live."""

from __future__ import annotations

from dataclasses import dataclass
import sqlite3
from typing import Iterable


@dataclass(slots=True, frozen=True)
class EmbeddingSpace:
    """The single embedding model and vector layout shared by every book in a database."""

    model: str
    dimension: int
    metric: str
    vectors_dir: str


@dataclass(slots=True)
class ChunkVector:
    # the chunk row id doubles as the FAISS vector id
    chunk_row_id: int
    book_id: str
    model: str
    fingerprint: str


class SemanticRepository:
    def __init__(self, connection: sqlite3.Connection) -> None:
        self._connection = connection

    def embedding_space(self) -> EmbeddingSpace | None:
        row = self._connection.execute(
            "SELECT model, dimension, metric, vectors_dir FROM embedding_space WHERE id = 1"
        ).fetchone()
        if row is None:
            return None
        return EmbeddingSpace(
            model=row["model"],
            dimension=int(row["dimension"]),
            metric=row["metric"],
            vectors_dir=row["vectors_dir"],
        )

    def record_embedding_space(self, space: EmbeddingSpace) -> None:
        with self._connection:
            self._connection.execute(
                """
                INSERT INTO embedding_space(id, model, dimension, metric, vectors_dir)
                VALUES(1, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    model=excluded.model,
                    dimension=excluded.dimension,
                    metric=excluded.metric,
                    vectors_dir=excluded.vectors_dir,
                    updated_at=CURRENT_TIMESTAMP
                """,
                (space.model, space.dimension, space.metric, space.vectors_dir),
            )

    def fingerprints(self, *, book_id: str, model: str) -> dict[int, str]:
        """Text fingerprint per embedded chunk row, used to skip unchanged chunks."""

        rows = self._connection.execute(
            "SELECT chunk_row_id, fingerprint FROM chunk_vectors WHERE book_id = ? AND model = ?",
            (book_id, model),
        ).fetchall()
        return {int(row["chunk_row_id"]): row["fingerprint"] for row in rows}

    def record_vectors(self, vectors: Iterable[ChunkVector]) -> None:
        with self._connection:
            self._connection.executemany(
                """
                INSERT INTO chunk_vectors(chunk_row_id, model, book_id, fingerprint)
                VALUES(?, ?, ?, ?)
                ON CONFLICT(chunk_row_id, model) DO UPDATE SET
                    fingerprint=excluded.fingerprint,
                    embedded_at=CURRENT_TIMESTAMP
                """,
                [(vector.chunk_row_id, vector.model, vector.book_id, vector.fingerprint) for vector in vectors],
            )

    def vector_ids(self, *, book_id: str, model: str, max_page: int | None = None) -> list[int]:
        """Vector ids of a book's embedded chunks at or before ``max_page``."""

        clauses = ["v.book_id = ?", "v.model = ?"]
        params: list[object] = [book_id, model]
        if max_page is not None:
            clauses.append("c.page <= ?")
            params.append(max_page)

        rows = self._connection.execute(
            f"""
            SELECT v.chunk_row_id AS vector_id
            FROM chunk_vectors v
            JOIN chunks c ON c.id = v.chunk_row_id
            WHERE {' AND '.join(clauses)}
            ORDER BY v.chunk_row_id ASC
            """,
            tuple(params),
        ).fetchall()
        return [int(row["vector_id"]) for row in rows]

    def count_vectors(self, *, book_id: str) -> int:
        row = self._connection.execute(
            "SELECT COUNT(*) AS total FROM chunk_vectors WHERE book_id = ?",
            (book_id,),
        ).fetchone()
        return int(row["total"])

    def forget_book(self, book_id: str) -> None:
        with self._connection:
            self._connection.execute("DELETE FROM chunk_vectors WHERE book_id = ?", (book_id,))
