"""Repository primitives for book and chunk persistence."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import sqlite3
from typing import Sequence

from readgraph.ingestion.models import Chunk
from readgraph.search.schema import apply_runtime_pragmas, ensure_schema, optimize_fts, rebuild_fts


@dataclass(slots=True)
class ChunkRecord:
    """Persisted chunk together with its SQLite row id (also its vector id)."""

    row_id: int
    chunk: Chunk


_CHUNK_COLUMNS = """
    id AS row_id,
    chunk_id,
    book_id,
    section_index,
    chapter_title,
    raw_text,
    page
"""


def row_to_chunk(row: sqlite3.Row) -> Chunk:
    return Chunk(
        id=row["chunk_id"],
        book_id=row["book_id"],
        section_index=int(row["section_index"]),
        chapter_title=row["chapter_title"] or "",
        text=row["raw_text"],
        page_number=int(row["page"]),
    )


def _row_to_record(row: sqlite3.Row) -> ChunkRecord:
    return ChunkRecord(row_id=int(row["row_id"]), chunk=row_to_chunk(row))


class SearchRepository:
    """Thin transactional layer over the SQLite chunk schema."""

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = Path(db_path)
        self._connection = sqlite3.connect(str(self._db_path))
        self._connection.row_factory = sqlite3.Row
        apply_runtime_pragmas(self._connection)
        ensure_schema(self._connection)

    @property
    def connection(self) -> sqlite3.Connection:
        return self._connection

    @property
    def db_path(self) -> Path:
        return self._db_path

    def close(self) -> None:
        self._connection.close()

    def __enter__(self) -> "SearchRepository":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def replace_book_chunks(self, *, book_id: str, title: str | None, chunks: Sequence[Chunk]) -> int:
        """Replace one book's chunks in one transaction; returns the stored count."""

        for chunk in chunks:
            if chunk.book_id != book_id:
                raise ValueError(f"chunk {chunk.id} belongs to book {chunk.book_id}, not {book_id}")

        with self._connection:
            self._connection.execute(
                """
                INSERT INTO books(id, title)
                VALUES(?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    title=COALESCE(excluded.title, books.title),
                    updated_at=CURRENT_TIMESTAMP
                """,
                (book_id, title),
            )
            self._connection.execute("DELETE FROM chunks WHERE book_id = ?", (book_id,))
            self._connection.executemany(
                """
                INSERT INTO chunks(
                    chunk_id,
                    book_id,
                    section_index,
                    chunk_no,
                    chapter_title,
                    raw_text,
                    page
                )
                VALUES(?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        chunk.id,
                        chunk.book_id,
                        chunk.section_index,
                        position,
                        chunk.chapter_title,
                        chunk.text,
                        chunk.page_number,
                    )
                    for position, chunk in enumerate(chunks)
                ],
            )

        return len(chunks)

    def delete_book(self, book_id: str) -> None:
        with self._connection:
            self._connection.execute("DELETE FROM books WHERE id = ?", (book_id,))

    def is_indexed(self, book_id: str) -> bool:
        row = self._connection.execute(
            "SELECT 1 FROM chunks WHERE book_id = ? LIMIT 1",
            (book_id,),
        ).fetchone()
        return row is not None

    def count_chunks(self, book_id: str) -> int:
        row = self._connection.execute(
            "SELECT COUNT(*) AS total FROM chunks WHERE book_id = ?",
            (book_id,),
        ).fetchone()
        return int(row["total"]) if row is not None else 0

    def get_book_title(self, book_id: str) -> str | None:
        row = self._connection.execute("SELECT title FROM books WHERE id = ?", (book_id,)).fetchone()
        return row["title"] if row is not None else None

    def get_chunk_records(
        self,
        book_id: str,
        *,
        page_from: int | None = None,
        page_to: int | None = None,
    ) -> list[ChunkRecord]:
        """Return chunks in reading order, optionally bounded to an inclusive page range."""

        clauses = ["book_id = ?"]
        params: list[object] = [book_id]
        if page_from is not None:
            clauses.append("page >= ?")
            params.append(page_from)
        if page_to is not None:
            clauses.append("page <= ?")
            params.append(page_to)

        rows = self._connection.execute(
            f"""
            SELECT {_CHUNK_COLUMNS}
            FROM chunks
            WHERE {' AND '.join(clauses)}
            ORDER BY page ASC, section_index ASC, chunk_no ASC
            """,
            tuple(params),
        ).fetchall()
        return [_row_to_record(row) for row in rows]

    def get_chunks(
        self,
        book_id: str,
        *,
        page_from: int | None = None,
        page_to: int | None = None,
    ) -> list[Chunk]:
        return [record.chunk for record in self.get_chunk_records(book_id, page_from=page_from, page_to=page_to)]

    def get_chunks_by_row_ids(self, row_ids: Sequence[int]) -> dict[int, Chunk]:
        if not row_ids:
            return {}
        placeholders = ",".join("?" * len(row_ids))
        rows = self._connection.execute(
            f"SELECT {_CHUNK_COLUMNS} FROM chunks WHERE id IN ({placeholders})",
            tuple(int(value) for value in row_ids),
        ).fetchall()
        return {int(row["row_id"]): row_to_chunk(row) for row in rows}

    def get_row_ids(self, book_id: str) -> list[int]:
        rows = self._connection.execute(
            "SELECT id FROM chunks WHERE book_id = ? ORDER BY id ASC",
            (book_id,),
        ).fetchall()
        return [int(row["id"]) for row in rows]

    def run_maintenance(self, command: str) -> None:
        if command == "optimize":
            optimize_fts(self._connection)
            return
        if command == "rebuild":
            rebuild_fts(self._connection)
            return
        raise ValueError(f"Unsupported maintenance command: {command}")
