"""FTS5 query builder and page-bounded BM25 ranking for one book."""

from __future__ import annotations

import sqlite3

from readgraph.ingestion.models import ScoredChunk
from readgraph.search.normalize import extract_terms, unique_terms
from readgraph.search.repository import row_to_chunk


LEXICAL_METHOD = "lexical"


def _quoted(value: str) -> str:
    return '"' + value.replace('"', '""') + '"'


def build_match_expression(query: str) -> str:
    """OR together quoted query terms; stopwords are kept only if nothing else remains."""

    terms = unique_terms(extract_terms(query, drop_stopwords=True))
    if not terms:
        terms = unique_terms(extract_terms(query))
    if not terms:
        return ""
    return " OR ".join(f"raw_text:{_quoted(term)}" for term in terms)


def search_chunks(
    connection: sqlite3.Connection,
    *,
    book_id: str,
    query: str,
    limit: int = 10,
    max_page: int | None = None,
) -> list[ScoredChunk]:
    """Rank one book's chunks by bm25; the page bound is part of the WHERE clause."""

    if limit <= 0:
        raise ValueError("limit must be positive")

    match_expression = build_match_expression(query)
    if not match_expression:
        return []

    where_clauses = ["chunks_fts MATCH ?", "c.book_id = ?"]
    params: list[object] = [match_expression, book_id]
    if max_page is not None:
        where_clauses.append("c.page <= ?")
        params.append(max_page)

    sql = f"""
        SELECT
            c.id AS row_id,
            c.chunk_id AS chunk_id,
            c.book_id AS book_id,
            c.section_index AS section_index,
            c.chapter_title AS chapter_title,
            c.raw_text AS raw_text,
            c.page AS page,
            bm25(chunks_fts) AS rank
        FROM chunks_fts
        JOIN chunks c ON c.id = chunks_fts.rowid
        WHERE {' AND '.join(where_clauses)}
        ORDER BY rank ASC, c.chunk_id ASC
        LIMIT ?
    """
    params.append(limit)
    rows = connection.execute(sql, tuple(params)).fetchall()

    # bm25() is lower-is-better; expose higher-is-better scores like the vector branch
    return [
        ScoredChunk(chunk=row_to_chunk(row), score=-float(row["rank"]), method=LEXICAL_METHOD)
        for row in rows
    ]
