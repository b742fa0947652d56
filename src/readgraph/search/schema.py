"""SQLite schema, pragmas and version migrations for chunk and graph storage."""

from __future__ import annotations

import logging
import sqlite3


LOGGER = logging.getLogger(__name__)

PRAGMA_BUSY_TIMEOUT_MS = 5000

# Bump SCHEMA_VERSION for additive changes; bump BREAKING_SCHEMA_VERSION too when
# existing rows can no longer be read, which forces a clear and reindex.
SCHEMA_VERSION = 3
BREAKING_SCHEMA_VERSION = 2

# (table, column, definition) added after the last breaking version
_ADDITIVE_COLUMNS = (
    ("relationships", "inference_method", "TEXT"),
    ("relationships", "confidence", "REAL"),
    ("relationships", "strength", "REAL"),
)

_MANAGED_TABLES = (
    "chunks_fts",
    "chunk_vectors",
    "embedding_space",
    "mentions",
    "aliases",
    "claims",
    "events",
    "relationships",
    "entities",
    "extraction_cache",
    "extraction_state",
    "chunks",
    "books",
)


def apply_runtime_pragmas(connection: sqlite3.Connection) -> None:
    """Apply runtime pragmas recommended for local indexing throughput."""

    connection.execute("PRAGMA journal_mode=WAL;")
    connection.execute(f"PRAGMA busy_timeout={PRAGMA_BUSY_TIMEOUT_MS};")
    connection.execute("PRAGMA synchronous=NORMAL;")
    connection.execute("PRAGMA foreign_keys=ON;")


def get_schema_version(connection: sqlite3.Connection) -> int:
    row = connection.execute("PRAGMA user_version").fetchone()
    return int(row[0]) if row is not None else 0


def add_column_if_missing(connection: sqlite3.Connection, table: str, column: str, definition: str) -> bool:
    existing = {row[1] for row in connection.execute(f"PRAGMA table_info({table})")}
    if column in existing:
        return False
    connection.execute(f"ALTER TABLE {table} ADD COLUMN {column} {definition}")
    LOGGER.info("Added column %s.%s", table, column)
    return True


def drop_managed_tables(connection: sqlite3.Connection) -> None:
    """Drop every table owned by this schema, used for breaking migrations."""

    for trigger in ("chunks_ai", "chunks_ad", "chunks_au"):
        connection.execute(f"DROP TRIGGER IF EXISTS {trigger}")
    for table in _MANAGED_TABLES:
        connection.execute(f"DROP TABLE IF EXISTS {table}")


def ensure_schema(connection: sqlite3.Connection) -> None:
    """Create chunk, FTS, semantic and graph tables; migrate older databases."""

    current = get_schema_version(connection)
    if 0 < current < BREAKING_SCHEMA_VERSION:
        LOGGER.warning(
            "Schema version %s predates breaking version %s; clearing stored data for reindex",
            current,
            BREAKING_SCHEMA_VERSION,
        )
        drop_managed_tables(connection)
        connection.commit()

    connection.executescript(
        """
        CREATE TABLE IF NOT EXISTS books (
            id TEXT PRIMARY KEY,
            title TEXT,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS chunks (
            id INTEGER PRIMARY KEY,
            chunk_id TEXT NOT NULL UNIQUE,
            book_id TEXT NOT NULL,
            section_index INTEGER NOT NULL,
            chunk_no INTEGER NOT NULL,
            chapter_title TEXT NOT NULL DEFAULT '',
            raw_text TEXT NOT NULL,
            page INTEGER NOT NULL,
            FOREIGN KEY(book_id) REFERENCES books(id) ON DELETE CASCADE
        );

        CREATE VIRTUAL TABLE IF NOT EXISTS chunks_fts USING fts5(
            raw_text,
            content='chunks',
            content_rowid='id',
            tokenize='unicode61 remove_diacritics 2'
        );

        CREATE TABLE IF NOT EXISTS embedding_space (
            id INTEGER PRIMARY KEY CHECK(id = 1),
            model TEXT NOT NULL,
            dimension INTEGER NOT NULL,
            metric TEXT NOT NULL DEFAULT 'ip',
            vectors_dir TEXT NOT NULL,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS chunk_vectors (
            chunk_row_id INTEGER NOT NULL,
            model TEXT NOT NULL,
            book_id TEXT NOT NULL,
            fingerprint TEXT NOT NULL,
            embedded_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            PRIMARY KEY(chunk_row_id, model),
            FOREIGN KEY(chunk_row_id) REFERENCES chunks(id) ON DELETE CASCADE
        );

        CREATE TABLE IF NOT EXISTS entities (
            id TEXT PRIMARY KEY,
            book_id TEXT NOT NULL,
            type TEXT NOT NULL,
            canonical_name TEXT NOT NULL,
            normalized_name TEXT NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            aliases_json TEXT NOT NULL DEFAULT '[]',
            facts_json TEXT NOT NULL DEFAULT '[]',
            first_seen_page INTEGER NOT NULL,
            last_seen_page INTEGER NOT NULL,
            max_page_included INTEGER NOT NULL
        );

        CREATE TABLE IF NOT EXISTS relationships (
            id TEXT PRIMARY KEY,
            book_id TEXT NOT NULL,
            source_entity_id TEXT NOT NULL,
            target_entity_id TEXT NOT NULL,
            type TEXT NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            evidence_json TEXT NOT NULL DEFAULT '[]',
            inferred INTEGER NOT NULL DEFAULT 0 CHECK(inferred IN (0,1)),
            inference_method TEXT,
            confidence REAL,
            strength REAL,
            first_seen_page INTEGER NOT NULL,
            last_seen_page INTEGER NOT NULL,
            CHECK(source_entity_id <> target_entity_id)
        );

        CREATE TABLE IF NOT EXISTS events (
            id TEXT PRIMARY KEY,
            book_id TEXT NOT NULL,
            page INTEGER NOT NULL,
            summary TEXT NOT NULL,
            importance INTEGER NOT NULL DEFAULT 5 CHECK(importance BETWEEN 1 AND 10),
            involved_json TEXT NOT NULL DEFAULT '[]',
            evidence_json TEXT NOT NULL DEFAULT '[]',
            arc TEXT,
            tone TEXT,
            emotions_json TEXT NOT NULL DEFAULT '[]'
        );

        CREATE TABLE IF NOT EXISTS claims (
            id TEXT PRIMARY KEY,
            book_id TEXT NOT NULL,
            type TEXT NOT NULL,
            subject_entity_id TEXT,
            object_entity_id TEXT,
            description TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'SUSPECTED' CHECK(status IN ('TRUE','FALSE','SUSPECTED')),
            evidence_json TEXT NOT NULL DEFAULT '[]',
            max_page_included INTEGER NOT NULL
        );

        CREATE TABLE IF NOT EXISTS aliases (
            key TEXT PRIMARY KEY,
            book_id TEXT NOT NULL,
            alias TEXT NOT NULL,
            normalized TEXT NOT NULL,
            entity_ids_json TEXT NOT NULL DEFAULT '[]',
            ambiguous INTEGER NOT NULL DEFAULT 0 CHECK(ambiguous IN (0,1))
        );

        CREATE TABLE IF NOT EXISTS mentions (
            id INTEGER PRIMARY KEY,
            book_id TEXT NOT NULL,
            text_unit_id TEXT NOT NULL,
            mention TEXT NOT NULL,
            resolved_entity_id TEXT NOT NULL,
            confidence REAL NOT NULL,
            page INTEGER NOT NULL,
            offset_start INTEGER NOT NULL,
            offset_end INTEGER NOT NULL,
            UNIQUE(text_unit_id, offset_start)
        );

        CREATE TABLE IF NOT EXISTS extraction_state (
            book_id TEXT PRIMARY KEY,
            last_analyzed_page INTEGER NOT NULL DEFAULT -1,
            pending_from_page INTEGER,
            pending_to_page INTEGER,
            last_error TEXT,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS extraction_cache (
            key TEXT PRIMARY KEY,
            book_id TEXT NOT NULL,
            extraction_json TEXT NOT NULL,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        );

        CREATE INDEX IF NOT EXISTS idx_chunks_book_page ON chunks(book_id, page);
        CREATE INDEX IF NOT EXISTS idx_chunk_vectors_book ON chunk_vectors(book_id, model);
        CREATE INDEX IF NOT EXISTS idx_entities_book_id ON entities(book_id);
        CREATE INDEX IF NOT EXISTS idx_entities_normalized ON entities(book_id, normalized_name);
        CREATE INDEX IF NOT EXISTS idx_relationships_book_id ON relationships(book_id);
        CREATE INDEX IF NOT EXISTS idx_events_book_id ON events(book_id);
        CREATE INDEX IF NOT EXISTS idx_claims_book_id ON claims(book_id);
        CREATE INDEX IF NOT EXISTS idx_aliases_book_id ON aliases(book_id);
        CREATE INDEX IF NOT EXISTS idx_mentions_book_id ON mentions(book_id);
        CREATE INDEX IF NOT EXISTS idx_extraction_cache_book_id ON extraction_cache(book_id);

        CREATE TRIGGER IF NOT EXISTS chunks_ai AFTER INSERT ON chunks BEGIN
            INSERT INTO chunks_fts(rowid, raw_text) VALUES (new.id, new.raw_text);
        END;

        CREATE TRIGGER IF NOT EXISTS chunks_ad AFTER DELETE ON chunks BEGIN
            INSERT INTO chunks_fts(chunks_fts, rowid, raw_text)
            VALUES ('delete', old.id, old.raw_text);
        END;

        CREATE TRIGGER IF NOT EXISTS chunks_au AFTER UPDATE ON chunks BEGIN
            INSERT INTO chunks_fts(chunks_fts, rowid, raw_text)
            VALUES ('delete', old.id, old.raw_text);
            INSERT INTO chunks_fts(rowid, raw_text) VALUES (new.id, new.raw_text);
        END;
        """
    )

    for table, column, definition in _ADDITIVE_COLUMNS:
        add_column_if_missing(connection, table, column, definition)

    connection.execute(f"PRAGMA user_version={SCHEMA_VERSION}")
    connection.commit()


def optimize_fts(connection: sqlite3.Connection) -> None:
    """Run FTS optimize maintenance command."""

    connection.execute("INSERT INTO chunks_fts(chunks_fts) VALUES ('optimize');")


def rebuild_fts(connection: sqlite3.Connection) -> None:
    """Run FTS rebuild maintenance command."""

    connection.execute("INSERT INTO chunks_fts(chunks_fts) VALUES ('rebuild');")
