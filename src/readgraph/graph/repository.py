"""SQLite persistence for book graphs, extraction progress and the extraction cache."""

from __future__ import annotations

import json
import logging
import sqlite3
from typing import Any

from readgraph.graph.cache import GraphCache, NullCache
from readgraph.graph.models import (
    AliasEntry,
    BookGraph,
    Claim,
    CorefMention,
    Entity,
    ExtractionState,
    Fact,
    GraphSnapshot,
    Relationship,
    TimelineEvent,
    evidence_from_json,
    evidence_to_json,
)
from readgraph.graph.names import is_living, is_noisy_name
from readgraph.search.normalize import normalize_name


LOGGER = logging.getLogger(__name__)

_BOOK_TABLES = ("entities", "relationships", "events", "claims", "aliases", "mentions")


def _dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False)


def _loads(raw: str | None) -> Any:
    if not raw:
        return []
    return json.loads(raw)


class GraphRepository:
    """Loads and saves one book's graph as a unit; every write runs in a single transaction."""

    def __init__(self, connection: sqlite3.Connection, *, cache: GraphCache | None = None) -> None:
        self._connection = connection
        self._cache = cache or NullCache()

    # ------------------------------------------------------------------
    # Graph
    # ------------------------------------------------------------------

    def load_graph(self, book_id: str) -> BookGraph:
        cached = self._cache.get(book_id)
        if cached is not None:
            return cached

        graph = BookGraph(book_id=book_id)
        for row in self._connection.execute(
            "SELECT * FROM entities WHERE book_id = ? ORDER BY first_seen_page ASC, id ASC",
            (book_id,),
        ):
            entity = Entity(
                id=row["id"],
                book_id=row["book_id"],
                type=row["type"],
                canonical_name=row["canonical_name"],
                description=row["description"] or "",
                aliases=list(_loads(row["aliases_json"])),
                facts=[Fact.from_dict(item) for item in _loads(row["facts_json"])],
                first_seen_page=int(row["first_seen_page"]),
                last_seen_page=int(row["last_seen_page"]),
                max_page_included=int(row["max_page_included"]),
            )
            graph.entities[entity.id] = entity

        for row in self._connection.execute(
            "SELECT * FROM relationships WHERE book_id = ? ORDER BY first_seen_page ASC, id ASC",
            (book_id,),
        ):
            relationship = Relationship(
                id=row["id"],
                book_id=row["book_id"],
                source_entity_id=row["source_entity_id"],
                target_entity_id=row["target_entity_id"],
                type=row["type"],
                description=row["description"] or "",
                evidence=evidence_from_json(_loads(row["evidence_json"])),
                inferred=bool(row["inferred"]),
                inference_method=row["inference_method"],
                confidence=row["confidence"],
                strength=row["strength"],
                first_seen_page=int(row["first_seen_page"]),
                last_seen_page=int(row["last_seen_page"]),
            )
            graph.relationships[relationship.id] = relationship

        for row in self._connection.execute(
            "SELECT * FROM events WHERE book_id = ? ORDER BY page ASC, id ASC",
            (book_id,),
        ):
            event = TimelineEvent(
                id=row["id"],
                book_id=row["book_id"],
                page=int(row["page"]),
                summary=row["summary"],
                importance=int(row["importance"]),
                involved_entity_ids=list(_loads(row["involved_json"])),
                evidence=evidence_from_json(_loads(row["evidence_json"])),
                arc=row["arc"],
                tone=row["tone"],
                emotions=list(_loads(row["emotions_json"])),
            )
            graph.events[event.id] = event

        for row in self._connection.execute(
            "SELECT * FROM claims WHERE book_id = ? ORDER BY max_page_included ASC, id ASC",
            (book_id,),
        ):
            claim = Claim(
                id=row["id"],
                book_id=row["book_id"],
                type=row["type"],
                subject_entity_id=row["subject_entity_id"],
                object_entity_id=row["object_entity_id"],
                description=row["description"],
                status=row["status"],
                evidence=evidence_from_json(_loads(row["evidence_json"])),
                max_page_included=int(row["max_page_included"]),
            )
            graph.claims[claim.id] = claim

        for row in self._connection.execute("SELECT * FROM aliases WHERE book_id = ? ORDER BY key ASC", (book_id,)):
            entry = AliasEntry(
                key=row["key"],
                book_id=row["book_id"],
                alias=row["alias"],
                normalized=row["normalized"],
                entity_ids=list(_loads(row["entity_ids_json"])),
            )
            graph.aliases[entry.key] = entry

        for row in self._connection.execute(
            "SELECT * FROM mentions WHERE book_id = ? ORDER BY page ASC, offset_start ASC",
            (book_id,),
        ):
            graph.mentions.append(
                CorefMention(
                    mention=row["mention"],
                    resolved_entity_id=row["resolved_entity_id"],
                    text_unit_id=row["text_unit_id"],
                    confidence=float(row["confidence"]),
                    page=int(row["page"]),
                    offset_start=int(row["offset_start"]),
                    offset_end=int(row["offset_end"]),
                )
            )

        self._cache.put(graph)
        return graph

    def save_graph(self, graph: BookGraph, state: ExtractionState | None = None) -> None:
        """Replace the stored graph of ``graph.book_id`` and, optionally, its progress state."""

        book_id = graph.book_id
        self._cache.invalidate(book_id)
        with self._connection:
            for table in _BOOK_TABLES:
                self._connection.execute(f"DELETE FROM {table} WHERE book_id = ?", (book_id,))

            self._connection.executemany(
                """
                INSERT INTO entities(
                    id, book_id, type, canonical_name, normalized_name, description,
                    aliases_json, facts_json, first_seen_page, last_seen_page, max_page_included
                )
                VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        entity.id,
                        book_id,
                        entity.type,
                        entity.canonical_name,
                        normalize_name(entity.canonical_name),
                        entity.description,
                        _dumps(entity.aliases),
                        _dumps([fact.to_dict() for fact in entity.facts]),
                        entity.first_seen_page,
                        entity.last_seen_page,
                        entity.max_page_included,
                    )
                    for entity in graph.entities.values()
                ],
            )
            self._connection.executemany(
                """
                INSERT INTO relationships(
                    id, book_id, source_entity_id, target_entity_id, type, description, evidence_json,
                    inferred, inference_method, confidence, strength, first_seen_page, last_seen_page
                )
                VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        relationship.id,
                        book_id,
                        relationship.source_entity_id,
                        relationship.target_entity_id,
                        relationship.type,
                        relationship.description,
                        _dumps(evidence_to_json(relationship.evidence)),
                        1 if relationship.inferred else 0,
                        relationship.inference_method,
                        relationship.confidence,
                        relationship.strength,
                        relationship.first_seen_page,
                        relationship.last_seen_page,
                    )
                    for relationship in graph.relationships.values()
                    if relationship.source_entity_id != relationship.target_entity_id
                ],
            )
            self._connection.executemany(
                """
                INSERT INTO events(
                    id, book_id, page, summary, importance, involved_json, evidence_json, arc, tone, emotions_json
                )
                VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        event.id,
                        book_id,
                        event.page,
                        event.summary,
                        event.importance,
                        _dumps(event.involved_entity_ids),
                        _dumps(evidence_to_json(event.evidence)),
                        event.arc,
                        event.tone,
                        _dumps(event.emotions),
                    )
                    for event in graph.events.values()
                ],
            )
            self._connection.executemany(
                """
                INSERT INTO claims(
                    id, book_id, type, subject_entity_id, object_entity_id, description,
                    status, evidence_json, max_page_included
                )
                VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        claim.id,
                        book_id,
                        claim.type,
                        claim.subject_entity_id,
                        claim.object_entity_id,
                        claim.description,
                        claim.status,
                        _dumps(evidence_to_json(claim.evidence)),
                        claim.max_page_included,
                    )
                    for claim in graph.claims.values()
                ],
            )
            self._connection.executemany(
                """
                INSERT INTO aliases(key, book_id, alias, normalized, entity_ids_json, ambiguous)
                VALUES(?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        entry.key,
                        book_id,
                        entry.alias,
                        entry.normalized,
                        _dumps(entry.entity_ids),
                        1 if entry.ambiguous else 0,
                    )
                    for entry in graph.aliases.values()
                ],
            )
            self._connection.executemany(
                """
                INSERT OR REPLACE INTO mentions(
                    book_id, text_unit_id, mention, resolved_entity_id, confidence, page, offset_start, offset_end
                )
                VALUES(?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        book_id,
                        mention.text_unit_id,
                        mention.mention,
                        mention.resolved_entity_id,
                        mention.confidence,
                        mention.page,
                        mention.offset_start,
                        mention.offset_end,
                    )
                    for mention in graph.mentions
                ],
            )
            if state is not None:
                self._write_state(state)
        self._cache.put(graph)

    # ------------------------------------------------------------------
    # Extraction state
    # ------------------------------------------------------------------

    def get_state(self, book_id: str) -> ExtractionState | None:
        row = self._connection.execute(
            """
            SELECT book_id, last_analyzed_page, pending_from_page, pending_to_page, last_error, updated_at
            FROM extraction_state
            WHERE book_id = ?
            """,
            (book_id,),
        ).fetchone()
        if row is None:
            return None
        return ExtractionState(
            book_id=row["book_id"],
            last_analyzed_page=int(row["last_analyzed_page"]),
            pending_from_page=row["pending_from_page"],
            pending_to_page=row["pending_to_page"],
            last_error=row["last_error"],
            updated_at=row["updated_at"],
        )

    def ensure_state(self, book_id: str) -> ExtractionState:
        state = self.get_state(book_id)
        if state is not None:
            return state
        state = ExtractionState(book_id=book_id)
        self.save_state(state)
        return self.get_state(book_id) or state

    def save_state(self, state: ExtractionState) -> None:
        with self._connection:
            self._write_state(state)

    def _write_state(self, state: ExtractionState) -> None:
        self._connection.execute(
            """
            INSERT INTO extraction_state(book_id, last_analyzed_page, pending_from_page, pending_to_page, last_error)
            VALUES(?, ?, ?, ?, ?)
            ON CONFLICT(book_id) DO UPDATE SET
                last_analyzed_page=excluded.last_analyzed_page,
                pending_from_page=excluded.pending_from_page,
                pending_to_page=excluded.pending_to_page,
                last_error=excluded.last_error,
                updated_at=CURRENT_TIMESTAMP
            """,
            (
                state.book_id,
                state.last_analyzed_page,
                state.pending_from_page,
                state.pending_to_page,
                state.last_error,
            ),
        )

    # ------------------------------------------------------------------
    # Extraction cache
    # ------------------------------------------------------------------

    def get_cached_extraction(self, key: str) -> dict[str, Any] | None:
        row = self._connection.execute("SELECT extraction_json FROM extraction_cache WHERE key = ?", (key,)).fetchone()
        if row is None:
            return None
        try:
            value = json.loads(row["extraction_json"])
        except json.JSONDecodeError:
            LOGGER.warning("Discarding unreadable extraction cache entry %s", key)
            return None
        return value if isinstance(value, dict) else None

    def put_cached_extraction(self, key: str, *, book_id: str, extraction: dict[str, Any]) -> None:
        with self._connection:
            self._connection.execute(
                """
                INSERT INTO extraction_cache(key, book_id, extraction_json)
                VALUES(?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    extraction_json=excluded.extraction_json,
                    created_at=CURRENT_TIMESTAMP
                """,
                (key, book_id, _dumps(extraction)),
            )

    def count_cached_extractions(self, book_id: str) -> int:
        row = self._connection.execute(
            "SELECT COUNT(*) AS total FROM extraction_cache WHERE book_id = ?",
            (book_id,),
        ).fetchone()
        return int(row["total"]) if row is not None else 0

    # ------------------------------------------------------------------
    # Maintenance and reads
    # ------------------------------------------------------------------

    def clear_book(self, book_id: str) -> None:
        """Remove the graph, aliases, mentions, cached extractions and progress of one book."""

        self._cache.invalidate(book_id)
        with self._connection:
            for table in (*_BOOK_TABLES, "extraction_cache", "extraction_state"):
                self._connection.execute(f"DELETE FROM {table} WHERE book_id = ?", (book_id,))

    def snapshot(self, book_id: str, max_page: int) -> GraphSnapshot:
        """Spoiler-safe view: nothing beyond ``min(max_page, last_analyzed_page)`` is returned."""

        state = self.get_state(book_id)
        last_analyzed = state.last_analyzed_page if state is not None else -1
        limit = min(max_page, last_analyzed)
        graph = self.load_graph(book_id)
        return build_snapshot(graph, limit)


def build_snapshot(graph: BookGraph, max_page: int) -> GraphSnapshot:
    entities = [
        entity
        for entity in graph.entities.values()
        if entity.last_seen_page <= max_page and not is_noisy_name(entity.canonical_name, entity.type)
    ]
    visible = {entity.id: entity for entity in entities}
    relationships = [
        relationship
        for relationship in graph.relationships.values()
        if relationship.last_seen_page <= max_page
        and relationship.source_entity_id in visible
        and relationship.target_entity_id in visible
        and is_living(visible[relationship.source_entity_id])
        and is_living(visible[relationship.target_entity_id])
    ]
    events = [event for event in graph.events.values() if event.page <= max_page]
    claims = [claim for claim in graph.claims.values() if claim.max_page_included <= max_page]

    return GraphSnapshot(
        book_id=graph.book_id,
        max_page=max_page,
        entities=sorted(entities, key=lambda entity: (entity.first_seen_page, entity.canonical_name.lower())),
        relationships=sorted(relationships, key=lambda rel: (rel.first_seen_page, rel.id)),
        events=sorted(events, key=lambda event: (event.page, -event.importance, event.id)),
        claims=sorted(claims, key=lambda claim: (claim.max_page_included, claim.id)),
    )
