"""Merge rules that fold validated extraction output into a book graph."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Callable, Iterable
import uuid

from readgraph.extraction.schema import ExtractedEvidence, ExtractionResult
from readgraph.extraction.validators import EvidenceFilter, normalize_evidence_text
from readgraph.graph.models import (
    AliasEntry,
    BookGraph,
    Claim,
    Entity,
    Evidence,
    Fact,
    Relationship,
    TextUnit,
    TimelineEvent,
)
from readgraph.graph.names import canonicalize_name, is_living, is_noisy_name, unique_strings
from readgraph.search.normalize import normalize_name


LOGGER = logging.getLogger(__name__)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def normalize_relation_type(value: str) -> str:
    return "_".join(value.strip().lower().split()) or "related_to"


def union_evidence(existing: Iterable[Evidence], incoming: Iterable[Evidence]) -> list[Evidence]:
    merged: list[Evidence] = []
    seen: set[tuple[str, str, int]] = set()
    for item in [*existing, *incoming]:
        key = (normalize_evidence_text(item.quote), item.chunk_id, item.page)
        if key in seen:
            continue
        seen.add(key)
        merged.append(item)
    return merged


def alias_key(book_id: str, normalized: str) -> str:
    return f"{book_id}:{normalized}"


@dataclass(slots=True)
class MergeStats:
    entities_added: int = 0
    entities_updated: int = 0
    relationships_added: int = 0
    relationships_updated: int = 0
    events_added: int = 0
    claims_added: int = 0
    evidence_rejected: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "entities_added": self.entities_added,
            "entities_updated": self.entities_updated,
            "relationships_added": self.relationships_added,
            "relationships_updated": self.relationships_updated,
            "events_added": self.events_added,
            "claims_added": self.claims_added,
            "evidence_rejected": self.evidence_rejected,
        }


class GraphMerger:
    """Applies the merge rules of one batch to a :class:`BookGraph` in place."""

    def __init__(self, graph: BookGraph, *, id_factory: Callable[[str], str] = new_id) -> None:
        self._graph = graph
        self._new_id = id_factory
        self._by_name: dict[str, Entity] = {
            normalize_name(entity.canonical_name): entity for entity in graph.entities.values()
        }

    @property
    def graph(self) -> BookGraph:
        return self._graph

    def entity_by_name(self, name: str) -> Entity | None:
        return self._by_name.get(normalize_name(name))

    def resolve_entity(self, name: str) -> Entity | None:
        """Direct canonical match first, then the most recently seen alias match."""

        normalized = normalize_name(name)
        direct = self._by_name.get(normalized)
        if direct is not None:
            return direct

        entry = self._graph.aliases.get(alias_key(self._graph.book_id, normalized))
        if entry is None:
            return None
        matches = [self._graph.entities[entity_id] for entity_id in entry.entity_ids if entity_id in self._graph.entities]
        if not matches:
            return None
        return sorted(matches, key=lambda entity: -entity.last_seen_page)[0]

    def merge(
        self,
        extraction: ExtractionResult,
        *,
        text_units: list[TextUnit],
        page_start: int,
        page_end: int,
        evidence_filter: EvidenceFilter,
    ) -> MergeStats:
        stats = MergeStats()
        rejected_before = evidence_filter.rejected
        batch_text = " ".join(normalize_evidence_text(unit.text) for unit in text_units if unit.page <= page_end)

        touched = self._merge_entities(extraction, batch_text, page_start, page_end, evidence_filter, stats)
        for entity in touched:
            self.index_aliases(entity)
        self._merge_relationships(extraction, evidence_filter, stats)
        self._merge_events(extraction, page_end, evidence_filter, stats)
        self._merge_claims(extraction, evidence_filter, stats)

        stats.evidence_rejected = evidence_filter.rejected - rejected_before
        return stats

    # ------------------------------------------------------------------
    # Entities and aliases
    # ------------------------------------------------------------------

    def _merge_entities(
        self,
        extraction: ExtractionResult,
        batch_text: str,
        page_start: int,
        page_end: int,
        evidence_filter: EvidenceFilter,
        stats: MergeStats,
    ) -> list[Entity]:
        touched: dict[str, Entity] = {}
        for item in extraction.entities:
            canonical = canonicalize_name(item.name)
            if not canonical or is_noisy_name(canonical, item.type):
                continue

            facts = []
            for fact in item.facts:
                evidence = evidence_filter.filter(_to_evidence(fact.evidence))
                if evidence:
                    facts.append(Fact(key=fact.key, value=fact.value, evidence=evidence, inferred=fact.inferred))

            grounded_pages = [evidence.page for fact in facts for evidence in fact.evidence]
            normalized = normalize_name(canonical)
            mentioned = f" {normalize_evidence_text(canonical)} " in f" {batch_text} "
            if not grounded_pages and not mentioned:
                LOGGER.debug("Skipping ungrounded entity %r", canonical)
                continue

            if grounded_pages:
                first_seen, last_seen = min(grounded_pages), max(grounded_pages)
            else:
                first_seen = min(max(item.first_seen_page, page_start), page_end)
                last_seen = min(max(item.last_seen_page, first_seen), page_end)

            existing = self._by_name.get(normalized)
            if existing is None:
                entity = Entity(
                    id=self._new_id("ent"),
                    book_id=self._graph.book_id,
                    type=item.type,
                    canonical_name=canonical,
                    aliases=[alias for alias in unique_strings(item.aliases) if normalize_name(alias) != normalized],
                    description=item.description,
                    first_seen_page=first_seen,
                    last_seen_page=last_seen,
                    max_page_included=page_end,
                    facts=facts,
                )
                self._graph.entities[entity.id] = entity
                self._by_name[normalized] = entity
                stats.entities_added += 1
            else:
                entity = existing
                if item.description and len(item.description) >= len(entity.description):
                    entity.description = item.description
                entity.facts = _merge_facts(entity.facts, facts)
                entity.aliases = [
                    alias
                    for alias in unique_strings([*entity.aliases, *item.aliases])
                    if normalize_name(alias) != normalized
                ]
                entity.first_seen_page = min(entity.first_seen_page, first_seen)
                entity.last_seen_page = max(entity.last_seen_page, last_seen)
                entity.max_page_included = max(entity.max_page_included, page_end)
                stats.entities_updated += 1
            touched[entity.id] = entity
        return list(touched.values())

    def index_aliases(self, entity: Entity) -> None:
        """Register the canonical name and every alias of ``entity`` in the alias index."""

        for alias in unique_strings([entity.canonical_name, *entity.aliases]):
            normalized = normalize_name(alias)
            key = alias_key(self._graph.book_id, normalized)
            entry = self._graph.aliases.get(key)
            if entry is None:
                self._graph.aliases[key] = AliasEntry(
                    key=key,
                    book_id=self._graph.book_id,
                    alias=alias,
                    normalized=normalized,
                    entity_ids=[entity.id],
                )
            elif entity.id not in entry.entity_ids:
                entry.entity_ids.append(entity.id)

    def add_entity(self, entity: Entity) -> Entity:
        """Insert an inferred entity unless one with the same normalized name exists."""

        normalized = normalize_name(entity.canonical_name)
        existing = self._by_name.get(normalized)
        if existing is not None:
            return existing
        self._graph.entities[entity.id] = entity
        self._by_name[normalized] = entity
        self.index_aliases(entity)
        return entity

    # ------------------------------------------------------------------
    # Relationships
    # ------------------------------------------------------------------

    def _relationship_index(self) -> dict[tuple[str, str, str], Relationship]:
        return {relationship.merge_key: relationship for relationship in self._graph.relationships.values()}

    def _merge_relationships(self, extraction: ExtractionResult, evidence_filter: EvidenceFilter, stats: MergeStats) -> None:
        index = self._relationship_index()
        for item in extraction.relationships:
            source = self.resolve_entity(item.source)
            target = self.resolve_entity(item.target)
            if source is None or target is None or source.id == target.id:
                continue
            if not is_living(source) or not is_living(target):
                continue
            evidence = evidence_filter.filter(_to_evidence(item.evidence))
            if not evidence:
                continue

            pages = [entry.page for entry in evidence]
            strength = max(0.0, min(10.0, item.strength)) if item.strength is not None else None
            key = (source.id, target.id, normalize_relation_type(item.type))
            existing = index.get(key)
            if existing is None:
                relationship = Relationship(
                    id=self._new_id("rel"),
                    book_id=self._graph.book_id,
                    source_entity_id=source.id,
                    target_entity_id=target.id,
                    type=key[2],
                    description=item.description,
                    evidence=evidence,
                    first_seen_page=min(pages),
                    last_seen_page=max(pages),
                    strength=strength,
                )
                self._graph.relationships[relationship.id] = relationship
                index[key] = relationship
                stats.relationships_added += 1
                continue

            existing.evidence = union_evidence(existing.evidence, evidence)
            if item.description:
                existing.description = item.description
            if existing.inferred:
                existing.inferred = False
                existing.inference_method = None
                existing.confidence = None
            existing.first_seen_page = min(existing.first_seen_page, min(pages))
            existing.last_seen_page = max(existing.last_seen_page, max(pages))
            if strength is not None:
                existing.strength = max(existing.strength or 0.0, strength)
            stats.relationships_updated += 1

    def add_relationships(self, relationships: Iterable[Relationship]) -> int:
        """Merge inferred relationships; an existing edge only gains evidence."""

        index = self._relationship_index()
        added = 0
        for relationship in relationships:
            if relationship.source_entity_id == relationship.target_entity_id:
                continue
            source = self._graph.entities.get(relationship.source_entity_id)
            target = self._graph.entities.get(relationship.target_entity_id)
            if source is None or target is None or not is_living(source) or not is_living(target):
                continue
            existing = index.get(relationship.merge_key)
            if existing is not None:
                existing.evidence = union_evidence(existing.evidence, relationship.evidence)
                existing.last_seen_page = max(existing.last_seen_page, relationship.last_seen_page)
                continue
            self._graph.relationships[relationship.id] = relationship
            index[relationship.merge_key] = relationship
            added += 1
        return added

    # ------------------------------------------------------------------
    # Events and claims
    # ------------------------------------------------------------------

    def _merge_events(
        self,
        extraction: ExtractionResult,
        page_end: int,
        evidence_filter: EvidenceFilter,
        stats: MergeStats,
    ) -> None:
        index = {event.merge_key: event for event in self._graph.events.values()}
        for item in extraction.events:
            if item.page > page_end:
                continue
            evidence = evidence_filter.filter(_to_evidence(item.evidence))
            if not evidence:
                continue

            involved = [
                entity.id
                for entity in (self.resolve_entity(name) for name in item.involved_entities)
                if entity is not None
            ]
            event = TimelineEvent(
                id=self._new_id("evt"),
                book_id=self._graph.book_id,
                page=item.page,
                summary=item.summary,
                importance=item.importance,
                involved_entity_ids=list(dict.fromkeys(involved)),
                evidence=evidence,
                arc=item.arc,
                tone=item.tone,
                emotions=unique_strings(item.emotions),
            )
            existing = index.get(event.merge_key)
            if existing is None:
                self._graph.events[event.id] = event
                index[event.merge_key] = event
                stats.events_added += 1
                continue

            existing.importance = max(existing.importance, event.importance)
            existing.evidence = union_evidence(existing.evidence, evidence)
            existing.involved_entity_ids = list(dict.fromkeys([*existing.involved_entity_ids, *event.involved_entity_ids]))
            existing.arc = event.arc or existing.arc
            existing.tone = event.tone or existing.tone
            existing.emotions = unique_strings([*existing.emotions, *event.emotions])

    def _merge_claims(self, extraction: ExtractionResult, evidence_filter: EvidenceFilter, stats: MergeStats) -> None:
        index = {claim.merge_key: claim for claim in self._graph.claims.values()}
        for item in extraction.claims:
            evidence = evidence_filter.filter(_to_evidence(item.evidence))
            if not evidence:
                continue

            subject = self.resolve_entity(item.subject) if item.subject else None
            obj = self.resolve_entity(item.object) if item.object else None
            max_page = max(entry.page for entry in evidence)
            claim = Claim(
                id=self._new_id("clm"),
                book_id=self._graph.book_id,
                type=item.type,
                description=item.description,
                subject_entity_id=subject.id if subject else None,
                object_entity_id=obj.id if obj else None,
                status=item.status or "SUSPECTED",
                evidence=evidence,
                max_page_included=max_page,
            )
            existing = index.get(claim.merge_key)
            if existing is None:
                self._graph.claims[claim.id] = claim
                index[claim.merge_key] = claim
                stats.claims_added += 1
                continue

            existing.evidence = union_evidence(existing.evidence, evidence)
            if item.status:
                existing.status = item.status
            existing.max_page_included = max(existing.max_page_included, max_page)


def extraction_evidence(extraction: ExtractionResult) -> list[Evidence]:
    """Every quote an extraction cites, in merge order."""

    items: list[ExtractedEvidence] = []
    for entity in extraction.entities:
        for fact in entity.facts:
            items.extend(fact.evidence)
    for relationship in extraction.relationships:
        items.extend(relationship.evidence)
    for event in extraction.events:
        items.extend(event.evidence)
    for claim in extraction.claims:
        items.extend(claim.evidence)
    return _to_evidence(items)


def _to_evidence(items: list[ExtractedEvidence]) -> list[Evidence]:
    return [
        Evidence(
            quote=item.quote,
            page=item.page,
            chunk_id=item.chunk_id,
            confidence=item.confidence,
            inferred=bool(item.inferred),
        )
        for item in items
    ]


def _merge_facts(existing: list[Fact], incoming: list[Fact]) -> list[Fact]:
    merged = list(existing)
    by_key = {f"{fact.key}:{fact.value}": fact for fact in merged}
    for fact in incoming:
        key = f"{fact.key}:{fact.value}"
        current = by_key.get(key)
        if current is None:
            merged.append(fact)
            by_key[key] = fact
            continue
        current.evidence = union_evidence(current.evidence, fact.evidence)
        if fact.inferred is not None:
            current.inferred = fact.inferred
    return merged
