"""Knowledge-graph records: entities, relationships, events, claims and their evidence.

Records point at each other only through string ids. A :class:`BookGraph` holds
one book's records in id-indexed maps and is the unit the repository loads,
merges into and saves.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import hashlib
from typing import Any

from readgraph.search.normalize import normalize_name


ENTITY_TYPES = ("character", "location", "organization", "artifact", "term", "event", "concept")
CLAIM_STATUSES = ("TRUE", "FALSE", "SUSPECTED")


@dataclass(slots=True)
class Evidence:
    """Verbatim quote anchored to the chunk and page it was found in."""

    quote: str
    page: int
    chunk_id: str
    confidence: float | None = None
    inferred: bool = False

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"quote": self.quote, "page": self.page, "chunk_id": self.chunk_id}
        if self.confidence is not None:
            payload["confidence"] = self.confidence
        if self.inferred:
            payload["inferred"] = True
        return payload

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Evidence":
        confidence = data.get("confidence")
        return cls(
            quote=str(data.get("quote", "")),
            page=int(data.get("page", 0)),
            chunk_id=str(data.get("chunk_id", "")),
            confidence=float(confidence) if confidence is not None else None,
            inferred=bool(data.get("inferred", False)),
        )


def evidence_hash(quote: str) -> str:
    return hashlib.sha1(normalize_name(quote).encode("utf-8")).hexdigest()


def evidence_to_json(items: list[Evidence]) -> list[dict[str, Any]]:
    return [item.to_dict() for item in items]


def evidence_from_json(items: list[dict[str, Any]] | None) -> list[Evidence]:
    return [Evidence.from_dict(item) for item in items or [] if isinstance(item, dict)]


@dataclass(slots=True)
class Fact:
    key: str
    value: str
    evidence: list[Evidence] = field(default_factory=list)
    inferred: bool | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "key": self.key,
            "value": self.value,
            "evidence": evidence_to_json(self.evidence),
        }
        if self.inferred is not None:
            payload["inferred"] = self.inferred
        return payload

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Fact":
        inferred = data.get("inferred")
        return cls(
            key=str(data.get("key", "")),
            value=str(data.get("value", "")),
            evidence=evidence_from_json(data.get("evidence")),
            inferred=bool(inferred) if inferred is not None else None,
        )


@dataclass(slots=True)
class Entity:
    id: str
    book_id: str
    type: str
    canonical_name: str
    first_seen_page: int
    last_seen_page: int
    max_page_included: int
    description: str = ""
    aliases: list[str] = field(default_factory=list)
    facts: list[Fact] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "book_id": self.book_id,
            "type": self.type,
            "canonical_name": self.canonical_name,
            "aliases": list(self.aliases),
            "description": self.description,
            "first_seen_page": self.first_seen_page,
            "last_seen_page": self.last_seen_page,
            "max_page_included": self.max_page_included,
            "facts": [fact.to_dict() for fact in self.facts],
        }


@dataclass(slots=True)
class Relationship:
    id: str
    book_id: str
    source_entity_id: str
    target_entity_id: str
    type: str
    first_seen_page: int
    last_seen_page: int
    description: str = ""
    evidence: list[Evidence] = field(default_factory=list)
    inferred: bool = False
    inference_method: str | None = None
    confidence: float | None = None
    strength: float | None = None

    @property
    def merge_key(self) -> tuple[str, str, str]:
        return (self.source_entity_id, self.target_entity_id, self.type)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "book_id": self.book_id,
            "source_entity_id": self.source_entity_id,
            "target_entity_id": self.target_entity_id,
            "type": self.type,
            "description": self.description,
            "evidence": evidence_to_json(self.evidence),
            "inferred": self.inferred,
            "inference_method": self.inference_method,
            "confidence": self.confidence,
            "strength": self.strength,
            "first_seen_page": self.first_seen_page,
            "last_seen_page": self.last_seen_page,
        }


@dataclass(slots=True)
class TimelineEvent:
    id: str
    book_id: str
    page: int
    summary: str
    importance: int = 5
    involved_entity_ids: list[str] = field(default_factory=list)
    evidence: list[Evidence] = field(default_factory=list)
    arc: str | None = None
    tone: str | None = None
    emotions: list[str] = field(default_factory=list)

    @property
    def merge_key(self) -> tuple[int, str]:
        first_quote = self.evidence[0].quote if self.evidence else self.summary
        return (self.page, evidence_hash(first_quote))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "book_id": self.book_id,
            "page": self.page,
            "summary": self.summary,
            "importance": self.importance,
            "involved_entity_ids": list(self.involved_entity_ids),
            "evidence": evidence_to_json(self.evidence),
            "arc": self.arc,
            "tone": self.tone,
            "emotions": list(self.emotions),
        }


@dataclass(slots=True)
class Claim:
    id: str
    book_id: str
    type: str
    description: str
    max_page_included: int
    subject_entity_id: str | None = None
    object_entity_id: str | None = None
    status: str = "SUSPECTED"
    evidence: list[Evidence] = field(default_factory=list)

    @property
    def merge_key(self) -> tuple[str, str, str, str]:
        return (self.type, self.description, self.subject_entity_id or "", self.object_entity_id or "")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "book_id": self.book_id,
            "type": self.type,
            "subject_entity_id": self.subject_entity_id,
            "object_entity_id": self.object_entity_id,
            "description": self.description,
            "status": self.status,
            "evidence": evidence_to_json(self.evidence),
            "max_page_included": self.max_page_included,
        }


@dataclass(slots=True)
class AliasEntry:
    key: str
    book_id: str
    alias: str
    normalized: str
    entity_ids: list[str] = field(default_factory=list)

    @property
    def ambiguous(self) -> bool:
        return len(self.entity_ids) > 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "alias": self.alias,
            "normalized": self.normalized,
            "entity_ids": list(self.entity_ids),
            "ambiguous": self.ambiguous,
        }


@dataclass(slots=True)
class CorefMention:
    """Pronoun resolved to an entity; used for attribution, never as evidence."""

    mention: str
    resolved_entity_id: str
    text_unit_id: str
    confidence: float
    page: int
    offset_start: int
    offset_end: int


@dataclass(slots=True)
class ExtractionState:
    book_id: str
    last_analyzed_page: int = -1
    pending_from_page: int | None = None
    pending_to_page: int | None = None
    last_error: str | None = None
    updated_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "book_id": self.book_id,
            "last_analyzed_page": self.last_analyzed_page,
            "pending_from_page": self.pending_from_page,
            "pending_to_page": self.pending_to_page,
            "last_error": self.last_error,
            "updated_at": self.updated_at,
        }


@dataclass(slots=True)
class TextUnit:
    """One chunk as handed to the extraction model and the evidence validator."""

    id: str
    page: int
    text: str
    chapter_title: str = ""


@dataclass(slots=True)
class BookGraph:
    """Arena of one book's records, indexed by id."""

    book_id: str
    entities: dict[str, Entity] = field(default_factory=dict)
    relationships: dict[str, Relationship] = field(default_factory=dict)
    events: dict[str, TimelineEvent] = field(default_factory=dict)
    claims: dict[str, Claim] = field(default_factory=dict)
    aliases: dict[str, AliasEntry] = field(default_factory=dict)
    mentions: list[CorefMention] = field(default_factory=list)

    def entity_list(self) -> list[Entity]:
        return list(self.entities.values())


@dataclass(slots=True)
class GraphSnapshot:
    book_id: str
    max_page: int
    entities: list[Entity] = field(default_factory=list)
    relationships: list[Relationship] = field(default_factory=list)
    events: list[TimelineEvent] = field(default_factory=list)
    claims: list[Claim] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "book_id": self.book_id,
            "max_page": self.max_page,
            "entities": [entity.to_dict() for entity in self.entities],
            "relationships": [relationship.to_dict() for relationship in self.relationships],
            "events": [event.to_dict() for event in self.events],
            "claims": [claim.to_dict() for claim in self.claims],
        }
