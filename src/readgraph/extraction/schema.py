"""Parsing of raw model output into the strict extraction schema.

Model text is unwrapped from code fences, the first balanced JSON object is
cut out and sanitized, then every record is normalized field by field (key
aliases, type synonyms, defaults) before pydantic validation.
"""

from __future__ import annotations

import json
import re
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from readgraph.extraction.errors import SchemaInvalid


EntityType = Literal["character", "location", "organization", "artifact", "term", "event", "concept"]
ClaimStatus = Literal["TRUE", "FALSE", "SUSPECTED"]

_CODE_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")

_ENTITY_TYPE_SYNONYMS = {
    "person": "character",
    "people": "character",
    "character": "character",
    "protagonist": "character",
    "narrator": "character",
    "creature": "character",
    "place": "location",
    "location": "location",
    "setting": "location",
    "organization": "organization",
    "organisation": "organization",
    "group": "organization",
    "guild": "organization",
    "artifact": "artifact",
    "item": "artifact",
    "object": "artifact",
    "term": "term",
    "concept": "concept",
    "idea": "concept",
    "theme": "concept",
    "event": "event",
}
_ENTITY_TYPE_PREFIXES = (
    ("person", "character"),
    ("char", "character"),
    ("loc", "location"),
    ("place", "location"),
    ("org", "organization"),
    ("group", "organization"),
    ("artifact", "artifact"),
    ("item", "artifact"),
    ("concept", "concept"),
    ("theme", "concept"),
    ("event", "event"),
)
_DEFAULT_MENTION_VALUE = "Mentioned in text"


class _Record(BaseModel):
    model_config = ConfigDict(extra="ignore")


class ExtractedEvidence(_Record):
    quote: str = Field(min_length=1)
    page: int = Field(ge=0)
    chunk_id: str = Field(min_length=1)
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    inferred: bool | None = None


class ExtractedFact(_Record):
    key: str = Field(min_length=1)
    value: str = Field(min_length=1)
    evidence: list[ExtractedEvidence] = Field(default_factory=list)
    inferred: bool | None = None


class ExtractedEntity(_Record):
    name: str = Field(min_length=1)
    type: EntityType
    aliases: list[str] = Field(default_factory=list)
    description: str = ""
    first_seen_page: int = Field(default=0, ge=0)
    last_seen_page: int = Field(default=0, ge=0)
    facts: list[ExtractedFact] = Field(default_factory=list)


class ExtractedRelationship(_Record):
    source: str = Field(min_length=1)
    target: str = Field(min_length=1)
    type: str = Field(min_length=1)
    description: str = ""
    evidence: list[ExtractedEvidence] = Field(default_factory=list)
    inferred: bool | None = None
    first_seen_page: int = Field(default=0, ge=0)
    last_seen_page: int = Field(default=0, ge=0)
    strength: float | None = None


class ExtractedEvent(_Record):
    page: int = Field(default=0, ge=0)
    summary: str = Field(min_length=1)
    importance: int = Field(default=5, ge=1, le=10)
    involved_entities: list[str] = Field(default_factory=list)
    evidence: list[ExtractedEvidence] = Field(default_factory=list)
    arc: str | None = None
    tone: str | None = None
    emotions: list[str] = Field(default_factory=list)


class ExtractedClaim(_Record):
    type: str = Field(min_length=1)
    subject: str | None = None
    object: str | None = None
    description: str = Field(min_length=1)
    status: ClaimStatus | None = None
    evidence: list[ExtractedEvidence] = Field(default_factory=list)


class ExtractionResult(_Record):
    entities: list[ExtractedEntity] = Field(default_factory=list)
    relationships: list[ExtractedRelationship] = Field(default_factory=list)
    events: list[ExtractedEvent] = Field(default_factory=list)
    claims: list[ExtractedClaim] = Field(default_factory=list)

    def merged_with(self, other: "ExtractionResult") -> "ExtractionResult":
        return ExtractionResult(
            entities=[*self.entities, *other.entities],
            relationships=[*self.relationships, *other.relationships],
            events=[*self.events, *other.events],
            claims=[*self.claims, *other.claims],
        )


# ---------------------------------------------------------------------------
# Raw text -> JSON object
# ---------------------------------------------------------------------------


def strip_code_fences(raw: str) -> str:
    match = _CODE_FENCE_RE.search(raw)
    return match.group(1).strip() if match else raw.strip()


def escape_newlines_in_strings(raw: str) -> str:
    """Escape literal CR/LF characters that appear inside JSON string values."""

    result: list[str] = []
    in_string = False
    escaped = False
    for char in raw:
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            elif char == "\n":
                result.append("\\n")
                continue
            elif char == "\r":
                result.append("\\r")
                continue
        elif char == '"':
            in_string = True
        result.append(char)
    return "".join(result)


def sanitize_json(raw: str) -> str:
    return _TRAILING_COMMA_RE.sub(r"\1", escape_newlines_in_strings(raw.lstrip("\ufeff")))


def extract_json_object(raw: str) -> dict[str, Any] | None:
    """Return the first balanced ``{...}`` object in ``raw``, or None."""

    cleaned = strip_code_fences(raw.lstrip("\ufeff"))
    start = cleaned.find("{")
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(cleaned)):
        char = cleaned[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
        elif char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                try:
                    value = json.loads(sanitize_json(cleaned[start : index + 1]))
                except json.JSONDecodeError:
                    return None
                return value if isinstance(value, dict) else None
    return None


# ---------------------------------------------------------------------------
# Field-by-field normalization
# ---------------------------------------------------------------------------


def _first(record: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = record.get(key)
        if value not in (None, ""):
            return value
    return None


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def _strings(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


def normalize_entity_type(value: Any) -> str:
    raw = _text(value).lower()
    if raw in _ENTITY_TYPE_SYNONYMS:
        return _ENTITY_TYPE_SYNONYMS[raw]
    for prefix, entity_type in _ENTITY_TYPE_PREFIXES:
        if raw.startswith(prefix):
            return entity_type
    return "term"


def _evidence_item(item: dict[str, Any]) -> dict[str, Any] | None:
    quote = _text(item.get("quote"))
    chunk_id = _text(_first(item, "chunk_id", "chunkId"))
    page = _int(_first(item, "page", "pageNumber", "page_number"))
    if not quote or not chunk_id or page is None or page < 0:
        return None

    evidence: dict[str, Any] = {"quote": quote, "page": page, "chunk_id": chunk_id}
    confidence = item.get("confidence")
    if isinstance(confidence, (int, float)) and not isinstance(confidence, bool):
        evidence["confidence"] = min(1.0, max(0.0, float(confidence)))
    if isinstance(item.get("inferred"), bool):
        evidence["inferred"] = item["inferred"]
    return evidence


def _evidence(value: Any, fallback: dict[str, Any] | None = None) -> list[dict[str, Any]]:
    items = value if isinstance(value, list) else [value] if isinstance(value, dict) else []
    output: list[dict[str, Any]] = []
    for item in items:
        normalized = _evidence_item(item) if isinstance(item, dict) else None
        if normalized:
            output.append(normalized)
    if not output and fallback is not None:
        normalized = _evidence_item(fallback)
        if normalized:
            output.append(normalized)
    return output


def _facts(entity: dict[str, Any], evidence: list[dict[str, Any]]) -> list[dict[str, Any]]:
    raw_facts = [fact for fact in entity.get("facts") or [] if isinstance(fact, dict)]
    if raw_facts:
        facts = []
        for fact in raw_facts:
            value = _text(_first(fact, "value", "description"))
            if not value:
                continue
            facts.append(
                {
                    "key": _text(_first(fact, "key", "name")) or "fact",
                    "value": value,
                    "evidence": _evidence(fact.get("evidence"), fact),
                    "inferred": fact.get("inferred") is True,
                }
            )
        return facts

    if not evidence:
        return []
    return [
        {
            "key": "mention",
            "value": _text(entity.get("description")) or _DEFAULT_MENTION_VALUE,
            "evidence": evidence,
            "inferred": entity.get("inferred") is True,
        }
    ]


def _page_fallback(record: dict[str, Any], evidence: list[dict[str, Any]]) -> int:
    if evidence:
        return int(evidence[0]["page"])
    page = _int(record.get("page"))
    return page if page is not None and page >= 0 else 0


def _page(record: dict[str, Any], keys: tuple[str, ...], fallback: int) -> int:
    value = _int(_first(record, *keys))
    return value if value is not None and value >= 0 else fallback


def _normalize_entities(value: Any) -> list[dict[str, Any]]:
    entities = []
    for entity in value if isinstance(value, list) else []:
        if not isinstance(entity, dict):
            continue
        name = _text(_first(entity, "name", "title", "entity"))
        if not name:
            continue
        evidence = _evidence(entity.get("evidence"), entity)
        fallback = _page_fallback(entity, evidence)
        entities.append(
            {
                "name": name,
                "type": normalize_entity_type(entity.get("type")),
                "aliases": _strings(entity.get("aliases")),
                "description": _text(entity.get("description")),
                "first_seen_page": _page(entity, ("first_seen_page", "firstSeenPage"), fallback),
                "last_seen_page": _page(entity, ("last_seen_page", "lastSeenPage"), fallback),
                "facts": _facts(entity, evidence),
            }
        )
    return entities


def _normalize_relationships(value: Any) -> list[dict[str, Any]]:
    relationships = []
    for rel in value if isinstance(value, list) else []:
        if not isinstance(rel, dict):
            continue
        source = _text(_first(rel, "source", "from", "subject"))
        target = _text(_first(rel, "target", "to", "object"))
        rel_type = _text(_first(rel, "type", "relationship", "relation")) or "related_to"
        if not source or not target:
            continue
        evidence = _evidence(rel.get("evidence"), rel)
        fallback = _page_fallback(rel, evidence)
        strength = rel.get("strength")
        relationships.append(
            {
                "source": source,
                "target": target,
                "type": rel_type,
                "description": _text(rel.get("description")),
                "evidence": evidence,
                "inferred": rel.get("inferred") is True,
                "first_seen_page": _page(rel, ("first_seen_page", "firstSeenPage"), fallback),
                "last_seen_page": _page(rel, ("last_seen_page", "lastSeenPage"), fallback),
                "strength": float(strength) if isinstance(strength, (int, float)) and not isinstance(strength, bool) else None,
            }
        )
    return relationships


def _normalize_events(value: Any) -> list[dict[str, Any]]:
    events = []
    for event in value if isinstance(value, list) else []:
        if not isinstance(event, dict):
            continue
        summary = _text(_first(event, "summary", "event", "description"))
        if not summary:
            continue
        evidence = _evidence(event.get("evidence"), event)
        importance = _int(event.get("importance"))
        events.append(
            {
                "page": _page(event, ("page",), _page_fallback(event, evidence)),
                "summary": summary,
                "importance": min(10, max(1, importance)) if importance is not None else 5,
                "involved_entities": _strings(event.get("involved_entities")),
                "evidence": evidence,
                "arc": _text(event.get("arc")) or None,
                "tone": _text(event.get("tone")) or None,
                "emotions": _strings(event.get("emotions")),
            }
        )
    return events


def _normalize_claims(value: Any) -> list[dict[str, Any]]:
    claims = []
    for claim in value if isinstance(value, list) else []:
        if not isinstance(claim, dict):
            continue
        description = _text(_first(claim, "description", "claim", "statement"))
        if not description:
            continue
        status = _text(claim.get("status")).upper()
        claims.append(
            {
                "type": _text(claim.get("type")) or "claim",
                "subject": _text(_first(claim, "subject", "supporter", "speaker", "source")) or None,
                "object": _text(_first(claim, "object", "target")) or None,
                "description": description,
                "status": status if status in ("TRUE", "FALSE", "SUSPECTED") else None,
                "evidence": _evidence(claim.get("evidence"), claim),
            }
        )
    return claims


def normalize_extraction(data: dict[str, Any]) -> dict[str, Any]:
    return {
        "entities": _normalize_entities(data.get("entities")),
        "relationships": _normalize_relationships(data.get("relationships")),
        "events": _normalize_events(data.get("events")),
        "claims": _normalize_claims(data.get("claims")),
    }


def validate_extraction(data: Any, *, window_tag: str = "") -> ExtractionResult:
    """Normalize and strictly validate an already-decoded extraction object."""

    if not isinstance(data, dict):
        raise SchemaInvalid(window_tag=window_tag, message="Extraction output is not a JSON object")
    try:
        return ExtractionResult.model_validate(normalize_extraction(data))
    except ValidationError as exc:
        raise SchemaInvalid(window_tag=window_tag, message=f"Extraction failed schema validation: {exc}") from exc


def parse_extraction(raw: str, *, window_tag: str = "") -> ExtractionResult:
    data = extract_json_object(raw)
    if data is None:
        raise SchemaInvalid(window_tag=window_tag, message="No JSON object found in model output")
    return validate_extraction(data, window_tag=window_tag)
