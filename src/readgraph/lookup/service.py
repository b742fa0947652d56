"""Spoiler-safe term lookup: a known entity first, extractive context second."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Any, Protocol, Sequence

from readgraph.graph.models import Entity, Evidence
from readgraph.graph.repository import GraphRepository
from readgraph.ingestion.models import ScoredChunk
from readgraph.lookup.lexrank import extract_term_context
from readgraph.search.normalize import normalize_name


LOGGER = logging.getLogger(__name__)

LOOKUP_TOP_K = 6
MAX_ENTITY_EVIDENCE = 3

SOURCE_ENTITY = "entity"
SOURCE_LEXRANK = "lexrank"
SOURCE_NONE = "none"


class _Retriever(Protocol):
    def hybrid_search(self, book_id: str, query: str, top_k: int = 10, max_page: int | None = None) -> list[ScoredChunk]:
        ...


@dataclass(slots=True)
class LookupResult:
    term: str
    summary: str
    source: str
    max_page_included: int
    evidence: list[Evidence] = field(default_factory=list)
    entity: Entity | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "term": self.term,
            "summary": self.summary,
            "source": self.source,
            "max_page_included": self.max_page_included,
            "evidence": [item.to_dict() for item in self.evidence],
            "entity": self.entity.to_dict() if self.entity is not None else None,
        }


def build_term_variants(term: str) -> list[str]:
    raw = term.strip()
    if not raw:
        return []
    lower = raw.lower()
    normalized = " ".join(lower.split())
    variants = [raw, lower, normalized]
    if not normalized.endswith("s"):
        variants.extend([f"{normalized}s", f"{normalized}'s", f"{normalized}s'"])
    elif not normalized.endswith("'s"):
        variants.append(f"{normalized}'s")
    return list(dict.fromkeys(variants))


def summarize_entity(entity: Entity) -> str:
    if entity.description:
        return entity.description
    if entity.facts:
        fact = entity.facts[0]
        return f"{fact.key}: {fact.value}"
    return ""


def resolve_in(entities: Sequence[Entity], term: str) -> Entity | None:
    """Canonical name match first, then the most recently seen entity carrying the alias."""

    normalized = normalize_name(term)
    if not normalized:
        return None
    for entity in entities:
        if normalize_name(entity.canonical_name) == normalized:
            return entity
    matches = [entity for entity in entities if normalized in {normalize_name(alias) for alias in entity.aliases}]
    if not matches:
        return None
    return sorted(matches, key=lambda entity: -entity.last_seen_page)[0]


class LookupService:
    def __init__(
        self,
        *,
        graph_repository: GraphRepository,
        retriever: _Retriever,
        language: str = "en",
        top_k: int = LOOKUP_TOP_K,
    ) -> None:
        if top_k <= 0:
            raise ValueError("top_k must be positive")
        self._graphs = graph_repository
        self._retriever = retriever
        self._language = language
        self._top_k = top_k

    def lookup_term(self, book_id: str, term: str, max_page_included: int) -> LookupResult:
        if not term.strip():
            raise ValueError("term cannot be empty")
        if max_page_included < 0:
            raise ValueError("max_page_included must be >= 0")

        snapshot = self._graphs.snapshot(book_id, max_page_included)
        entity = resolve_in(snapshot.entities, term)
        if entity is not None:
            evidence = [item for fact in entity.facts for item in fact.evidence if item.page <= max_page_included]
            return LookupResult(
                term=term,
                summary=summarize_entity(entity),
                source=SOURCE_ENTITY,
                max_page_included=max_page_included,
                evidence=evidence[:MAX_ENTITY_EVIDENCE],
                entity=entity,
            )

        results = self._retriever.hybrid_search(book_id, term, self._top_k, max_page_included)
        results = [result for result in results if result.page_number <= max_page_included]
        combined = "\n".join(result.text for result in results)
        sentences = extract_term_context(combined, build_term_variants(term), language=self._language)
        if not sentences:
            LOGGER.debug("No context found for %r in %s up to page %d", term, book_id, max_page_included)
            return LookupResult(term=term, summary="", source=SOURCE_NONE, max_page_included=max_page_included)

        evidence: list[Evidence] = []
        for sentence in sentences:
            match = next((result for result in results if sentence in result.text), None)
            if match is not None:
                evidence.append(Evidence(quote=sentence, page=match.page_number, chunk_id=match.id))
        return LookupResult(
            term=term,
            summary=" ".join(sentences),
            source=SOURCE_LEXRANK,
            max_page_included=max_page_included,
            evidence=evidence,
        )
