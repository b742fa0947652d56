"""Kinship and social links read from possessive chains such as "Alice's brother's wife"."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import re
from typing import Callable, Sequence

from readgraph.graph.merge import GraphMerger, new_id
from readgraph.graph.models import Entity, Evidence, Relationship, TextUnit
from readgraph.graph.names import is_living
from readgraph.runtime import BackendYieldController, YieldController
from readgraph.search.normalize import normalize_name


LOGGER = logging.getLogger(__name__)

RELATION_KEYWORDS = (
    "brother",
    "sister",
    "son",
    "daughter",
    "father",
    "mother",
    "wife",
    "husband",
    "spouse",
    "friend",
    "enemy",
    "mentor",
    "teacher",
    "student",
    "apprentice",
)
PRONOUNS = frozenset(
    {
        "i", "me", "my", "mine", "we", "our", "ours", "you", "your", "yours",
        "he", "him", "his", "she", "her", "hers", "they", "them", "their", "theirs", "it", "its",
    }
)
RELATION_TYPES = {
    "brother": "sibling_of",
    "sister": "sibling_of",
    "son": "parent_of",
    "daughter": "parent_of",
    "father": "child_of",
    "mother": "child_of",
    "wife": "spouse_of",
    "husband": "spouse_of",
    "spouse": "spouse_of",
    "friend": "friend_of",
    "enemy": "enemy_of",
}
POSSESSIVE_CONFIDENCE = 0.7
INFERENCE_METHOD = "possessive"
_MAX_ROOT_WORDS = 3

_KEYWORDS = "|".join(RELATION_KEYWORDS)
_CHAIN_RE = re.compile(rf"(?:['’]s\s+(?:{_KEYWORDS})\b)+", re.IGNORECASE)
_LINK_RE = re.compile(rf"['’]s\s+({_KEYWORDS})\b", re.IGNORECASE)
_WORD_RE = re.compile(r"[\w\-]+")


def relation_type(keyword: str) -> str:
    return RELATION_TYPES.get(keyword.lower(), "related_to")


@dataclass(slots=True)
class PossessiveChain:
    root: Entity
    links: list[str]
    text: str
    page: int
    chunk_id: str


@dataclass(slots=True)
class PossessiveResult:
    entities: list[Entity] = field(default_factory=list)
    relationships: list[Relationship] = field(default_factory=list)


def find_possessive_chains(unit: TextUnit, resolve: Callable[[str], Entity | None]) -> list[PossessiveChain]:
    """Chains whose root is a known entity; the root is the longest resolvable run of up to three words."""

    chains: list[PossessiveChain] = []
    for match in _CHAIN_RE.finditer(unit.text):
        head = unit.text[: match.start()]
        words = list(_WORD_RE.finditer(head[-120:]))
        if not words or words[-1].end() != len(head[-120:]):
            continue
        if words[-1].group(0).lower() in PRONOUNS:
            continue

        offset = len(head) - len(head[-120:])
        root: Entity | None = None
        root_start = match.start()
        for size in range(min(_MAX_ROOT_WORDS, len(words)), 0, -1):
            candidate_words = words[-size:]
            candidate = " ".join(word.group(0) for word in candidate_words)
            root = resolve(candidate)
            if root is not None:
                root_start = offset + candidate_words[0].start()
                break
        if root is None:
            continue

        chains.append(
            PossessiveChain(
                root=root,
                links=[link.lower() for link in _LINK_RE.findall(match.group(0))],
                text=unit.text[root_start : match.end()],
                page=unit.page,
                chunk_id=unit.id,
            )
        )
    return chains


async def infer_possessive_relationships(
    merger: GraphMerger,
    text_units: Sequence[TextUnit],
    *,
    max_page: int,
    yielder: YieldController | None = None,
    id_factory: Callable[[str], str] = new_id,
) -> PossessiveResult:
    """Add implied entities and typed relationships for every possessive chain in ``text_units``."""

    yielder = yielder or BackendYieldController()
    book_id = merger.graph.book_id
    result = PossessiveResult()

    for unit in text_units:
        if unit.page > max_page:
            continue
        for chain in find_possessive_chains(unit, merger.resolve_entity):
            if not is_living(chain.root):
                continue
            current = chain.root
            evidence = Evidence(
                quote=chain.text,
                page=chain.page,
                chunk_id=chain.chunk_id,
                confidence=POSSESSIVE_CONFIDENCE,
                inferred=True,
            )
            for link in chain.links:
                implied_name = f"{current.canonical_name}'s {link}"
                implied = merger.entity_by_name(implied_name)
                if implied is None:
                    implied = merger.add_entity(
                        Entity(
                            id=id_factory("ent"),
                            book_id=book_id,
                            type="character",
                            canonical_name=implied_name,
                            description=f"{link} of {current.canonical_name}",
                            first_seen_page=chain.page,
                            last_seen_page=chain.page,
                            max_page_included=max_page,
                        )
                    )
                    result.entities.append(implied)

                rel_type = relation_type(link)
                result.relationships.append(
                    Relationship(
                        id=id_factory("rel"),
                        book_id=book_id,
                        source_entity_id=current.id,
                        target_entity_id=implied.id,
                        type=rel_type,
                        description=f"{current.canonical_name} {rel_type} {implied.canonical_name}",
                        evidence=[evidence],
                        inferred=True,
                        inference_method=INFERENCE_METHOD,
                        confidence=POSSESSIVE_CONFIDENCE,
                        first_seen_page=chain.page,
                        last_seen_page=chain.page,
                    )
                )
                current = implied
        await yielder.maybe_yield()

    added = merger.add_relationships(result.relationships)
    if result.entities or added:
        LOGGER.debug(
            "Possessive inference added %d entities and %d relationships in %s",
            len(result.entities),
            added,
            book_id,
        )
    return result
