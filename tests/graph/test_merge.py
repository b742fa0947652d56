from __future__ import annotations

import itertools

from readgraph.extraction.schema import validate_extraction
from readgraph.extraction.validators import EvidenceFilter
from readgraph.graph.merge import GraphMerger, union_evidence
from readgraph.graph.models import BookGraph, Entity, Evidence, Relationship, TextUnit


UNITS = [
    TextUnit(id="c0", page=0, text="Alice met Bob at the mill."),
    TextUnit(id="c1", page=1, text="I walked home. Alice argued with Bob about the mill."),
    TextUnit(id="c2", page=2, text="The Iron Company bought the mill from Alice."),
]


def _ids():
    counter = itertools.count()
    return lambda prefix: f"{prefix}_{next(counter)}"


def _quote(text: str, page: int, chunk_id: str) -> dict:
    return {"quote": text, "page": page, "chunk_id": chunk_id}


def _merge(graph: BookGraph, payload: dict, *, page_start: int = 0, page_end: int = 2):
    merger = GraphMerger(graph, id_factory=_ids())
    stats = merger.merge(
        validate_extraction(payload),
        text_units=UNITS,
        page_start=page_start,
        page_end=page_end,
        evidence_filter=EvidenceFilter(UNITS, page_end),
    )
    return merger, stats


def _character(name: str, quote: dict | None = None, **extra) -> dict:
    facts = [{"key": "seen", "value": "yes", "evidence": [quote]}] if quote else []
    return {"name": name, "type": "character", "facts": facts, **extra}


def test_pronoun_entity_is_dropped_as_noisy() -> None:
    graph = BookGraph(book_id="b")

    _, stats = _merge(
        graph,
        {
            "entities": [
                _character("I", _quote("I walked home", 1, "c1")),
                _character("Alice", _quote("Alice met Bob", 0, "c0")),
            ]
        },
    )

    assert [entity.canonical_name for entity in graph.entities.values()] == ["Alice"]
    assert stats.entities_added == 1


def test_entity_without_grounding_or_mention_is_skipped() -> None:
    graph = BookGraph(book_id="b")

    _merge(
        graph,
        {
            "entities": [
                _character("Charlie", _quote("Charlie sailed away", 1, "c1")),
                _character("Bob", first_seen_page=0, last_seen_page=9),
            ]
        },
    )

    (bob,) = graph.entities.values()
    assert bob.canonical_name == "Bob"
    assert (bob.first_seen_page, bob.last_seen_page) == (0, 2)


def test_entity_pages_come_from_grounded_evidence() -> None:
    graph = BookGraph(book_id="b")

    _merge(
        graph,
        {
            "entities": [
                {
                    "name": "Alice",
                    "type": "character",
                    "first_seen_page": 0,
                    "last_seen_page": 0,
                    "facts": [
                        {"key": "argued", "value": "with Bob", "evidence": [_quote("Alice argued with Bob", 0, "c1")]},
                        {"key": "sold", "value": "the mill", "evidence": [_quote("bought the mill from Alice", 2, "c2")]},
                    ],
                }
            ]
        },
    )

    (alice,) = graph.entities.values()
    assert (alice.first_seen_page, alice.last_seen_page) == (1, 2)
    assert [item.chunk_id for fact in alice.facts for item in fact.evidence] == ["c1", "c2"]


def test_self_loops_and_non_living_endpoints_are_excluded() -> None:
    graph = BookGraph(book_id="b")
    quote = _quote("The Iron Company bought the mill from Alice", 2, "c2")

    _, stats = _merge(
        graph,
        {
            "entities": [
                _character("Alice", _quote("Alice met Bob", 0, "c0")),
                {"name": "Iron Company", "type": "organization", "facts": [{"key": "k", "value": "v", "evidence": [quote]}]},
            ],
            "relationships": [
                {"source": "Alice", "target": "Alice", "type": "knows", "evidence": [_quote("Alice met Bob", 0, "c0")]},
                {"source": "Iron Company", "target": "Alice", "type": "bought_from", "evidence": [quote]},
            ],
        },
    )

    assert graph.relationships == {}
    assert stats.relationships_added == 0


def test_relationship_evidence_outside_batch_is_rejected() -> None:
    graph = BookGraph(book_id="b")

    _, stats = _merge(
        graph,
        {
            "entities": [_character("Alice", _quote("Alice met Bob", 0, "c0")), _character("Bob", _quote("Alice met Bob", 0, "c0"))],
            "relationships": [
                {"source": "Alice", "target": "Bob", "type": "married", "evidence": [_quote("Alice married Bob", 5, "c9")]},
            ],
        },
    )

    assert graph.relationships == {}
    assert stats.evidence_rejected == 1


def test_extracted_relationship_confirms_inferred_one() -> None:
    graph = BookGraph(book_id="b")
    merger, _ = _merge(
        graph,
        {"entities": [_character("Alice", _quote("Alice met Bob", 0, "c0")), _character("Bob", _quote("Alice met Bob", 0, "c0"))]},
    )
    alice = merger.entity_by_name("alice")
    bob = merger.entity_by_name("BOB")
    merger.add_relationships(
        [
            Relationship(
                id="rel_inferred",
                book_id="b",
                source_entity_id=alice.id,
                target_entity_id=bob.id,
                type="argued_with",
                first_seen_page=1,
                last_seen_page=1,
                evidence=[Evidence(quote="guess", page=1, chunk_id="inferred", inferred=True)],
                inferred=True,
                inference_method="triadic",
                confidence=0.6,
            )
        ]
    )

    _merge(
        graph,
        {
            "relationships": [
                {
                    "source": "Alice",
                    "target": "Bob",
                    "type": "Argued With",
                    "strength": 14,
                    "evidence": [_quote("Alice argued with Bob", 1, "c1")],
                }
            ]
        },
    )

    relationship = graph.relationships["rel_inferred"]
    assert relationship.inferred is False
    assert relationship.inference_method is None
    assert relationship.confidence is None
    assert relationship.strength == 10
    assert len(relationship.evidence) == 2


def test_alias_resolution_prefers_most_recent_entity() -> None:
    graph = BookGraph(book_id="b")
    merger = GraphMerger(graph, id_factory=_ids())
    for name, page in (("Robert Stone", 0), ("Bobby Hale", 2)):
        entity = merger.add_entity(
            Entity(
                id=f"ent_{name.split()[0].lower()}",
                book_id="b",
                type="character",
                canonical_name=name,
                aliases=["Bob"],
                first_seen_page=page,
                last_seen_page=page,
                max_page_included=page,
            )
        )
        merger.index_aliases(entity)

    assert graph.aliases["b:bob"].ambiguous
    assert merger.resolve_entity("bob").canonical_name == "Bobby Hale"
    assert merger.resolve_entity("Robert Stone").id == "ent_robert"
    assert merger.resolve_entity("nobody") is None


def test_events_merge_by_page_and_first_quote() -> None:
    graph = BookGraph(book_id="b")
    event = {
        "page": 1,
        "summary": "Alice and Bob argue.",
        "importance": 3,
        "involved_entities": ["Alice"],
        "evidence": [_quote("Alice argued with Bob", 1, "c1")],
    }
    late = {**event, "page": 7, "summary": "Too late."}

    _merge(graph, {"entities": [_character("Alice", _quote("Alice met Bob", 0, "c0"))], "events": [event, late]})
    _, stats = _merge(graph, {"events": [{**event, "importance": 8, "tone": "tense"}]})

    (stored,) = graph.events.values()
    assert stats.events_added == 0
    assert stored.importance == 8
    assert stored.tone == "tense"
    assert len(stored.involved_entity_ids) == 1


def test_claims_keep_latest_status() -> None:
    graph = BookGraph(book_id="b")
    claim = {
        "type": "accusation",
        "subject": "Alice",
        "description": "The mill was sold in secret.",
        "evidence": [_quote("bought the mill from Alice", 2, "c2")],
    }

    _merge(graph, {"claims": [claim]})
    _merge(graph, {"claims": [{**claim, "status": "TRUE"}]})

    (stored,) = graph.claims.values()
    assert stored.status == "TRUE"
    assert stored.max_page_included == 2


def test_union_evidence_dedupes_by_normalized_quote_chunk_and_page() -> None:
    first = Evidence(quote="Alice met Bob.", page=0, chunk_id="c0")
    same = Evidence(quote="alice  met bob", page=0, chunk_id="c0")
    other_page = Evidence(quote="Alice met Bob.", page=1, chunk_id="c0")

    assert union_evidence([first], [same, other_page]) == [first, other_page]
