from __future__ import annotations

import pytest

from readgraph.extraction.errors import SchemaInvalid
from readgraph.extraction.schema import (
    extract_json_object,
    normalize_entity_type,
    parse_extraction,
    sanitize_json,
    validate_extraction,
)


def test_extract_json_object_handles_fences_prose_and_trailing_commas() -> None:
    raw = 'Sure, here it is:\n```json\n{"entities": [{"name": "Alice",},],}\n```\nDone.'

    assert extract_json_object(raw) == {"entities": [{"name": "Alice"}]}


def test_extract_json_object_ignores_braces_inside_strings() -> None:
    raw = 'noise {"summary": "a } brace", "n": {"x": 1}} trailing {"other": 2}'

    assert extract_json_object(raw) == {"summary": "a } brace", "n": {"x": 1}}


def test_extract_json_object_returns_none_without_object() -> None:
    assert extract_json_object("I could not find anything.") is None
    assert extract_json_object('{"unbalanced": [1, 2}') is None


def test_sanitize_json_escapes_raw_newlines_in_strings() -> None:
    assert sanitize_json('{"quote": "line one\nline two"}') == '{"quote": "line one\\nline two"}'


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("Person", "character"),
        ("characters", "character"),
        ("Place", "location"),
        ("org:guild", "organization"),
        ("item", "artifact"),
        ("theme", "concept"),
        ("weather", "term"),
        (None, "term"),
    ],
)
def test_entity_type_synonyms(raw, expected: str) -> None:
    assert normalize_entity_type(raw) == expected


def test_entity_without_facts_gets_mention_fact_from_top_level_evidence() -> None:
    result = validate_extraction(
        {
            "entities": [
                {
                    "name": " Alice ",
                    "type": "person",
                    "description": "A traveler.",
                    "quote": "Alice met Bob",
                    "page": "2",
                    "chunkId": "c2",
                }
            ]
        }
    )

    (entity,) = result.entities
    assert entity.name == "Alice"
    assert entity.type == "character"
    assert (entity.first_seen_page, entity.last_seen_page) == (2, 2)
    assert entity.facts[0].key == "mention"
    assert entity.facts[0].value == "A traveler."
    assert entity.facts[0].evidence[0].chunk_id == "c2"


def test_relationship_and_claim_key_aliases() -> None:
    result = validate_extraction(
        {
            "relationships": [
                {"from": "Alice", "to": "Bob", "relation": "sister_of", "strength": 7},
                {"from": "Alice", "type": "orphan"},
            ],
            "claims": [{"statement": "Bob stole the key.", "speaker": "Alice", "status": "maybe"}],
            "events": [{"event": "The flood.", "importance": 40}],
        }
    )

    (relationship,) = result.relationships
    assert (relationship.source, relationship.target, relationship.type) == ("Alice", "Bob", "sister_of")
    assert relationship.strength == 7.0
    (claim,) = result.claims
    assert claim.subject == "Alice"
    assert claim.status is None
    assert claim.type == "claim"
    assert result.events[0].importance == 10


def test_evidence_with_missing_fields_is_dropped() -> None:
    result = validate_extraction(
        {
            "events": [
                {
                    "summary": "A storm.",
                    "evidence": [
                        {"quote": "thunder", "page": 1, "chunk_id": "c1", "confidence": 3},
                        {"quote": "", "page": 1, "chunk_id": "c1"},
                        {"quote": "rain", "page": -4, "chunk_id": "c1"},
                    ],
                }
            ]
        }
    )

    (item,) = result.events[0].evidence
    assert item.quote == "thunder"
    assert item.confidence == 1.0
    assert result.events[0].page == 1


def test_validation_is_idempotent_on_dumped_output() -> None:
    first = validate_extraction({"entities": [{"name": "Alice", "type": "character", "quote": "Alice", "page": 0, "chunk_id": "c0"}]})

    assert validate_extraction(first.model_dump()) == first


def test_non_object_and_unparseable_output_raise_schema_invalid() -> None:
    with pytest.raises(SchemaInvalid) as exc_info:
        validate_extraction(["entities"], window_tag="w3")
    assert "window=w3" in str(exc_info.value)

    with pytest.raises(SchemaInvalid):
        parse_extraction("no json at all", window_tag="w0")


def test_merged_with_concatenates_sections() -> None:
    left = parse_extraction('{"entities": [{"name": "Alice", "type": "character"}]}')
    right = parse_extraction('{"entities": [{"name": "Bob", "type": "character"}], "claims": []}')

    assert [entity.name for entity in left.merged_with(right).entities] == ["Alice", "Bob"]
