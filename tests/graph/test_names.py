from __future__ import annotations

import pytest

from readgraph.graph.models import Entity
from readgraph.graph.names import canonicalize_name, is_living, is_noisy_name, unique_strings


@pytest.mark.parametrize(
    "name",
    ["I", "Me", "she said", "my_friend", "said Tom", "The Stranger", "i think", "Jo"],
)
def test_noisy_character_names(name: str) -> None:
    assert is_noisy_name(name, "character")


def test_real_names_are_kept() -> None:
    assert not is_noisy_name("Alice", "character")
    assert not is_noisy_name("Bob Hale", "character")
    assert not is_noisy_name("The Mill", "location")


def test_canonicalize_trims_quotes_and_whitespace() -> None:
    assert canonicalize_name('  "Alice   Hale", ') == "Alice Hale"
    assert canonicalize_name("«Old Mill»") == "Old Mill"


def test_unique_strings_keeps_first_spelling() -> None:
    assert unique_strings(["Bob", " bob ", "BOB", "", "Robert"]) == ["Bob", "Robert"]


def _entity(name: str, entity_type: str = "character", description: str = "") -> Entity:
    return Entity(
        id="e",
        book_id="b",
        type=entity_type,
        canonical_name=name,
        description=description,
        first_seen_page=0,
        last_seen_page=0,
        max_page_included=0,
    )


def test_living_entities_are_human_characters() -> None:
    assert is_living(_entity("Alice"))
    assert not is_living(_entity("Rex", description="A loyal animal."))
    assert not is_living(_entity("Iron Company"))
    assert not is_living(_entity("Old Mill", entity_type="location"))
