from __future__ import annotations

import pytest

from readgraph.graph.models import Entity, TextUnit
from readgraph.inference.coreference import CoreferenceResolver, normalize_surface


def _entity(entity_id: str, name: str, entity_type: str = "character", aliases: list[str] | None = None) -> Entity:
    return Entity(
        id=entity_id,
        book_id="b",
        type=entity_type,
        canonical_name=name,
        aliases=aliases or [],
        first_seen_page=0,
        last_seen_page=0,
        max_page_included=0,
    )


ALICE = _entity("ent_alice", "Alice", aliases=["Ally"])
GUILD = _entity("ent_guild", "Weavers' Guild", entity_type="organization", aliases=["the guild"])


def test_normalize_surface() -> None:
    assert normalize_surface("Weavers' Guild!") == "weavers guild"


@pytest.mark.asyncio
async def test_singular_pronouns_prefer_characters_and_plural_prefer_groups() -> None:
    units = [
        TextUnit(id="c0", page=0, text="Alice joined the Weavers' Guild."),
        TextUnit(id="c1", page=1, text="She smiled. They cheered."),
    ]

    mentions = await CoreferenceResolver().resolve(units, [ALICE, GUILD])

    assert [(mention.mention, mention.resolved_entity_id) for mention in mentions] == [
        ("she", "ent_alice"),
        ("they", "ent_guild"),
    ]
    assert (mentions[1].offset_start, mentions[1].offset_end) == (12, 16)
    assert all(mention.text_unit_id == "c1" and mention.confidence == 0.6 for mention in mentions)


@pytest.mark.asyncio
async def test_names_in_a_unit_are_known_before_its_pronouns() -> None:
    units = [TextUnit(id="c0", page=0, text="He walked in. Later Ally arrived.")]

    mentions = await CoreferenceResolver().resolve(units, [ALICE])

    assert [mention.resolved_entity_id for mention in mentions] == ["ent_alice"]


@pytest.mark.asyncio
async def test_falls_back_to_most_recent_entity() -> None:
    units = [
        TextUnit(id="c0", page=0, text="The guild voted."),
        TextUnit(id="c1", page=1, text="His answer came late."),
    ]
    resolver = CoreferenceResolver(max_recent=1)

    mentions = await resolver.resolve(units, [ALICE, GUILD])

    assert [mention.resolved_entity_id for mention in mentions] == ["ent_guild"]
    assert resolver.recent == [GUILD]


def test_max_recent_must_be_positive() -> None:
    with pytest.raises(ValueError):
        CoreferenceResolver(max_recent=0)
