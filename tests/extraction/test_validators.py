from __future__ import annotations

import pytest

from readgraph.extraction.validators import (
    EvidenceFilter,
    FuzzyMatchPolicy,
    filter_evidence,
    normalize_evidence_text,
)
from readgraph.graph.models import Evidence, TextUnit


UNITS = [
    TextUnit(id="c0", page=0, text="The lantern swung above the door of the inn."),
    TextUnit(id="c1", page=1, text="Alice met Bob near the old stone bridge, and they spoke of the har-\nvest."),
    TextUnit(id="c2", page=1, text="Later that night the river rose over its banks."),
    TextUnit(id="c3", page=5, text="Bob confessed that he had burned the letters."),
]


def test_normalize_evidence_text() -> None:
    assert normalize_evidence_text("  Alice, met\n\nBOB!  ") == "alice met bob"
    assert normalize_evidence_text("the har-\nvest") == "the harvest"


def test_exact_quote_is_kept_and_reanchored_to_matching_unit() -> None:
    kept = filter_evidence([Evidence(quote="Alice met Bob", page=0, chunk_id="c0")], UNITS, 2)

    assert kept == [Evidence(quote="Alice met Bob", page=1, chunk_id="c1")]


def test_quote_beyond_max_page_is_rejected() -> None:
    evidence_filter = EvidenceFilter(UNITS, 2)

    assert evidence_filter.filter([Evidence(quote="burned the letters", page=5, chunk_id="c3")]) == []
    assert evidence_filter.rejected == 1


def test_fuzzy_quote_needs_enough_overlap_and_length() -> None:
    paraphrase = Evidence(quote="Alice met Bob near a stone bridge and spoke", page=1, chunk_id="c1")
    short = Evidence(quote="Alice saw Bob", page=1, chunk_id="c1")

    assert [item.chunk_id for item in filter_evidence([paraphrase, short], UNITS, 2)] == ["c1"]


def test_fuzzy_quote_may_span_adjacent_units_on_same_page() -> None:
    spanning = Evidence(quote="they spoke of the harvest later that night the river rose", page=1, chunk_id="x")

    (kept,) = filter_evidence([spanning], UNITS, 2)
    assert kept.chunk_id == "c1"


def test_duplicate_quotes_collapse() -> None:
    items = [
        Evidence(quote="The river rose", page=1, chunk_id="c2"),
        Evidence(quote="the river rose.", page=1, chunk_id="c2"),
    ]

    assert len(filter_evidence(items, UNITS, 1)) == 1


def test_policy_bounds_are_checked() -> None:
    with pytest.raises(ValueError):
        FuzzyMatchPolicy(min_overlap=0.0)
    with pytest.raises(ValueError):
        FuzzyMatchPolicy(min_chars=0)


class CountingYielder:
    def __init__(self) -> None:
        self.calls = 0

    async def maybe_yield(self) -> None:
        self.calls += 1


@pytest.mark.asyncio
async def test_prepare_yields_per_quote_and_filter_reuses_its_matches() -> None:
    items = [
        Evidence(quote="Alice met Bob near a stone bridge and spoke", page=1, chunk_id="c1"),
        Evidence(quote="burned the letters", page=5, chunk_id="c3"),
        Evidence(quote="Alice met Bob near a stone bridge and spoke", page=1, chunk_id="c1"),
    ]
    evidence_filter = EvidenceFilter(UNITS, 2)
    yielder = CountingYielder()

    assert await evidence_filter.prepare(items, yielder=yielder) == 2
    assert yielder.calls == 2
    assert await evidence_filter.prepare(items[:1], yielder=yielder) == 0

    kept = evidence_filter.filter(items)
    assert [item.chunk_id for item in kept] == ["c1"]
    assert (evidence_filter.accepted, evidence_filter.rejected) == (1, 1)
