"""Prompt builders for page-bounded knowledge extraction.

Bump ``PROMPT_VERSION`` whenever the wording or the output shape changes: it is
part of every extraction cache key, so a bump invalidates cached windows.
"""

from __future__ import annotations

import json
from typing import Sequence

from readgraph.graph.models import TextUnit


PROMPT_VERSION = 3

OUTPUT_SHAPE = (
    '{"entities":[{"name":"","type":"character|location|organization|artifact|term|event|concept",'
    '"aliases":[],"description":"","first_seen_page":0,"last_seen_page":0,'
    '"facts":[{"key":"","value":"","evidence":[{"quote":"","page":0,"chunk_id":""}]}]}],'
    '"relationships":[{"source":"","target":"","type":"","description":"","strength":0,'
    '"evidence":[{"quote":"","page":0,"chunk_id":""}]}],'
    '"events":[{"page":0,"summary":"","importance":5,"involved_entities":[],'
    '"arc":null,"tone":null,"emotions":[],"evidence":[{"quote":"","page":0,"chunk_id":""}]}],'
    '"claims":[{"type":"","subject":null,"object":null,"description":"","status":"SUSPECTED",'
    '"evidence":[{"quote":"","page":0,"chunk_id":""}]}]}'
)

_LIVING_ONLY = (
    "- Relationships connect living people or human characters only "
    "(no animals, creatures, robots, vehicles or organizations)."
)


def build_system_prompt() -> str:
    return " ".join(
        [
            "You are a careful literary analyst.",
            "Work only from the supplied text units and never from outside knowledge.",
            "Never infer anything beyond the given page range.",
            "Answer with one strict JSON object: no markdown, no code fences, double-quoted keys and strings, no trailing commas.",
            "Extract named entities or well-formed noun phrases only, never pronouns or verb phrases.",
            "Never create entities for single-word pronouns such as I, me, we, you, he, she or they.",
            "Entity names never contain underscores.",
            "Every quote is an exact, contiguous span copied from a text unit, paired with that unit's chunk_id and page.",
            "Omit any item you cannot support with a direct quote.",
            "Include tone, emotions or arc only when the text states them.",
        ]
    )


def format_text_units(text_units: Sequence[TextUnit]) -> str:
    return "\n".join(
        json.dumps(
            {
                "chunk_id": unit.id,
                "page": unit.page,
                "chapter_title": unit.chapter_title,
                "text": unit.text,
            },
            ensure_ascii=False,
        )
        for unit in text_units
    )


def _input_block(
    *,
    max_page_included: int,
    page_start: int,
    page_end: int,
    text_units: Sequence[TextUnit],
    known_entities: Sequence[str] | None = None,
) -> list[str]:
    lines = [
        "INPUT:",
        f"- max_page_included: {max_page_included}",
        f"- page_range: {page_start}-{page_end}",
        f"- text_units:\n{format_text_units(text_units)}",
    ]
    if known_entities is not None:
        lines.append(f"- known_entities: {json.dumps(list(known_entities), ensure_ascii=False)}")
    return lines


def build_extraction_prompt(
    *,
    max_page_included: int,
    page_start: int,
    page_end: int,
    text_units: Sequence[TextUnit],
    known_entities: Sequence[str],
    genre_hints: Sequence[str] = (),
) -> str:
    lines = [
        "TASK: Extract entities, relationships, events and claims from the bounded text units.",
        "RULES:",
        "- Use only the text below.",
        "- Stay within max_page_included.",
        "- Every fact, relationship, event and claim carries evidence (quote, page, chunk_id).",
        "- Mark inferred facts or relationships with inferred=true.",
        "- A relationship needs a direct quote that states it.",
        _LIVING_ONLY,
        "- An event may span pages; set its page to the last page it covers.",
        "- Claims capture stated assertions, arguments or conclusions.",
        "- arc is one of setup, rising_action, climax, fallout, and only when explicit.",
        "- Descriptions and summaries are 1-4 complete sentences in plain language, without quotes, lists or underscores.",
        "- Reuse known_entities names when the text refers to them.",
        "- Return empty arrays when nothing is found.",
    ]
    if genre_hints:
        lines.append("")
        lines.append("FOCUS:")
        lines.extend(f"- {hint}" for hint in genre_hints)

    lines.append("")
    lines.extend(
        _input_block(
            max_page_included=max_page_included,
            page_start=page_start,
            page_end=page_end,
            text_units=text_units,
            known_entities=known_entities,
        )
    )
    lines.extend(
        [
            "",
            "OUTPUT:",
            f"One JSON object shaped like {OUTPUT_SHAPE}",
            "Always include the four keys entities, relationships, events and claims.",
        ]
    )
    return "\n".join(lines)


def build_relationship_prompt(
    *,
    max_page_included: int,
    page_start: int,
    page_end: int,
    text_units: Sequence[TextUnit],
    known_entities: Sequence[str],
) -> str:
    lines = [
        "TASK: Extract relationships among the known entities from the bounded text units.",
        "RULES:",
        "- Use only the text below.",
        "- Do not create new entities; source and target must come from known_entities.",
        "- Every relationship carries evidence (quote, page, chunk_id) that states it directly.",
        _LIVING_ONLY,
        "- Descriptions are 1-4 complete sentences in plain language.",
        "- Return empty arrays when nothing is found.",
    ]
    lines.extend(
        _input_block(
            max_page_included=max_page_included,
            page_start=page_start,
            page_end=page_end,
            text_units=text_units,
            known_entities=known_entities,
        )
    )
    lines.extend(["OUTPUT:", f"One JSON object shaped like {OUTPUT_SHAPE} with only relationships populated."])
    return "\n".join(lines)


def build_timeline_prompt(
    *,
    max_page_included: int,
    page_start: int,
    page_end: int,
    text_units: Sequence[TextUnit],
) -> str:
    lines = [
        "TASK: Extract one timeline event covering the bounded text units.",
        "RULES:",
        "- Use only the text below.",
        "- Return exactly one event spanning the whole page_range; set its page to the last page of the range.",
        "- Include at least two evidence quotes from different pages when available.",
        "- The summary is a spoiler-safe plot recap of 2-4 complete sentences in plain language.",
        "- arc, tone and emotions only when explicit.",
    ]
    lines.extend(
        _input_block(
            max_page_included=max_page_included,
            page_start=page_start,
            page_end=page_end,
            text_units=text_units,
        )
    )
    lines.extend(["OUTPUT:", f"One JSON object shaped like {OUTPUT_SHAPE} with only events populated."])
    return "\n".join(lines)
