"""Recency-based pronoun resolution used for attribution, never as evidence."""

from __future__ import annotations

import re
import unicodedata
from typing import Sequence

from readgraph.graph.models import CorefMention, Entity, TextUnit
from readgraph.runtime import BackendYieldController, YieldController


PRONOUNS = ("he", "she", "they", "him", "her", "them", "his", "their")
PLURAL_PRONOUNS = frozenset({"they", "them", "their"})
MAX_RECENT_ENTITIES = 5
PLURAL_PAGE_WINDOW = 3
COREF_CONFIDENCE = 0.6

_PRONOUN_RE = re.compile(r"\b(" + "|".join(PRONOUNS) + r")\b", re.IGNORECASE)
_NON_WORD_RE = re.compile(r"[^\w\s]")


def normalize_surface(value: str) -> str:
    return _NON_WORD_RE.sub("", unicodedata.normalize("NFKC", value).lower()).strip()


class CoreferenceResolver:
    """Walks text units in reading order keeping the last few mentioned entities.

    Plural pronouns prefer an organization or anything mentioned within the
    last three pages; singular pronouns prefer a character. When no candidate
    qualifies, the most recently mentioned entity is used.
    """

    def __init__(self, *, max_recent: int = MAX_RECENT_ENTITIES) -> None:
        if max_recent < 1:
            raise ValueError("max_recent must be >= 1")
        self._max_recent = max_recent
        self._recent: list[tuple[Entity, int]] = []

    @property
    def recent(self) -> list[Entity]:
        return [entity for entity, _ in self._recent]

    async def resolve(
        self,
        text_units: Sequence[TextUnit],
        entities: Sequence[Entity],
        *,
        yielder: YieldController | None = None,
    ) -> list[CorefMention]:
        yielder = yielder or BackendYieldController()
        self._recent = []
        patterns = self._surface_patterns(entities)
        mentions: list[CorefMention] = []

        for unit in text_units:
            normalized_text = normalize_surface(unit.text)
            found: list[tuple[int, Entity]] = []
            for entity, pattern in patterns:
                match = pattern.search(normalized_text)
                if match is not None:
                    found.append((match.start(), entity))
            for _, entity in sorted(found, key=lambda item: item[0]):
                self._remember(entity, unit.page)

            for match in _PRONOUN_RE.finditer(unit.text):
                pronoun = match.group(1).lower()
                resolved = self._resolve_pronoun(pronoun, unit.page)
                if resolved is None:
                    continue
                mentions.append(
                    CorefMention(
                        mention=pronoun,
                        resolved_entity_id=resolved.id,
                        text_unit_id=unit.id,
                        confidence=COREF_CONFIDENCE,
                        page=unit.page,
                        offset_start=match.start(),
                        offset_end=match.end(),
                    )
                )
            await yielder.maybe_yield()

        return mentions

    def _surface_patterns(self, entities: Sequence[Entity]) -> list[tuple[Entity, re.Pattern[str]]]:
        patterns = []
        for entity in entities:
            variants = sorted(
                {normalize_surface(value) for value in (entity.canonical_name, *entity.aliases)} - {""},
                key=len,
                reverse=True,
            )
            if variants:
                alternation = "|".join(re.escape(variant) for variant in variants)
                patterns.append((entity, re.compile(rf"\b(?:{alternation})\b")))
        return patterns

    def _remember(self, entity: Entity, page: int) -> None:
        self._recent = [item for item in self._recent if item[0].id != entity.id]
        self._recent.insert(0, (entity, page))
        del self._recent[self._max_recent :]

    def _resolve_pronoun(self, pronoun: str, page: int) -> Entity | None:
        if not self._recent:
            return None
        if pronoun in PLURAL_PRONOUNS:
            candidates = [
                entity
                for entity, seen_page in self._recent
                if entity.type == "organization" or seen_page >= page - PLURAL_PAGE_WINDOW
            ]
        else:
            candidates = [entity for entity, _ in self._recent if entity.type == "character"]
        return candidates[0] if candidates else self._recent[0][0]
