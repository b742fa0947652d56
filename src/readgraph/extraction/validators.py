"""Evidence grounding: keep only quotes that can be found in the source text."""

from __future__ import annotations

from dataclasses import dataclass, replace
import logging
import re
from typing import Iterable, Sequence

from readgraph.graph.models import Evidence, TextUnit
from readgraph.runtime import BackendYieldController, YieldController


LOGGER = logging.getLogger(__name__)

_LINE_WRAP_HYPHEN_RE = re.compile(r"-\s*\n\s*")
_PUNCTUATION_RE = re.compile(r"[^\w\s]|_")
_WHITESPACE_RE = re.compile(r"\s+")


@dataclass(frozen=True, slots=True)
class FuzzyMatchPolicy:
    """Thresholds for accepting a quote that is not an exact substring."""

    min_chars: int = 24
    min_tokens: int = 4
    min_overlap: float = 0.70

    def __post_init__(self) -> None:
        if self.min_chars < 1 or self.min_tokens < 1:
            raise ValueError("min_chars and min_tokens must be positive")
        if not 0.0 < self.min_overlap <= 1.0:
            raise ValueError("min_overlap must be in (0, 1]")


DEFAULT_POLICY = FuzzyMatchPolicy()


def normalize_evidence_text(text: str) -> str:
    """Lowercase, join line-wrapped words, drop punctuation, collapse whitespace."""

    value = _LINE_WRAP_HYPHEN_RE.sub("", text.lower())
    value = _PUNCTUATION_RE.sub("", value)
    return _WHITESPACE_RE.sub(" ", value).strip()


@dataclass(slots=True)
class _PreparedUnit:
    unit: TextUnit
    text: str
    tokens: frozenset[str]


class EvidenceFilter:
    """Validates evidence against a fixed set of text units up to ``max_page``."""

    def __init__(
        self,
        text_units: Sequence[TextUnit],
        max_page: int,
        *,
        policy: FuzzyMatchPolicy = DEFAULT_POLICY,
    ) -> None:
        self._policy = policy
        self._max_page = max_page
        self._units: list[_PreparedUnit] = []
        for unit in text_units:
            if unit.page > max_page:
                continue
            normalized = normalize_evidence_text(unit.text)
            self._units.append(_PreparedUnit(unit=unit, text=normalized, tokens=frozenset(normalized.split())))
        self._by_id = {prepared.unit.id: prepared for prepared in self._units}
        self._located: dict[tuple[str, str], TextUnit | None] = {}
        self.accepted = 0
        self.rejected = 0

    async def prepare(self, evidence: Iterable[Evidence], *, yielder: YieldController | None = None) -> int:
        """Locate quotes ahead of ``filter``, yielding between items; returns how many were newly located."""

        yielder = yielder or BackendYieldController()
        located = 0
        for item in evidence:
            key = (item.quote, item.chunk_id)
            if key in self._located:
                continue
            self._located[key] = self._locate(item.quote, preferred_id=item.chunk_id)
            located += 1
            await yielder.maybe_yield()
        return located

    def filter(self, evidence: Sequence[Evidence]) -> list[Evidence]:
        kept: list[Evidence] = []
        seen: set[tuple[str, str]] = set()
        for item in evidence:
            matched = self._match(item)
            if matched is None:
                self.rejected += 1
                LOGGER.debug("Rejected evidence quote %r (page %s)", item.quote[:80], item.page)
                continue
            key = (normalize_evidence_text(matched.quote), matched.chunk_id)
            if key in seen:
                continue
            seen.add(key)
            self.accepted += 1
            kept.append(matched)
        return kept

    def _match(self, item: Evidence) -> Evidence | None:
        key = (item.quote, item.chunk_id)
        if key not in self._located:
            self._located[key] = self._locate(item.quote, preferred_id=item.chunk_id)
        unit = self._located[key]
        if unit is None:
            return None
        return replace(item, chunk_id=unit.id, page=unit.page)

    def _locate(self, raw_quote: str, *, preferred_id: str) -> TextUnit | None:
        quote = normalize_evidence_text(raw_quote)
        if not quote:
            return None
        unit = self._exact_unit(quote, preferred_id=preferred_id)
        if unit is None:
            unit = self._fuzzy_unit(quote)
        return unit

    def _exact_unit(self, quote: str, *, preferred_id: str) -> TextUnit | None:
        preferred = self._by_id.get(preferred_id)
        if preferred is not None and quote in preferred.text:
            return preferred.unit
        for prepared in self._units:
            if quote in prepared.text:
                return prepared.unit
        return None

    def _fuzzy_unit(self, quote: str) -> TextUnit | None:
        tokens = quote.split()
        if len(quote) < self._policy.min_chars or len(tokens) < self._policy.min_tokens:
            return None

        def overlap(pool: frozenset[str]) -> float:
            return sum(1 for token in tokens if token in pool) / len(tokens)

        for index, prepared in enumerate(self._units):
            if overlap(prepared.tokens) >= self._policy.min_overlap:
                return prepared.unit
            if index + 1 < len(self._units):
                following = self._units[index + 1]
                if following.unit.page == prepared.unit.page:
                    if overlap(prepared.tokens | following.tokens) >= self._policy.min_overlap:
                        return prepared.unit
        return None


def filter_evidence(
    evidence: Sequence[Evidence],
    text_units: Sequence[TextUnit],
    max_page: int,
    *,
    policy: FuzzyMatchPolicy = DEFAULT_POLICY,
) -> list[Evidence]:
    """Drop evidence whose quote is not grounded in a unit at or before ``max_page``."""

    if not evidence:
        return []
    return EvidenceFilter(text_units, max_page, policy=policy).filter(evidence)
