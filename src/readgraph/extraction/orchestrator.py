"""Incremental, page-bounded knowledge extraction for one book at a time.

A run walks forward from the book's watermark (``last_analyzed_page``) in
batches of pages. Each batch is split into windows that are extracted
concurrently, merged into the book graph, enriched by the inference passes and
persisted together with the advanced watermark in a single transaction. A
batch with any failed window is never persisted and never advances the
watermark; its range is recorded as pending instead.
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, field, replace
import logging
import math
import time
from typing import Any, Awaitable, Callable, Sequence, TypeVar

from readgraph.extraction.client import ExtractionClient
from readgraph.extraction.config import ExtractionSettings
from readgraph.extraction.errors import ExtractionFailed, NotIndexed, SchemaInvalid
from readgraph.extraction.prompts import (
    PROMPT_VERSION,
    build_extraction_prompt,
    build_relationship_prompt,
    build_system_prompt,
    build_timeline_prompt,
)
from readgraph.extraction.schema import ExtractionResult, validate_extraction
from readgraph.extraction.validators import DEFAULT_POLICY, EvidenceFilter, FuzzyMatchPolicy
from readgraph.extraction.windows import ExtractionWindow, build_windows, cache_key, chunks_to_text_units
from readgraph.graph.merge import GraphMerger, extraction_evidence, new_id
from readgraph.graph.models import BookGraph, ExtractionState, GraphSnapshot, TextUnit
from readgraph.graph.names import is_living, unique_strings
from readgraph.graph.repository import GraphRepository
from readgraph.inference.coreference import CoreferenceResolver
from readgraph.inference.graph import infer_graph
from readgraph.inference.possessive import infer_possessive_relationships
from readgraph.runtime import (
    EVENT_COMPLETE,
    EVENT_ERROR,
    EVENT_PROGRESS,
    EVENT_START,
    EVENT_SUMMARY_UPDATED,
    BackendYieldController,
    EventDispatcher,
    ProgressEvent,
    YieldController,
)
from readgraph.search.repository import SearchRepository
from readgraph.semantic.providers import GenerationRequestError


LOGGER = logging.getLogger(__name__)

KNOWN_ENTITIES_LIMIT = 80
KNOWN_RELATION_NAMES_LIMIT = 120
TIMELINE_FALLBACK_MIN_UNITS = 4
FORCED_LOOKBACK_PAGES = 10

STATUS_COMPLETE = "complete"
STATUS_PARTIAL = "partial"
STATUS_UP_TO_DATE = "up_to_date"
STATUS_BUSY = "busy"
STATUS_NOT_INDEXED = "not_indexed"

ERROR_NOT_INDEXED = "not_indexed"
ERROR_EXTRACTION_FAILED = "extraction_failed"
ERROR_INCOMPLETE_BATCH = "incomplete_batch"

PROCESSING_BOOKS: set[str] = set()

T = TypeVar("T")


@dataclass(slots=True)
class RunStats:
    batches: int = 0
    windows: int = 0
    window_failures: int = 0
    splits: int = 0
    cache_hits: int = 0
    model_calls: int = 0
    evidence_rejected: int = 0
    entities_added: int = 0
    relationships_added: int = 0
    events_added: int = 0
    claims_added: int = 0
    inferred_entities: int = 0
    inferred_relationships: int = 0
    coref_mentions: int = 0
    communities: int = 0
    duration_ms: int = 0
    error_details: list[dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "batches": self.batches,
            "windows": self.windows,
            "window_failures": self.window_failures,
            "splits": self.splits,
            "cache_hits": self.cache_hits,
            "model_calls": self.model_calls,
            "evidence_rejected": self.evidence_rejected,
            "entities_added": self.entities_added,
            "relationships_added": self.relationships_added,
            "events_added": self.events_added,
            "claims_added": self.claims_added,
            "inferred_entities": self.inferred_entities,
            "inferred_relationships": self.inferred_relationships,
            "coref_mentions": self.coref_mentions,
            "communities": self.communities,
            "duration_ms": self.duration_ms,
            "error_details": self.error_details,
        }


@dataclass(slots=True)
class RunResult:
    book_id: str
    status: str
    last_analyzed_page: int
    target_page: int
    stats: RunStats = field(default_factory=RunStats)
    pending_from_page: int | None = None
    pending_to_page: int | None = None
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "book_id": self.book_id,
            "status": self.status,
            "last_analyzed_page": self.last_analyzed_page,
            "target_page": self.target_page,
            "pending_from_page": self.pending_from_page,
            "pending_to_page": self.pending_to_page,
            "last_error": self.last_error,
            "stats": self.stats.to_dict(),
        }


@dataclass(slots=True)
class _WindowOutcome:
    results: list[ExtractionResult] = field(default_factory=list)
    failures: int = 0


def mark_pending(state: ExtractionState, target_page: int) -> ExtractionState:
    """Extend the pending range up to ``target_page``; pages already analyzed are never pending."""

    if target_page <= state.last_analyzed_page:
        return state
    pending_from = state.pending_from_page if state.pending_from_page is not None else state.last_analyzed_page + 1
    pending_to = max(state.pending_to_page or 0, target_page)
    return replace(state, pending_from_page=pending_from, pending_to_page=pending_to)


def advance_watermark(state: ExtractionState, analyzed_page: int) -> ExtractionState:
    """Move the watermark forward (never back) and clear a pending range it has covered."""

    last_analyzed = max(state.last_analyzed_page, analyzed_page)
    pending_from, pending_to = state.pending_from_page, state.pending_to_page
    if pending_to is not None and last_analyzed >= pending_to:
        pending_from, pending_to = None, None
    return replace(
        state,
        last_analyzed_page=last_analyzed,
        pending_from_page=pending_from,
        pending_to_page=pending_to,
        last_error=None,
    )


async def _settle(*awaitables: Awaitable[T]) -> list[T]:
    """Await every task, then raise the first error any of them hit."""

    results = await asyncio.gather(*awaitables, return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return list(results)


def known_entity_names(graph: BookGraph, *, limit: int = KNOWN_ENTITIES_LIMIT) -> list[str]:
    by_recency = sorted(graph.entities.values(), key=lambda entity: -entity.last_seen_page)
    return unique_strings(entity.canonical_name for entity in by_recency)[:limit]


def known_living_names(graph: BookGraph, *, limit: int = KNOWN_RELATION_NAMES_LIMIT) -> list[str]:
    living = [entity for entity in sorted(graph.entities.values(), key=lambda e: -e.last_seen_page) if is_living(entity)]
    names = [entity.canonical_name for entity in living]
    names.extend(alias for entity in living for alias in entity.aliases)
    return unique_strings(names)[:limit]


class ExtractionOrchestrator:
    def __init__(
        self,
        *,
        search_repository: SearchRepository,
        graph_repository: GraphRepository,
        client: ExtractionClient,
        settings: ExtractionSettings | None = None,
        events: EventDispatcher | None = None,
        yielder: YieldController | None = None,
        genre_hints: Sequence[str] = (),
        processing_books: set[str] | None = None,
        clock: Callable[[], float] = time.monotonic,
        id_factory: Callable[[str], str] = new_id,
        evidence_policy: FuzzyMatchPolicy = DEFAULT_POLICY,
    ) -> None:
        self._search = search_repository
        self._graphs = graph_repository
        self._client = client
        self._settings = settings or ExtractionSettings()
        self._events = events or EventDispatcher()
        self._yielder = yielder or BackendYieldController()
        self._genre_hints = list(genre_hints)
        self._processing = PROCESSING_BOOKS if processing_books is None else processing_books
        self._clock = clock
        self._new_id = id_factory
        self._evidence_policy = evidence_policy
        self._system_prompt = build_system_prompt()

    @property
    def events(self) -> EventDispatcher:
        return self._events

    def is_processing(self, book_id: str) -> bool:
        return book_id in self._processing

    def snapshot(self, book_id: str, max_page: int) -> GraphSnapshot:
        return self._graphs.snapshot(book_id, max_page)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def update_to_page(self, book_id: str, current_page: int, *, force: bool = False) -> RunResult:
        if current_page < 0:
            raise ValueError("current_page must be >= 0")

        state = self._graphs.ensure_state(book_id)
        if not self._search.is_indexed(book_id):
            state = replace(mark_pending(state, current_page), last_error=ERROR_NOT_INDEXED)
            self._graphs.save_state(state)
            self._emit(EVENT_ERROR, book_id, message=ERROR_NOT_INDEXED)
            if force:
                raise NotIndexed(book_id=book_id)
            return self._result(state, STATUS_NOT_INDEXED, current_page, RunStats())

        if book_id in self._processing:
            LOGGER.info("Extraction already running for %s", book_id)
            return self._result(state, STATUS_BUSY, current_page, RunStats())

        self._processing.add(book_id)
        try:
            return await self._run(book_id, current_page, force=force, state=state)
        except Exception as exc:
            latest = self._graphs.get_state(book_id) or state
            failed = replace(mark_pending(latest, current_page), last_error=str(exc))
            self._graphs.save_state(failed)
            self._emit(EVENT_ERROR, book_id, message=str(exc))
            raise
        finally:
            self._processing.discard(book_id)

    async def rebuild_to_page(self, book_id: str, current_page: int) -> RunResult:
        """Drop everything extracted for the book and re-run forced updates up to ``current_page``."""

        if book_id in self._processing:
            state = self._graphs.ensure_state(book_id)
            return self._result(state, STATUS_BUSY, current_page, RunStats())

        self._graphs.clear_book(book_id)
        state = self._graphs.ensure_state(book_id)
        result = self._result(state, STATUS_UP_TO_DATE, current_page, RunStats())

        last_analyzed = state.last_analyzed_page
        max_iterations = max(1, math.ceil((current_page + 1) / self._settings.batch_pages) + 2)
        for _ in range(max_iterations):
            if last_analyzed >= current_page:
                break
            result = await self.update_to_page(book_id, current_page, force=True)
            if result.last_analyzed_page <= last_analyzed:
                break
            last_analyzed = result.last_analyzed_page
        return result

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def _run(self, book_id: str, current_page: int, *, force: bool, state: ExtractionState) -> RunResult:
        started = self._clock()
        stats = RunStats()
        target_page = max(current_page, state.pending_to_page or 0)

        if not force and target_page <= state.last_analyzed_page:
            return self._result(state, STATUS_UP_TO_DATE, target_page, stats)

        await asyncio.to_thread(self._client.ensure_available)

        reprocess = force and current_page <= state.last_analyzed_page
        base_page = max(-1, current_page - FORCED_LOOKBACK_PAGES) if reprocess else state.last_analyzed_page
        batch_pages = self._settings.batch_pages
        if force:
            max_batches = max(1, math.ceil(max(0, target_page - base_page) / batch_pages))
        else:
            max_batches = min(
                self._settings.max_batches_per_run,
                math.ceil((target_page - state.last_analyzed_page) / batch_pages),
            )

        self._emit(
            EVENT_START,
            book_id,
            current_page=current_page,
            target_page=target_page,
            last_analyzed_page=state.last_analyzed_page,
            force=force,
        )
        LOGGER.info(
            "Extracting %s from page %d to %d (force=%s, batches<=%d)",
            book_id,
            base_page + 1,
            target_page,
            force,
            max_batches,
        )

        graph = self._graphs.load_graph(book_id)
        analyzed = base_page
        stopped_early = False
        entities_before = len(graph.entities)

        for _ in range(max_batches):
            if analyzed >= target_page:
                break
            page_start = analyzed + 1
            page_end = min(target_page, page_start + batch_pages - 1)
            units = chunks_to_text_units(self._search.get_chunks(book_id, page_from=page_start, page_to=page_end))

            if not units:
                analyzed = page_end
                state = advance_watermark(state, analyzed)
                self._graphs.save_state(state)
                LOGGER.debug("No text units for %s pages %d-%d", book_id, page_start, page_end)
                continue

            stats.batches += 1
            windows = build_windows(
                units,
                max_chars=self._settings.window_max_chars,
                max_units=self._settings.window_max_units,
            )
            stats.windows += len(windows)
            outcome = await self._extract_windows(
                book_id,
                windows,
                page_start=page_start,
                page_end=page_end,
                known_entities=known_entity_names(graph),
                stats=stats,
            )

            if not outcome.results:
                if force:
                    raise ExtractionFailed(book_id=book_id, page_start=page_start, page_end=page_end)
                state = replace(mark_pending(state, page_end), last_error=ERROR_EXTRACTION_FAILED)
                self._graphs.save_state(state)
                stopped_early = True
                break

            if outcome.failures:
                LOGGER.warning(
                    "Batch %d-%d of %s incomplete: %d window(s) failed",
                    page_start,
                    page_end,
                    book_id,
                    outcome.failures,
                )
                state = replace(mark_pending(state, page_end), last_error=ERROR_INCOMPLETE_BATCH)
                self._graphs.save_state(state)
                stopped_early = True
                break

            extraction = outcome.results[0]
            for result in outcome.results[1:]:
                extraction = extraction.merged_with(result)
            extraction = await self._run_fallbacks(
                book_id,
                extraction,
                units=units,
                page_start=page_start,
                page_end=page_end,
                living_names=known_living_names(graph),
                stats=stats,
            )

            merger = GraphMerger(graph, id_factory=self._new_id)
            evidence_filter = EvidenceFilter(units, page_end, policy=self._evidence_policy)
            await evidence_filter.prepare(extraction_evidence(extraction), yielder=self._yielder)
            merge_stats = merger.merge(
                extraction,
                text_units=units,
                page_start=page_start,
                page_end=page_end,
                evidence_filter=evidence_filter,
            )
            stats.evidence_rejected += merge_stats.evidence_rejected
            stats.entities_added += merge_stats.entities_added
            stats.relationships_added += merge_stats.relationships_added
            stats.events_added += merge_stats.events_added
            stats.claims_added += merge_stats.claims_added

            await self._apply_inferences(merger, units, page_end=page_end, stats=stats)

            analyzed = page_end
            state = advance_watermark(state, analyzed)
            self._graphs.save_graph(graph, state)
            self._emit(
                EVENT_PROGRESS,
                book_id,
                page_start=page_start,
                page_end=page_end,
                last_analyzed_page=state.last_analyzed_page,
                windows=len(windows),
                entities=len(graph.entities),
                relationships=len(graph.relationships),
            )
            await asyncio.sleep(0)

            if not force and self._clock() - started > self._settings.max_run_seconds:
                LOGGER.info("Extraction run for %s paused at page %d: time budget spent", book_id, analyzed)
                break

        if analyzed < target_page and not stopped_early:
            state = mark_pending(state, target_page)
            self._graphs.save_state(state)

        stats.duration_ms = int((self._clock() - started) * 1000)
        status = STATUS_COMPLETE if analyzed >= target_page else STATUS_PARTIAL
        self._emit(EVENT_COMPLETE, book_id, status=status, last_analyzed_page=state.last_analyzed_page)
        if stats.entities_added or len(graph.entities) != entities_before:
            self._emit(EVENT_SUMMARY_UPDATED, book_id, max_page_included=state.last_analyzed_page)
        return self._result(state, status, target_page, stats)

    # ------------------------------------------------------------------
    # Windows
    # ------------------------------------------------------------------

    async def _extract_windows(
        self,
        book_id: str,
        windows: list[ExtractionWindow],
        *,
        page_start: int,
        page_end: int,
        known_entities: list[str],
        stats: RunStats,
    ) -> _WindowOutcome:
        """Extract windows in waves; a failed window is bisected and retried ahead of the rest."""

        outcome = _WindowOutcome()
        queue: deque[ExtractionWindow] = deque(windows)
        concurrency = max(1, self._settings.window_concurrency)
        split_index = 0

        while queue:
            wave = [queue.popleft() for _ in range(min(concurrency, len(queue)))]
            results = await _settle(
                *(
                    self._extract_window(
                        book_id,
                        window,
                        page_start=page_start,
                        page_end=page_end,
                        known_entities=known_entities,
                        stats=stats,
                    )
                    for window in wave
                )
            )

            retry: list[ExtractionWindow] = []
            for window, result in zip(wave, results):
                if result is not None:
                    outcome.results.append(result)
                    continue
                if len(window.units) <= 1:
                    outcome.failures += 1
                    stats.window_failures += 1
                    continue
                retry.extend(window.split(split_index))
                split_index += 1

            if retry:
                queue.extendleft(reversed(retry))
            if any(result is None for result in results) and concurrency > 1:
                LOGGER.debug("Dropping window concurrency to 1 for %s after a failure", book_id)
                concurrency = 1

        stats.splits += split_index
        return outcome

    async def _extract_window(
        self,
        book_id: str,
        window: ExtractionWindow,
        *,
        page_start: int,
        page_end: int,
        known_entities: list[str],
        stats: RunStats,
    ) -> ExtractionResult | None:
        key = cache_key(
            book_id=book_id,
            prompt_version=PROMPT_VERSION,
            page_start=page_start,
            page_end=page_end,
            window_tag=window.tag,
            units=window.units,
        )
        prompt = build_extraction_prompt(
            max_page_included=page_end,
            page_start=page_start,
            page_end=page_end,
            text_units=window.units,
            known_entities=known_entities,
            genre_hints=self._genre_hints,
        )
        return await self._cached_extract(book_id, key, prompt, window_tag=window.tag, stats=stats)

    async def _cached_extract(
        self,
        book_id: str,
        key: str,
        prompt: str,
        *,
        window_tag: str,
        stats: RunStats,
    ) -> ExtractionResult | None:
        cached = self._graphs.get_cached_extraction(key)
        if cached is not None:
            try:
                result = validate_extraction(cached, window_tag=window_tag)
            except SchemaInvalid as exc:
                LOGGER.warning("Cached extraction %s is invalid: %s", key, exc)
                stats.error_details.append({"window": window_tag, "stage": "cache", "error": str(exc)})
                return None
            stats.cache_hits += 1
            return result

        stats.model_calls += 1
        try:
            result = await asyncio.to_thread(self._client.extract, self._system_prompt, prompt, window_tag=window_tag)
        except (SchemaInvalid, GenerationRequestError) as exc:
            LOGGER.warning("Extraction window %s of %s failed: %s", window_tag, book_id, exc)
            stats.error_details.append({"window": window_tag, "stage": "extract", "error": str(exc)})
            return None

        self._graphs.put_cached_extraction(key, book_id=book_id, extraction=result.model_dump(mode="json"))
        return result

    async def _run_fallbacks(
        self,
        book_id: str,
        extraction: ExtractionResult,
        *,
        units: list[TextUnit],
        page_start: int,
        page_end: int,
        living_names: list[str],
        stats: RunStats,
    ) -> ExtractionResult:
        """Ask focused follow-up prompts when a complete batch yielded no relationships or no events."""

        requests: list[tuple[str, str]] = []
        if not extraction.relationships and len(living_names) >= 2:
            requests.append(
                (
                    "rel",
                    build_relationship_prompt(
                        max_page_included=page_end,
                        page_start=page_start,
                        page_end=page_end,
                        text_units=units,
                        known_entities=living_names,
                    ),
                )
            )
        if not extraction.events and len(units) >= TIMELINE_FALLBACK_MIN_UNITS:
            requests.append(
                (
                    "timeline",
                    build_timeline_prompt(
                        max_page_included=page_end,
                        page_start=page_start,
                        page_end=page_end,
                        text_units=units,
                    ),
                )
            )
        if not requests:
            return extraction

        results = await _settle(
            *(
                self._cached_extract(
                    book_id,
                    cache_key(
                        book_id=book_id,
                        prompt_version=PROMPT_VERSION,
                        page_start=page_start,
                        page_end=page_end,
                        window_tag=tag,
                        units=units,
                    ),
                    prompt,
                    window_tag=tag,
                    stats=stats,
                )
                for tag, prompt in requests
            )
        )
        for (tag, _), result in zip(requests, results):
            if result is None:
                continue
            if tag == "rel":
                extraction = extraction.merged_with(ExtractionResult(relationships=result.relationships))
            else:
                extraction = extraction.merged_with(ExtractionResult(events=result.events))
        return extraction

    # ------------------------------------------------------------------
    # Inference
    # ------------------------------------------------------------------

    async def _apply_inferences(
        self,
        merger: GraphMerger,
        units: list[TextUnit],
        *,
        page_end: int,
        stats: RunStats,
    ) -> None:
        graph = merger.graph
        possessive = await infer_possessive_relationships(
            merger,
            units,
            max_page=page_end,
            yielder=self._yielder,
            id_factory=self._new_id,
        )
        stats.inferred_entities += len(possessive.entities)

        mentions = await CoreferenceResolver().resolve(units, graph.entity_list(), yielder=self._yielder)
        unit_ids = {unit.id for unit in units}
        graph.mentions = [mention for mention in graph.mentions if mention.text_unit_id not in unit_ids]
        graph.mentions.extend(mentions)
        stats.coref_mentions += len(mentions)

        try:
            inference = await infer_graph(
                graph.entity_list(),
                list(graph.relationships.values()),
                book_id=graph.book_id,
                max_page=page_end,
                yielder=self._yielder,
                id_factory=self._new_id,
            )
        except Exception as exc:
            LOGGER.warning("Graph inference failed for %s: %s", graph.book_id, exc)
            return
        stats.inferred_relationships += merger.add_relationships(inference.relationships)
        stats.communities = inference.community_count

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _emit(self, event_type: str, book_id: str, **payload: Any) -> None:
        self._events.emit(ProgressEvent(type=event_type, book_id=book_id, payload=payload))

    @staticmethod
    def _result(state: ExtractionState, status: str, target_page: int, stats: RunStats) -> RunResult:
        return RunResult(
            book_id=state.book_id,
            status=status,
            last_analyzed_page=state.last_analyzed_page,
            target_page=target_page,
            stats=stats,
            pending_from_page=state.pending_from_page,
            pending_to_page=state.pending_to_page,
            last_error=state.last_error,
        )
