"""Cooperative yielding for long loops and fire-and-forget progress events."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
import time
from typing import Any, Callable, Protocol


LOGGER = logging.getLogger(__name__)

YIELD_SLICE_SECONDS = 0.012

EVENT_START = "start"
EVENT_PROGRESS = "progress"
EVENT_COMPLETE = "complete"
EVENT_ERROR = "error"
EVENT_SUMMARY_UPDATED = "summary_updated"


class YieldController(Protocol):
    async def maybe_yield(self) -> None:
        ...


class BackendYieldController:
    """Never yields; used for batch jobs where nothing else shares the loop."""

    async def maybe_yield(self) -> None:
        return None


class AsyncYieldController:
    """Hands control back to the event loop once a time slice is used up."""

    def __init__(
        self,
        *,
        slice_seconds: float = YIELD_SLICE_SECONDS,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        if slice_seconds <= 0:
            raise ValueError("slice_seconds must be positive")
        self._slice_seconds = slice_seconds
        self._clock = clock
        self._slice_started = clock()
        self.yields = 0

    async def maybe_yield(self) -> None:
        if self._clock() - self._slice_started < self._slice_seconds:
            return
        await asyncio.sleep(0)
        self.yields += 1
        self._slice_started = self._clock()


@dataclass(slots=True)
class ProgressEvent:
    type: str
    book_id: str
    payload: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "book_id": self.book_id, **self.payload}


Listener = Callable[[ProgressEvent], None]


class EventDispatcher:
    def __init__(self) -> None:
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def emit(self, event: ProgressEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                LOGGER.exception("Progress listener failed for %s event of %s", event.type, event.book_id)
