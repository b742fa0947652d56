"""Extraction capability: one prompt in, one strictly validated extraction out."""

from __future__ import annotations

import logging
import random
import time
from typing import Callable

from readgraph.extraction.errors import ExtractionUnavailable, SchemaInvalid
from readgraph.extraction.schema import ExtractionResult, parse_extraction
from readgraph.semantic.providers import GenerationRequestError, Provider, is_unavailable_error


LOGGER = logging.getLogger(__name__)

MAX_ATTEMPTS = 3
SCHEMA_RETRY_SECONDS = 0.4
ERROR_RETRY_SECONDS = 0.6
MAX_JITTER_SECONDS = 0.2


class ExtractionClient:
    """Wraps a completion provider with JSON parsing, schema validation and retries.

    Schema failures and request failures are retried separately, each with a
    linear backoff plus jitter. Authentication and connection failures are not
    retried: they surface as :class:`ExtractionUnavailable` so the caller can
    abort the whole run instead of bisecting windows.
    """

    def __init__(
        self,
        provider: Provider,
        *,
        max_attempts: int = MAX_ATTEMPTS,
        sleep: Callable[[float], None] = time.sleep,
        jitter: Callable[[], float] | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._provider = provider
        self._max_attempts = max_attempts
        self._sleep = sleep
        self._jitter = jitter or (lambda: random.uniform(0.0, MAX_JITTER_SECONDS))

    @property
    def provider_id(self) -> str:
        return self._provider.provider_id

    def ensure_available(self) -> None:
        if not self._provider.is_available():
            raise ExtractionUnavailable(
                provider=self._provider.provider_id,
                message="Extraction provider is not available",
            )

    def extract(self, system_prompt: str, user_prompt: str, *, window_tag: str = "") -> ExtractionResult:
        last_error: Exception = SchemaInvalid(window_tag=window_tag, message="No extraction attempt was made")
        for attempt in range(1, self._max_attempts + 1):
            try:
                raw = self._provider.complete(system_prompt, user_prompt, json_mode=True)
                return parse_extraction(raw, window_tag=window_tag)
            except SchemaInvalid as exc:
                last_error = exc
                LOGGER.debug("Window %s returned invalid output on attempt %d: %s", window_tag, attempt, exc)
                delay = SCHEMA_RETRY_SECONDS * attempt
            except GenerationRequestError as exc:
                if is_unavailable_error(exc):
                    raise ExtractionUnavailable(provider=self._provider.provider_id, message=str(exc)) from exc
                last_error = exc
                LOGGER.debug("Window %s request failed on attempt %d: %s", window_tag, attempt, exc)
                delay = ERROR_RETRY_SECONDS * attempt

            if attempt < self._max_attempts:
                self._sleep(delay + self._jitter())

        raise last_error
