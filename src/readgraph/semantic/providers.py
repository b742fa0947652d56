"""Embedding and completion providers behind one strategy interface."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import time
from typing import Any, Callable, Protocol, Sequence

import httpx
import numpy as np

from readgraph.semantic.config import (
    PROVIDER_AI_GATEWAY,
    PROVIDER_OLLAMA,
    PROVIDER_OPENROUTER,
    PROVIDER_PROXY,
    ProviderSettings,
)


LOGGER = logging.getLogger(__name__)

_RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}
_AUTH_STATUS_CODES = {401, 403}
_CONNECTION_ERROR_NAMES = {"APIConnectionError", "APITimeoutError"}

EMBED_MAX_RETRIES = 3
EMBED_RETRY_BASE_SECONDS = 2.0
COMPLETE_MAX_RETRIES = 2
COMPLETE_RETRY_BASE_SECONDS = 1.0
HEALTH_TIMEOUT_SECONDS = 5.0


@dataclass(slots=True)
class EmbeddingRequestError(RuntimeError):
    """Domain error raised for failed embedding requests or invalid responses."""

    model: str
    stage: str
    message: str

    def __str__(self) -> str:
        return f"{self.message} (model={self.model}, stage={self.stage})"


@dataclass(slots=True)
class GenerationRequestError(RuntimeError):
    """Domain error raised for failed text generation requests."""

    model: str
    message: str

    def __str__(self) -> str:
        return f"{self.message} (model={self.model})"


class Provider(Protocol):
    provider_id: str
    embedding_model: str
    chat_model: str

    def embed(self, texts: Sequence[str]) -> np.ndarray:
        ...

    def embed_query(self, text: str) -> np.ndarray:
        ...

    def complete(self, system_prompt: str, user_prompt: str, *, json_mode: bool = False) -> str:
        ...

    def health_check(self) -> bool:
        ...

    def is_available(self) -> bool:
        ...


def _status_code(exc: BaseException) -> int | None:
    status_code = getattr(exc, "status_code", None)
    if status_code is None:
        response = getattr(exc, "response", None)
        status_code = getattr(response, "status_code", None)
    return status_code if isinstance(status_code, int) else None


def _is_connection_error(exc: BaseException) -> bool:
    if isinstance(exc, (httpx.TransportError, TimeoutError, ConnectionError)):
        return True
    return type(exc).__name__ in _CONNECTION_ERROR_NAMES


def _is_retryable(exc: Exception) -> bool:
    if _status_code(exc) in _RETRYABLE_STATUS_CODES:
        return True
    if _is_connection_error(exc):
        return True
    return type(exc).__name__ in {"RateLimitError", "InternalServerError"}


def is_unavailable_error(exc: BaseException) -> bool:
    """True when a provider failure means the service cannot be used at all (auth or unreachable)."""

    cause = exc.__cause__ if exc.__cause__ is not None else exc
    if _status_code(cause) in _AUTH_STATUS_CODES:
        return True
    if type(cause).__name__ == "AuthenticationError":
        return True
    return _is_connection_error(cause)


def _with_retries(
    request: Callable[[], Any],
    *,
    max_retries: int,
    retry_base_seconds: float,
    sleep: Callable[[float], None],
) -> tuple[Any, Exception | None, int]:
    attempts = max_retries + 1
    last_error: Exception | None = None

    for attempt in range(attempts):
        try:
            return request(), None, attempts
        except Exception as exc:
            last_error = exc
            should_retry = attempt < max_retries and _is_retryable(exc)
            if not should_retry:
                break
            delay = retry_base_seconds * (2**attempt)
            LOGGER.debug("Retrying provider request in %.2fs after %s", delay, exc)
            sleep(delay)

    return None, last_error, attempts


def _coerce_vectors(rows: Sequence[Any], *, expected_count: int, model: str, stage: str) -> np.ndarray:
    if len(rows) != expected_count:
        raise EmbeddingRequestError(
            model=model,
            stage=stage,
            message=f"Embeddings response count mismatch: expected {expected_count}, got {len(rows)}",
        )

    vectors: list[list[float]] = []
    dimension: int | None = None
    for embedding in rows:
        if not isinstance(embedding, (list, tuple)) or len(embedding) == 0:
            raise EmbeddingRequestError(model=model, stage=stage, message="Embedding row missing numeric vector")
        numeric = [float(value) for value in embedding]
        if dimension is None:
            dimension = len(numeric)
        elif len(numeric) != dimension:
            raise EmbeddingRequestError(
                model=model,
                stage=stage,
                message=f"Embedding dimension mismatch: expected {dimension}, got {len(numeric)}",
            )
        vectors.append(numeric)

    return np.asarray(vectors, dtype=np.float32)


def _clean_texts(texts: Sequence[str]) -> list[str]:
    payload = [text.strip() for text in texts if text and text.strip()]
    if not payload:
        raise ValueError("texts cannot be empty")
    return payload


def _build_openai_client(settings: ProviderSettings) -> Any:
    try:
        from openai import OpenAI
    except Exception as exc:  # pragma: no cover - environment-dependent
        raise EmbeddingRequestError(
            model=settings.embedding_model,
            stage="client_init",
            message=f"OpenAI SDK unavailable for {settings.provider} client: {exc}",
        ) from exc

    base_url = settings.base_url
    api_key = settings.api_key
    if settings.provider == PROVIDER_OLLAMA:
        base_url = f"{settings.base_url}/v1"
        api_key = api_key or "ollama"
    return OpenAI(api_key=api_key, base_url=base_url, timeout=settings.timeout_seconds, max_retries=0)


class OpenAICompatibleProvider:
    """Provider for any OpenAI-compatible surface: Ollama's /v1, AI Gateway, OpenRouter."""

    def __init__(
        self,
        settings: ProviderSettings,
        *,
        client: Any | None = None,
        http_client: httpx.Client | None = None,
        embed_max_retries: int = EMBED_MAX_RETRIES,
        embed_retry_base_seconds: float = EMBED_RETRY_BASE_SECONDS,
        complete_max_retries: int = COMPLETE_MAX_RETRIES,
        complete_retry_base_seconds: float = COMPLETE_RETRY_BASE_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if embed_max_retries < 0 or complete_max_retries < 0:
            raise ValueError("max_retries cannot be negative")
        if embed_retry_base_seconds < 0 or complete_retry_base_seconds < 0:
            raise ValueError("retry_base_seconds cannot be negative")

        self._settings = settings
        self._client = client
        self._http_client = http_client
        self._embed_max_retries = embed_max_retries
        self._embed_retry_base_seconds = embed_retry_base_seconds
        self._complete_max_retries = complete_max_retries
        self._complete_retry_base_seconds = complete_retry_base_seconds
        self._sleep = sleep

    @property
    def provider_id(self) -> str:
        return self._settings.provider

    @property
    def embedding_model(self) -> str:
        return self._settings.embedding_model

    @property
    def chat_model(self) -> str:
        return self._settings.chat_model

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = _build_openai_client(self._settings)
        return self._client

    def embed(self, texts: Sequence[str], *, stage: str = "chunks") -> np.ndarray:
        payload = _clean_texts(texts)
        model = self._settings.embedding_model
        response, error, attempts = _with_retries(
            lambda: self.client.embeddings.create(model=model, input=payload),
            max_retries=self._embed_max_retries,
            retry_base_seconds=self._embed_retry_base_seconds,
            sleep=self._sleep,
        )
        if error is not None:
            raise EmbeddingRequestError(
                model=model,
                stage=stage,
                message=f"Embedding request failed after {attempts} attempt(s): {error}",
            ) from error

        data = getattr(response, "data", None)
        if not isinstance(data, list):
            raise EmbeddingRequestError(model=model, stage=stage, message="Embeddings response missing list 'data'")

        rows: list[Any] = []
        for item in data:
            embedding = getattr(item, "embedding", None)
            if embedding is None and isinstance(item, dict):
                embedding = item.get("embedding")
            rows.append(embedding)
        return _coerce_vectors(rows, expected_count=len(payload), model=model, stage=stage)

    def embed_query(self, text: str) -> np.ndarray:
        query_text = text.strip()
        if not query_text:
            raise ValueError("query cannot be empty")
        return self.embed([query_text], stage="query")[0]

    def complete(self, system_prompt: str, user_prompt: str, *, json_mode: bool = False) -> str:
        if not user_prompt.strip():
            raise ValueError("user_prompt cannot be empty")

        model = self._settings.chat_model
        request: dict[str, Any] = {
            "model": model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": 0.1,
        }
        if json_mode:
            request["response_format"] = {"type": "json_object"}

        response, error, attempts = _with_retries(
            lambda: self.client.chat.completions.create(**request),
            max_retries=self._complete_max_retries,
            retry_base_seconds=self._complete_retry_base_seconds,
            sleep=self._sleep,
        )
        if error is not None:
            raise GenerationRequestError(
                model=model,
                message=f"Generation request failed after {attempts} attempt(s): {error}",
            ) from error

        choices = getattr(response, "choices", None)
        if not isinstance(choices, list) or not choices:
            raise GenerationRequestError(model=model, message="Generation response missing choices")

        message = getattr(choices[0], "message", None)
        content = getattr(message, "content", None) if message is not None else None
        if isinstance(content, list):
            content = "".join(str(part.get("text", "")) for part in content if isinstance(part, dict))

        text = str(content or "").strip()
        if not text:
            raise GenerationRequestError(model=model, message="Generation response returned empty text")
        return text

    def is_available(self) -> bool:
        if self._settings.requires_api_key:
            return bool(self._settings.api_key)
        return self._ollama_models() is not None

    def health_check(self) -> bool:
        if self._settings.provider == PROVIDER_OLLAMA:
            models = self._ollama_models()
            if models is None:
                return False
            wanted = self._settings.chat_model.split(":")[0]
            return any(wanted in name for name in models)

        try:
            self.embed_query("health check")
        except (EmbeddingRequestError, ValueError) as exc:
            LOGGER.warning("Health check failed for %s: %s", self._settings.provider, exc)
            return False
        return True

    def _ollama_models(self) -> list[str] | None:
        http_client = self._http_client or httpx.Client(timeout=HEALTH_TIMEOUT_SECONDS)
        try:
            response = http_client.get(f"{self._settings.base_url}/api/tags")
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            LOGGER.warning("Ollama is not reachable at %s: %s", self._settings.base_url, exc)
            return None
        finally:
            if self._http_client is None:
                http_client.close()

        models = payload.get("models", []) if isinstance(payload, dict) else []
        return [str(item.get("name", "")) for item in models if isinstance(item, dict)]


class ProxyProvider:
    """Routes embedding and completion calls through an HTTP proxy that holds the provider key."""

    provider_id = PROVIDER_PROXY

    def __init__(
        self,
        settings: ProviderSettings,
        *,
        http_client: httpx.Client | None = None,
        embed_max_retries: int = EMBED_MAX_RETRIES,
        embed_retry_base_seconds: float = EMBED_RETRY_BASE_SECONDS,
        complete_max_retries: int = COMPLETE_MAX_RETRIES,
        complete_retry_base_seconds: float = COMPLETE_RETRY_BASE_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._settings = settings
        self._http_client = http_client or httpx.Client(
            base_url=settings.base_url,
            timeout=settings.timeout_seconds,
        )
        self._embed_max_retries = embed_max_retries
        self._embed_retry_base_seconds = embed_retry_base_seconds
        self._complete_max_retries = complete_max_retries
        self._complete_retry_base_seconds = complete_retry_base_seconds
        self._sleep = sleep

    @property
    def embedding_model(self) -> str:
        return self._settings.embedding_model

    @property
    def chat_model(self) -> str:
        return self._settings.chat_model

    def close(self) -> None:
        self._http_client.close()

    def _post(self, path: str, payload: dict[str, Any]) -> Any:
        response = self._http_client.post(path, json=payload)
        response.raise_for_status()
        return response.json()

    def embed(self, texts: Sequence[str], *, stage: str = "chunks") -> np.ndarray:
        payload = _clean_texts(texts)
        model = self._settings.embedding_model
        body = {"texts": payload, "single": len(payload) == 1, "model": model}
        data, error, attempts = _with_retries(
            lambda: self._post("/embed", body),
            max_retries=self._embed_max_retries,
            retry_base_seconds=self._embed_retry_base_seconds,
            sleep=self._sleep,
        )
        if error is not None:
            raise EmbeddingRequestError(
                model=model,
                stage=stage,
                message=f"Embedding request failed after {attempts} attempt(s): {error}",
            ) from error
        if not isinstance(data, dict):
            raise EmbeddingRequestError(model=model, stage=stage, message="Proxy embedding response is not an object")

        if len(payload) == 1 and data.get("embedding") is not None:
            rows = [data["embedding"]]
        else:
            rows = data.get("embeddings")
        if not isinstance(rows, list):
            raise EmbeddingRequestError(model=model, stage=stage, message="Proxy embedding response missing 'embeddings'")
        return _coerce_vectors(rows, expected_count=len(payload), model=model, stage=stage)

    def embed_query(self, text: str) -> np.ndarray:
        query_text = text.strip()
        if not query_text:
            raise ValueError("query cannot be empty")
        return self.embed([query_text], stage="query")[0]

    def complete(self, system_prompt: str, user_prompt: str, *, json_mode: bool = False) -> str:
        if not user_prompt.strip():
            raise ValueError("user_prompt cannot be empty")

        model = self._settings.chat_model
        body = {"system": system_prompt, "prompt": user_prompt, "model": model, "json": json_mode}
        data, error, attempts = _with_retries(
            lambda: self._post("/complete", body),
            max_retries=self._complete_max_retries,
            retry_base_seconds=self._complete_retry_base_seconds,
            sleep=self._sleep,
        )
        if error is not None:
            raise GenerationRequestError(
                model=model,
                message=f"Generation request failed after {attempts} attempt(s): {error}",
            ) from error

        text = str(data.get("text", "") if isinstance(data, dict) else "").strip()
        if not text:
            raise GenerationRequestError(model=model, message="Generation response returned empty text")
        return text

    def is_available(self) -> bool:
        return True

    def health_check(self) -> bool:
        try:
            response = self._http_client.get("/health", timeout=HEALTH_TIMEOUT_SECONDS)
        except httpx.HTTPError as exc:
            LOGGER.warning("Proxy is not reachable at %s: %s", self._settings.base_url, exc)
            return False
        return response.status_code == 200


def build_provider(settings: ProviderSettings, **kwargs: Any) -> Provider:
    """Pick the provider implementation for ``settings.provider``."""

    if settings.provider in {PROVIDER_OLLAMA, PROVIDER_AI_GATEWAY, PROVIDER_OPENROUTER}:
        if settings.requires_api_key and not settings.api_key:
            raise ValueError(f"API key required for {settings.provider}")
        return OpenAICompatibleProvider(settings, **kwargs)
    if settings.provider == PROVIDER_PROXY:
        return ProxyProvider(settings, **kwargs)
    raise ValueError(f"Unknown provider: {settings.provider}")
