from __future__ import annotations

from dataclasses import dataclass
from types import SimpleNamespace

import httpx
import numpy as np
import pytest

from readgraph.semantic.config import ProviderSettings
from readgraph.semantic.providers import (
    EmbeddingRequestError,
    GenerationRequestError,
    OpenAICompatibleProvider,
    ProxyProvider,
    build_provider,
    is_unavailable_error,
)


def _response(vectors: list[list[float]]) -> SimpleNamespace:
    return SimpleNamespace(data=[SimpleNamespace(embedding=vector) for vector in vectors])


def _completion(text: str) -> SimpleNamespace:
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=text))])


@dataclass
class _HttpError(Exception):
    status_code: int
    detail: str

    def __str__(self) -> str:
        return self.detail


class _Scripted:
    def __init__(self, responses: list[object]) -> None:
        self._responses = list(responses)
        self.calls: list[dict] = []

    def create(self, **kwargs) -> object:
        self.calls.append(kwargs)
        if not self._responses:
            raise RuntimeError("No fake response configured")
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class _FakeClient:
    def __init__(self, *, embeddings: list[object] = (), completions: list[object] = ()) -> None:
        self.embeddings = _Scripted(list(embeddings))
        self.chat = SimpleNamespace(completions=_Scripted(list(completions)))


def _settings(provider: str = "openrouter", base_url: str = "https://openrouter.ai/api/v1") -> ProviderSettings:
    return ProviderSettings(
        provider=provider,
        base_url=base_url,
        embedding_model="openai/text-embedding-3-small",
        chat_model="openai/gpt-5-nano",
        api_key="sk-or-v1-test",
    )


def test_embed_returns_float32_vectors_on_success() -> None:
    client = _FakeClient(embeddings=[_response([[0.1, 0.2], [0.3, 0.4]])])
    provider = OpenAICompatibleProvider(_settings(), client=client)

    vectors = provider.embed(["alpha", " ", "beta"])

    assert vectors.dtype == np.float32
    assert vectors.shape == (2, 2)
    assert client.embeddings.calls == [{"model": "openai/text-embedding-3-small", "input": ["alpha", "beta"]}]


def test_embed_retries_on_transient_error_then_succeeds() -> None:
    delays: list[float] = []
    client = _FakeClient(embeddings=[_HttpError(status_code=429, detail="rate limited"), _response([[1.0, 0.0, 0.0]])])
    provider = OpenAICompatibleProvider(
        _settings(),
        client=client,
        embed_max_retries=2,
        embed_retry_base_seconds=0.5,
        sleep=delays.append,
    )

    vector = provider.embed_query("lantern")

    assert vector.shape == (3,)
    assert delays == [0.5]


def test_embed_raises_on_terminal_failures() -> None:
    delays: list[float] = []
    client = _FakeClient(embeddings=[_HttpError(status_code=500, detail=f"fail {index}") for index in range(3)])
    provider = OpenAICompatibleProvider(
        _settings(),
        client=client,
        embed_max_retries=2,
        embed_retry_base_seconds=0.1,
        sleep=delays.append,
    )

    with pytest.raises(EmbeddingRequestError, match="openai/text-embedding-3-small"):
        provider.embed(["the mill"])

    assert delays == [0.1, 0.2]


def test_embed_rejects_dimension_mismatch() -> None:
    client = _FakeClient(embeddings=[_response([[0.1, 0.2], [0.3]])])

    with pytest.raises(EmbeddingRequestError, match="dimension mismatch"):
        OpenAICompatibleProvider(_settings(), client=client).embed(["a", "b"])


def test_complete_requests_json_mode_and_returns_text() -> None:
    client = _FakeClient(completions=[_completion('  {"entities": []} ')])
    provider = OpenAICompatibleProvider(_settings(), client=client)

    text = provider.complete("system", "user", json_mode=True)

    assert text == '{"entities": []}'
    (call,) = client.chat.completions.calls
    assert call["response_format"] == {"type": "json_object"}
    assert call["messages"][0] == {"role": "system", "content": "system"}


def test_complete_auth_failure_is_reported_as_unavailable() -> None:
    client = _FakeClient(completions=[_HttpError(status_code=401, detail="bad key")])
    provider = OpenAICompatibleProvider(_settings(), client=client, complete_max_retries=2, sleep=lambda _: None)

    with pytest.raises(GenerationRequestError) as exc_info:
        provider.complete("system", "user")

    assert is_unavailable_error(exc_info.value)
    assert len(client.chat.completions.calls) == 1


def test_empty_completion_is_an_error_but_not_unavailable() -> None:
    provider = OpenAICompatibleProvider(_settings(), client=_FakeClient(completions=[_completion("")]))

    with pytest.raises(GenerationRequestError) as exc_info:
        provider.complete("system", "user")

    assert not is_unavailable_error(exc_info.value)


def test_ollama_availability_checks_tags_endpoint() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/tags"
        return httpx.Response(200, json={"models": [{"name": "llama3.1:latest"}]})

    settings = ProviderSettings(
        provider="ollama",
        base_url="http://ollama.test",
        embedding_model="nomic-embed-text",
        chat_model="llama3.1",
    )
    provider = OpenAICompatibleProvider(settings, http_client=httpx.Client(transport=httpx.MockTransport(handler)))

    assert provider.is_available()
    assert provider.health_check()


def test_proxy_provider_posts_to_embed_and_complete() -> None:
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.path)
        if request.url.path == "/embed":
            return httpx.Response(200, json={"embedding": [0.5, 0.5]})
        return httpx.Response(200, json={"text": "ok"})

    settings = _settings(provider="proxy", base_url="http://proxy.test")
    http_client = httpx.Client(base_url="http://proxy.test", transport=httpx.MockTransport(handler))
    provider = build_provider(settings, http_client=http_client)

    assert isinstance(provider, ProxyProvider)
    assert provider.embed_query("mill").tolist() == [0.5, 0.5]
    assert provider.complete("system", "user") == "ok"
    assert seen == ["/embed", "/complete"]


def test_build_provider_requires_key_for_hosted_providers() -> None:
    settings = ProviderSettings(
        provider="ai-gateway",
        base_url="https://ai-gateway.vercel.sh/v1",
        embedding_model="e",
        chat_model="c",
    )

    with pytest.raises(ValueError, match="API key"):
        build_provider(settings)
