"""Runtime configuration for embedding and completion providers."""

from __future__ import annotations

from dataclasses import dataclass
import os
from typing import Mapping


PROVIDER_OLLAMA = "ollama"
PROVIDER_AI_GATEWAY = "ai-gateway"
PROVIDER_OPENROUTER = "openrouter"
PROVIDER_PROXY = "proxy"
SUPPORTED_PROVIDERS = (PROVIDER_OLLAMA, PROVIDER_AI_GATEWAY, PROVIDER_OPENROUTER, PROVIDER_PROXY)

DEFAULT_BASE_URLS = {
    PROVIDER_OLLAMA: "http://127.0.0.1:11434",
    PROVIDER_AI_GATEWAY: "https://ai-gateway.vercel.sh/v1",
    PROVIDER_OPENROUTER: "https://openrouter.ai/api/v1",
}
DEFAULT_EMBEDDING_MODELS = {
    PROVIDER_OLLAMA: "nomic-embed-text",
    PROVIDER_AI_GATEWAY: "openai/text-embedding-3-small",
    PROVIDER_OPENROUTER: "openai/text-embedding-3-small",
}
DEFAULT_CHAT_MODELS = {
    PROVIDER_OLLAMA: "llama3.1",
    PROVIDER_AI_GATEWAY: "openai/gpt-5-nano",
    PROVIDER_OPENROUTER: "openai/gpt-5-nano",
}
DEFAULT_TIMEOUT_SECONDS = 60.0


@dataclass(frozen=True, slots=True)
class ProviderSettings:
    """Validated provider selection shared by embedding and extraction clients."""

    provider: str
    base_url: str
    embedding_model: str
    chat_model: str
    api_key: str = ""
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS

    @property
    def requires_api_key(self) -> bool:
        return self.provider in {PROVIDER_AI_GATEWAY, PROVIDER_OPENROUTER}

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "ProviderSettings":
        source: Mapping[str, str] = os.environ if environ is None else environ

        provider = source.get("READGRAPH_PROVIDER", PROVIDER_OLLAMA).strip().lower()
        if provider not in SUPPORTED_PROVIDERS:
            supported = ", ".join(SUPPORTED_PROVIDERS)
            raise ValueError(f"READGRAPH_PROVIDER must be one of: {supported}")

        base_url = source.get("READGRAPH_BASE_URL", DEFAULT_BASE_URLS.get(provider, "")).strip()
        api_key = source.get("READGRAPH_API_KEY", "").strip()
        embedding_model = source.get("READGRAPH_EMBEDDING_MODEL", DEFAULT_EMBEDDING_MODELS.get(provider, "")).strip()
        chat_model = source.get("READGRAPH_CHAT_MODEL", DEFAULT_CHAT_MODELS.get(provider, "")).strip()

        missing: list[str] = []
        if not base_url:
            missing.append("READGRAPH_BASE_URL")
        if provider in {PROVIDER_AI_GATEWAY, PROVIDER_OPENROUTER} and not api_key:
            missing.append("READGRAPH_API_KEY")
        if not embedding_model:
            missing.append("READGRAPH_EMBEDDING_MODEL")
        if not chat_model:
            missing.append("READGRAPH_CHAT_MODEL")

        if missing:
            missing_text = ", ".join(missing)
            raise ValueError(f"Missing required provider environment variables: {missing_text}")

        if not (base_url.startswith("http://") or base_url.startswith("https://")):
            raise ValueError("READGRAPH_BASE_URL must start with http:// or https://")

        raw_timeout = source.get("READGRAPH_TIMEOUT_SECONDS", "").strip()
        timeout_seconds = DEFAULT_TIMEOUT_SECONDS
        if raw_timeout:
            try:
                timeout_seconds = float(raw_timeout)
            except ValueError as exc:
                raise ValueError("READGRAPH_TIMEOUT_SECONDS must be a number") from exc
            if timeout_seconds <= 0:
                raise ValueError("READGRAPH_TIMEOUT_SECONDS must be positive")

        return cls(
            provider=provider,
            base_url=base_url.rstrip("/"),
            embedding_model=embedding_model,
            chat_model=chat_model,
            api_key=api_key,
            timeout_seconds=timeout_seconds,
        )
