"""Embedding providers and per-book FAISS vector indexes."""

from .config import ProviderSettings
from .providers import EmbeddingRequestError, GenerationRequestError, Provider, build_provider
from .vector_store import BookVectorIndex, VectorIndexDirectory, VectorStoreError

__all__ = [
    "BookVectorIndex",
    "EmbeddingRequestError",
    "GenerationRequestError",
    "Provider",
    "ProviderSettings",
    "VectorIndexDirectory",
    "VectorStoreError",
    "build_provider",
]
