"""Hybrid search fusion primitives."""

from .query import HybridRetriever
from .scoring import fuse_results, normalize_scores, order_results

__all__ = ["HybridRetriever", "fuse_results", "normalize_scores", "order_results"]
