"""Read-through, write-through cache of book graphs, keyed by book id."""

from __future__ import annotations

import copy
from typing import Protocol

from readgraph.graph.models import BookGraph


class GraphCache(Protocol):
    def get(self, book_id: str) -> BookGraph | None:
        ...

    def put(self, graph: BookGraph) -> None:
        ...

    def invalidate(self, book_id: str) -> None:
        ...


class NullCache:
    def get(self, book_id: str) -> BookGraph | None:
        return None

    def put(self, graph: BookGraph) -> None:
        return None

    def invalidate(self, book_id: str) -> None:
        return None


class InMemoryBookCache:
    """Keeps deep copies so callers mutating a loaded graph never touch the cached one."""

    def __init__(self, max_books: int = 8) -> None:
        if max_books < 1:
            raise ValueError("max_books must be >= 1")
        self._max_books = max_books
        self._graphs: dict[str, BookGraph] = {}

    def __len__(self) -> int:
        return len(self._graphs)

    def get(self, book_id: str) -> BookGraph | None:
        graph = self._graphs.get(book_id)
        if graph is None:
            return None
        self._graphs[book_id] = self._graphs.pop(book_id)
        return copy.deepcopy(graph)

    def put(self, graph: BookGraph) -> None:
        self._graphs.pop(graph.book_id, None)
        self._graphs[graph.book_id] = copy.deepcopy(graph)
        while len(self._graphs) > self._max_books:
            oldest = next(iter(self._graphs))
            del self._graphs[oldest]

    def invalidate(self, book_id: str) -> None:
        self._graphs.pop(book_id, None)
