from __future__ import annotations

from pathlib import Path

import pytest

from fakes import FakeEmbedder, make_chunk
from readgraph.hybrid.query import HybridRetriever
from readgraph.search.indexer import BookIndexer
from readgraph.search.repository import SearchRepository
from readgraph.semantic.providers import EmbeddingRequestError


class UnreachableEmbedder(FakeEmbedder):
    def embed_query(self, text: str):
        raise EmbeddingRequestError(model=self.embedding_model, stage="query", message="provider offline")


@pytest.fixture
def mill_book(search_repository: SearchRepository, tmp_path: Path) -> str:
    search_repository.replace_book_chunks(
        book_id="book",
        title="Mill Stories",
        chunks=[
            make_chunk("book", 0, 0, "The mill wheel creaked."),
            make_chunk("book", 1, 1, "The river rose over the bank."),
            make_chunk("book", 2, 5, "The mill burned down."),
        ],
    )
    indexer = BookIndexer(repository=search_repository, vectors_dir=tmp_path / "vectors", embedder=FakeEmbedder())
    indexer.embed_book("book")
    return "book"


def test_vector_search_respects_page_bound(search_repository: SearchRepository, mill_book: str) -> None:
    embedder = FakeEmbedder()
    retriever = HybridRetriever(search_repository=search_repository, embedder=embedder)

    results = retriever.vector_search(mill_book, embedder.embed_query("mill"), top_k=5, max_page=2)

    assert [result.id for result in results] == ["book-0-0", "book-0-1"]
    assert {result.method for result in results} == {"vector"}
    assert results[0].score == pytest.approx(1.0)


def test_lexical_search_respects_page_bound(search_repository: SearchRepository, mill_book: str) -> None:
    retriever = HybridRetriever(search_repository=search_repository)

    assert [result.id for result in retriever.lexical_search(mill_book, "mill", max_page=2)] == ["book-0-0"]
    assert len(retriever.lexical_search(mill_book, "mill")) == 2


def test_hybrid_search_marks_results_found_by_both_branches(search_repository: SearchRepository, mill_book: str) -> None:
    retriever = HybridRetriever(search_repository=search_repository, embedder=FakeEmbedder())

    results = retriever.hybrid_search(mill_book, "mill", top_k=3)

    assert [result.method for result in results] == ["hybrid", "hybrid", "vector"]
    assert results[-1].id == "book-0-1"


def test_hybrid_search_never_returns_pages_past_the_bound(search_repository: SearchRepository, mill_book: str) -> None:
    retriever = HybridRetriever(search_repository=search_repository, embedder=FakeEmbedder())

    results = retriever.hybrid_search(mill_book, "mill", top_k=5, max_page=2)

    assert [result.id for result in results] == ["book-0-0", "book-0-1"]
    assert all(result.page_number <= 2 for result in results)


def test_unreachable_embedder_falls_back_to_lexical(search_repository: SearchRepository, mill_book: str) -> None:
    retriever = HybridRetriever(search_repository=search_repository, embedder=UnreachableEmbedder())

    results = retriever.hybrid_search(mill_book, "river", top_k=3)

    assert [(result.id, result.method) for result in results] == [("book-0-1", "lexical")]


def test_blank_query_and_bad_top_k(search_repository: SearchRepository, mill_book: str) -> None:
    retriever = HybridRetriever(search_repository=search_repository)

    assert retriever.hybrid_search(mill_book, "   ") == []
    with pytest.raises(ValueError):
        retriever.hybrid_search(mill_book, "mill", top_k=0)


def test_from_db_path_owns_its_repository(tmp_path: Path) -> None:
    with HybridRetriever.from_db_path(db_path=tmp_path / "readgraph.db") as retriever:
        assert not retriever.is_indexed("book")
        assert retriever.vector_search("book", [1.0, 0.0], top_k=1) == []
