from __future__ import annotations

from pathlib import Path

import pytest

from fakes import FakeEmbedder
from readgraph.ingestion.models import BookSection
from readgraph.search.indexer import BookIndexer
from readgraph.search.repository import SearchRepository
from readgraph.semantic.providers import EmbeddingRequestError
from readgraph.semantic.semantic_repository import SemanticRepository
from readgraph.semantic.vector_store import index_filename


SECTIONS = [
    BookSection(text="The mill turned slowly.", chapter_title="One"),
    BookSection(text="The river rose at night.", chapter_title="Two"),
]


class BrokenEmbedder(FakeEmbedder):
    def embed(self, texts, *, stage: str = "chunks"):
        raise EmbeddingRequestError(model=self.embedding_model, stage=stage, message="connection refused")


def test_index_book_stores_chunks_and_vectors(search_repository: SearchRepository, tmp_path: Path) -> None:
    indexer = BookIndexer(repository=search_repository, vectors_dir=tmp_path / "vectors", embedder=FakeEmbedder())

    stats = indexer.index_book("book", SECTIONS, title="Mill Stories")

    assert (stats.chunks, stats.embedded_chunks, stats.errors) == (2, 2, 0)
    assert stats.model == "fake-embed"
    assert search_repository.get_book_title("book") == "Mill Stories"
    assert [chunk.id for chunk in search_repository.get_chunks("book")] == ["book-0-0", "book-1-0"]

    space = SemanticRepository(search_repository.connection).embedding_space()
    assert space is not None
    assert (space.model, space.dimension, space.vectors_dir) == ("fake-embed", 4, str(tmp_path / "vectors"))
    assert (tmp_path / "vectors" / index_filename("book")).exists()


def test_reindex_drops_old_vectors_and_embeds_again(search_repository: SearchRepository, tmp_path: Path) -> None:
    indexer = BookIndexer(repository=search_repository, vectors_dir=tmp_path / "vectors", embedder=FakeEmbedder())
    indexer.index_book("book", SECTIONS)

    stats = indexer.index_book("book", SECTIONS)

    assert stats.removed_vectors == 2
    assert stats.embedded_chunks == 2
    assert SemanticRepository(search_repository.connection).count_vectors(book_id="book") == 2


def test_embed_book_skips_unchanged_chunks(search_repository: SearchRepository, tmp_path: Path) -> None:
    embedder = FakeEmbedder()
    indexer = BookIndexer(repository=search_repository, vectors_dir=tmp_path / "vectors", embedder=embedder)
    indexer.index_book("book", SECTIONS)

    stats = indexer.embed_book("book")

    assert (stats.skipped_unchanged, stats.embedded_chunks) == (2, 0)
    assert len(embedder.calls) == 1


def test_embedding_failure_keeps_book_lexically_searchable(search_repository: SearchRepository, tmp_path: Path) -> None:
    indexer = BookIndexer(repository=search_repository, vectors_dir=tmp_path / "vectors", embedder=BrokenEmbedder())

    stats = indexer.index_book("book", SECTIONS)

    assert (stats.chunks, stats.embedded_chunks, stats.errors) == (2, 0, 2)
    assert stats.error_details[0]["stage"] == "embed"
    assert "connection refused" in stats.error_details[0]["error"]
    assert search_repository.is_indexed("book")


def test_without_embedder_only_chunks_are_stored(search_repository: SearchRepository, tmp_path: Path) -> None:
    indexer = BookIndexer(repository=search_repository, vectors_dir=tmp_path / "vectors")

    stats = indexer.index_book("book", SECTIONS)

    assert (stats.chunks, stats.embedded_chunks) == (2, 0)
    assert not (tmp_path / "vectors").exists()
    with pytest.raises(ValueError, match="embedder"):
        indexer.embed_book("book")


def test_blank_book_id_is_rejected(search_repository: SearchRepository, tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        BookIndexer(repository=search_repository, vectors_dir=tmp_path / "v").index_book("  ", SECTIONS)
    with pytest.raises(ValueError):
        BookIndexer(repository=search_repository, vectors_dir=tmp_path / "v", batch_size=0)
