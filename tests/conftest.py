from __future__ import annotations

from pathlib import Path

import pytest

from fakes import make_chunk
from readgraph.graph.repository import GraphRepository
from readgraph.search.repository import SearchRepository


@pytest.fixture
def search_repository(tmp_path: Path):
    repository = SearchRepository(tmp_path / "readgraph.db")
    yield repository
    repository.close()


@pytest.fixture
def graph_repository(search_repository: SearchRepository) -> GraphRepository:
    return GraphRepository(search_repository.connection)


@pytest.fixture
def alice_book(search_repository: SearchRepository) -> str:
    search_repository.replace_book_chunks(
        book_id="book",
        title="A Quiet Valley",
        chunks=[
            make_chunk("book", 0, 0, "The morning was quiet in the valley."),
            make_chunk("book", 1, 1, "Rain fell over the old mill all day."),
            make_chunk("book", 2, 2, "Alice met Bob."),
        ],
    )
    return "book"
