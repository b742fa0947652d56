from __future__ import annotations

import json
from pathlib import Path

import pytest

import readgraph.cli.update_graph as update_graph_cli
from fakes import FakeCompletionProvider, chunk_ids_in, evidence, extraction, make_chunk
from readgraph.cli.index_book import main as index_book_main
from readgraph.cli.lookup_term import main as lookup_term_main
from readgraph.cli.search_hybrid import main as search_hybrid_main
from readgraph.cli.snapshot import main as snapshot_main
from readgraph.search.repository import SearchRepository


def _alice_meets_bob(prompt: str) -> str:
    if "book-0-2" not in chunk_ids_in(prompt):
        return extraction()
    quote = evidence("Alice met Bob", 2, "book-0-2")
    return extraction(
        entities=[
            {
                "name": "Alice",
                "type": "character",
                "description": "A traveler.",
                "facts": [{"key": "met", "value": "Bob", "evidence": [quote]}],
            },
            {"name": "Bob", "type": "character", "facts": [{"key": "met", "value": "Alice", "evidence": [quote]}]},
        ],
        relationships=[{"source": "Alice", "target": "Bob", "type": "met", "strength": 4, "evidence": [quote]}],
    )


def _output(capsys) -> dict:
    return json.loads(capsys.readouterr().out)


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    path = tmp_path / "readgraph.db"
    with SearchRepository(path) as repository:
        repository.replace_book_chunks(
            book_id="book",
            title="A Quiet Valley",
            chunks=[
                make_chunk("book", 0, 0, "The morning was quiet in the valley."),
                make_chunk("book", 1, 1, "Rain fell over the old mill all day."),
                make_chunk("book", 2, 2, "Alice met Bob."),
            ],
        )
    return path


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch) -> None:
    for name in ("READGRAPH_PROVIDER", "READGRAPH_BASE_URL", "READGRAPH_API_KEY", "READGRAPH_WINDOW_CONCURRENCY"):
        monkeypatch.delenv(name, raising=False)


def test_index_book_then_search_lexically(tmp_path: Path, capsys) -> None:
    book = tmp_path / "mill.txt"
    book.write_text("# One\nThe mill stood by the river.\f# Two\nA lantern hung in the window.", encoding="utf-8")
    db_path = tmp_path / "readgraph.db"

    exit_code = index_book_main(
        [
            "--db-path",
            str(db_path),
            "--vectors-dir",
            str(tmp_path / "vectors"),
            "--book-id",
            "mill",
            "--input",
            str(book),
            "--no-embed",
        ]
    )
    payload = _output(capsys)

    assert exit_code == 0
    assert payload["sections"] == 2
    assert payload["stats"]["chunks"] == 2
    assert payload["embedded"] is False

    exit_code = search_hybrid_main(["--db-path", str(db_path), "--book-id", "mill", "--query", "lantern", "--lexical-only"])
    payload = _output(capsys)

    assert exit_code == 0
    assert [(result["chunk_id"], result["method"]) for result in payload["results"]] == [("mill-1-0", "lexical")]


def test_index_book_reports_missing_input(tmp_path: Path, capsys) -> None:
    exit_code = index_book_main(["--db-path", str(tmp_path / "db"), "--book-id", "b", "--input", str(tmp_path / "nope.txt")])

    assert exit_code == 2
    assert _output(capsys)["error"] == "Input file not found"


def test_search_hybrid_rejects_unknown_book(db_path: Path, capsys) -> None:
    exit_code = search_hybrid_main(["--db-path", str(db_path), "--book-id", "missing", "--query", "mill", "--lexical-only"])

    assert exit_code == 2
    assert _output(capsys)["book_id"] == "missing"


def test_update_graph_then_snapshot_and_lookup(db_path: Path, monkeypatch, capsys) -> None:
    provider = FakeCompletionProvider(_alice_meets_bob)
    monkeypatch.setattr(update_graph_cli, "build_provider", lambda settings: provider)

    exit_code = update_graph_cli.main(["--db-path", str(db_path), "--book-id", "book", "--page", "2"])
    payload = _output(capsys)

    assert exit_code == 0
    assert payload["status"] == "complete"
    assert payload["last_analyzed_page"] == 2
    assert provider.calls

    assert snapshot_main(["--db-path", str(db_path), "--book-id", "book", "--page", "2", "--metrics"]) == 0
    snapshot = _output(capsys)
    assert sorted(entity["canonical_name"] for entity in snapshot["entities"]) == ["Alice", "Bob"]
    assert [relationship["type"] for relationship in snapshot["relationships"]] == ["met"]
    assert snapshot["last_analyzed_page"] == 2
    assert set(snapshot["centrality"]) == {entity["id"] for entity in snapshot["entities"]}

    assert snapshot_main(["--db-path", str(db_path), "--book-id", "book", "--page", "1"]) == 0
    assert _output(capsys)["entities"] == []

    exit_code = lookup_term_main(
        ["--db-path", str(db_path), "--book-id", "book", "--term", "Alice", "--page", "2", "--lexical-only"]
    )
    lookup = _output(capsys)
    assert exit_code == 0
    assert lookup["source"] == "entity"
    assert lookup["entity"]["canonical_name"] == "Alice"


def test_lookup_term_falls_back_to_book_text(db_path: Path, capsys) -> None:
    exit_code = lookup_term_main(
        ["--db-path", str(db_path), "--book-id", "book", "--term", "mill", "--page", "1", "--lexical-only"]
    )
    lookup = _output(capsys)

    assert exit_code == 0
    assert lookup["source"] == "lexrank"
    assert lookup["evidence"][0]["page"] == 1
    assert "mill" in lookup["summary"]


def test_negative_page_is_rejected(db_path: Path, capsys) -> None:
    assert snapshot_main(["--db-path", str(db_path), "--book-id", "book", "--page", "-1"]) == 2
    assert "error" in _output(capsys)
