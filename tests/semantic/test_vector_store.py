from __future__ import annotations

from pathlib import Path

import pytest

from readgraph.semantic.vector_store import BookVectorIndex, VectorIndexDirectory, VectorStoreError, index_filename


def test_index_flushes_and_reloads(tmp_path: Path) -> None:
    path = tmp_path / "book.faiss"
    index = BookVectorIndex(path, dimension=3)
    index.upsert([10, 11], [[1.0, 0.0, 0.0], [0.0, 1.0, 0.0]])

    assert index.flush()
    assert not index.flush()

    reloaded = BookVectorIndex(path, dimension=3)
    hits = reloaded.query([2.0, 0.0, 0.0], top_k=2)

    assert len(reloaded) == 2
    assert [hit.vector_id for hit in hits] == [10, 11]
    assert hits[0].score == pytest.approx(1.0)
    assert not (tmp_path / "book.faiss.tmp").exists()


def test_allowed_ids_restrict_candidates(tmp_path: Path) -> None:
    index = BookVectorIndex(tmp_path / "book.faiss", dimension=2)
    index.upsert([1, 2, 3], [[1.0, 0.0], [0.9, 0.1], [0.0, 1.0]])

    hits = index.query([1.0, 0.0], top_k=5, allowed_ids=[2, 3])

    assert [hit.vector_id for hit in hits] == [2, 3]
    assert index.query([1.0, 0.0], top_k=5, allowed_ids=[]) == []


def test_upsert_replaces_and_discard_removes(tmp_path: Path) -> None:
    index = BookVectorIndex(tmp_path / "book.faiss", dimension=3)
    index.upsert([10, 11], [[1.0, 0.0, 0.0], [0.0, 1.0, 0.0]])
    index.upsert([10], [[0.0, 0.0, 1.0]])

    assert len(index) == 2
    assert index.query([0.0, 0.0, 1.0], top_k=1)[0].vector_id == 10
    assert index.discard([11]) == 1
    assert index.discard([]) == 0
    assert len(index) == 1


def test_bad_input_is_rejected(tmp_path: Path) -> None:
    index = BookVectorIndex(tmp_path / "book.faiss", dimension=2)

    with pytest.raises(ValueError):
        index.upsert([1, 1], [[1.0, 0.0], [0.0, 1.0]])
    with pytest.raises(ValueError):
        index.upsert([1], [[1.0, 0.0, 0.0]])
    with pytest.raises(ValueError):
        index.upsert([1, 2], [[1.0, 0.0]])
    with pytest.raises(ValueError):
        BookVectorIndex(tmp_path / "other.faiss", dimension=0)


def test_corrupted_index_file_is_reported(tmp_path: Path) -> None:
    broken_path = tmp_path / "broken.faiss"
    broken_path.write_bytes(b"this-is-not-a-faiss-index")

    with pytest.raises(VectorStoreError, match="Failed to load FAISS index"):
        BookVectorIndex(broken_path, dimension=3)


def test_directory_keeps_one_file_per_book(tmp_path: Path) -> None:
    directory = VectorIndexDirectory(tmp_path / "vectors", dimension=2)
    directory.get("alpha").upsert([1], [[1.0, 0.0]])
    directory.get("beta").upsert([2, 3], [[0.0, 1.0], [1.0, 1.0]])

    assert directory.flush() == 2
    assert sorted(path.name for path in (tmp_path / "vectors").iterdir()) == sorted(
        [index_filename("alpha"), index_filename("beta")]
    )

    assert directory.drop("beta") == 2
    assert not directory.has("beta")
    assert directory.drop("beta") == 0
    assert VectorIndexDirectory(tmp_path / "vectors", dimension=2).has("alpha")


def test_index_filenames_are_safe_and_distinct() -> None:
    assert "/" not in index_filename("../../etc/passwd")
    assert index_filename("a/b") != index_filename("a_b")
    assert index_filename("book").endswith(".faiss")
