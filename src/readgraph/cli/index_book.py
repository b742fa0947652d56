"""CLI entrypoint for chunking, storing and embedding one book."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

from readgraph.ingestion.models import BookSection
from readgraph.search.indexer import BookIndexer
from readgraph.search.repository import SearchRepository
from readgraph.semantic.config import ProviderSettings
from readgraph.semantic.providers import build_provider


DEFAULT_SECTION_SEPARATOR = "\f"


def read_sections(path: Path, separator: str = DEFAULT_SECTION_SEPARATOR) -> list[BookSection]:
    """Split a plain-text book into sections; a leading ``# `` line becomes the chapter title."""

    text = path.read_text(encoding="utf-8")
    sections: list[BookSection] = []
    for part in text.split(separator):
        if not part.strip():
            continue
        first_line, _, rest = part.lstrip("\n").partition("\n")
        if first_line.startswith("# "):
            sections.append(BookSection(text=rest, chapter_title=first_line[2:].strip()))
        else:
            sections.append(BookSection(text=part))
    return sections


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Chunk, store and embed a plain-text book")
    parser.add_argument("--db-path", default=".readgraph.db", help="SQLite database path")
    parser.add_argument("--vectors-dir", default=".readgraph-vectors", help="Directory holding one FAISS index per book")
    parser.add_argument("--book-id", required=True, help="Stable book identifier")
    parser.add_argument("--input", required=True, help="UTF-8 text file with the book content")
    parser.add_argument("--title", default=None, help="Optional book title")
    parser.add_argument(
        "--section-separator",
        default=DEFAULT_SECTION_SEPARATOR,
        help="Separator between sections (default: form feed)",
    )
    parser.add_argument("--no-embed", action="store_true", help="Store chunks without computing embeddings")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    input_path = Path(args.input)
    if not input_path.is_file():
        print(json.dumps({"error": "Input file not found", "input": str(input_path)}, ensure_ascii=True, indent=2))
        return 2

    embedder = None
    if not args.no_embed:
        try:
            embedder = build_provider(ProviderSettings.from_env())
        except ValueError as exc:
            print(json.dumps({"error": str(exc)}, ensure_ascii=True, indent=2))
            return 2

    sections = read_sections(input_path, args.section_separator.replace("\\f", "\f").replace("\\n", "\n"))
    indexer = BookIndexer(repository=SearchRepository(args.db_path), vectors_dir=args.vectors_dir, embedder=embedder)
    with indexer:
        stats = indexer.index_book(args.book_id, sections, title=args.title or input_path.stem)

    payload = {
        "book_id": args.book_id,
        "sections": len(sections),
        "embedded": embedder is not None,
        "stats": stats.to_dict(),
    }
    print(json.dumps(payload, ensure_ascii=True, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
