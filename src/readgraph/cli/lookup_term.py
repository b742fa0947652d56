"""CLI entrypoint for looking up a term without spoilers past the reader's page."""

from __future__ import annotations

import argparse
import json
import logging

from dotenv import load_dotenv

load_dotenv()

from readgraph.graph.repository import GraphRepository
from readgraph.hybrid.query import HybridRetriever
from readgraph.lookup.service import LookupService
from readgraph.semantic.config import ProviderSettings
from readgraph.semantic.providers import build_provider


LOGGER = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Explain a term using only pages the reader has reached")
    parser.add_argument("--db-path", default=".readgraph.db", help="SQLite database path")
    parser.add_argument("--book-id", required=True, help="Book identifier")
    parser.add_argument("--term", required=True, help="Term, name or phrase to look up")
    parser.add_argument("--page", type=int, required=True, help="Highest page the reader has reached")
    parser.add_argument("--language", default="en", help="Book language used for stopwords")
    parser.add_argument("--lexical-only", action="store_true", help="Skip the vector branch")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.WARNING)

    if args.page < 0 or not args.term.strip():
        print(json.dumps({"error": "term must be non-empty and page >= 0"}, ensure_ascii=True, indent=2))
        return 2

    embedder = None
    if not args.lexical_only:
        try:
            embedder = build_provider(ProviderSettings.from_env())
        except ValueError as exc:
            LOGGER.warning("Provider not configured, using lexical search only: %s", exc)

    with HybridRetriever.from_db_path(db_path=args.db_path, embedder=embedder) as retriever:
        if not retriever.is_indexed(args.book_id):
            print(json.dumps({"error": "Book is not indexed", "book_id": args.book_id}, ensure_ascii=True, indent=2))
            return 2
        service = LookupService(
            graph_repository=GraphRepository(retriever.repository.connection),
            retriever=retriever,
            language=args.language,
        )
        result = service.lookup_term(args.book_id, args.term, args.page)

    print(json.dumps(result.to_dict(), ensure_ascii=False, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
