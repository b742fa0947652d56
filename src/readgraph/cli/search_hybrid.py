"""CLI entrypoint for page-bounded hybrid (lexical + vector) search within one book."""

from __future__ import annotations

import argparse
import json
import logging

from dotenv import load_dotenv

load_dotenv()

from readgraph.hybrid.query import HybridRetriever
from readgraph.semantic.config import ProviderSettings
from readgraph.semantic.providers import build_provider


LOGGER = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run hybrid search over one book, bounded by page")
    parser.add_argument("--db-path", default=".readgraph.db", help="SQLite database path")
    parser.add_argument("--book-id", required=True, help="Book identifier")
    parser.add_argument("--query", required=True, help="Query text")
    parser.add_argument("--max-page", type=int, default=None, help="Only return chunks up to this page")
    parser.add_argument("--limit", type=int, default=10, help="Maximum number of returned results")
    parser.add_argument("--lexical-only", action="store_true", help="Skip the vector branch")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.WARNING)
    safe_limit = max(1, min(args.limit, 100))

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
        results = retriever.hybrid_search(args.book_id, args.query, safe_limit, args.max_page)

    payload = {
        "book_id": args.book_id,
        "query": args.query,
        "max_page": args.max_page,
        "limit": safe_limit,
        "results": [
            {
                "chunk_id": result.id,
                "page": result.page_number,
                "score": round(float(result.score), 6),
                "method": result.method,
                "text": result.text,
            }
            for result in results
        ],
    }
    print(json.dumps(payload, ensure_ascii=True, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
