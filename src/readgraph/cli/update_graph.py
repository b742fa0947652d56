"""CLI entrypoint for advancing (or rebuilding) a book's knowledge graph up to a page."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging

from dotenv import load_dotenv

load_dotenv()

from readgraph.extraction.client import ExtractionClient
from readgraph.extraction.config import ExtractionSettings
from readgraph.extraction.errors import ExtractionFailed, ExtractionUnavailable, NotIndexed
from readgraph.extraction.genre import build_genre_hints
from readgraph.extraction.orchestrator import ExtractionOrchestrator
from readgraph.graph.cache import InMemoryBookCache
from readgraph.graph.repository import GraphRepository
from readgraph.runtime import ProgressEvent
from readgraph.search.repository import SearchRepository
from readgraph.semantic.config import ProviderSettings
from readgraph.semantic.providers import build_provider


LOGGER = logging.getLogger(__name__)


def _log_event(event: ProgressEvent) -> None:
    LOGGER.info("%s %s", event.type, json.dumps(event.payload, ensure_ascii=True, sort_keys=True))


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Extract the knowledge graph of a book up to a page")
    parser.add_argument("--db-path", default=".readgraph.db", help="SQLite database path")
    parser.add_argument("--book-id", required=True, help="Book identifier")
    parser.add_argument("--page", type=int, required=True, help="Current reading page (0-based)")
    parser.add_argument("--description", default=None, help="Optional book description used for genre hints")
    parser.add_argument("--subject", action="append", default=[], help="Book subject; may be repeated")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--force", action="store_true", help="Reprocess recent pages even if already analyzed")
    mode.add_argument("--rebuild", action="store_true", help="Clear the book graph and extract from scratch")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    if args.page < 0:
        print(json.dumps({"error": "page must be >= 0", "page": args.page}, ensure_ascii=True, indent=2))
        return 2

    try:
        provider_settings = ProviderSettings.from_env()
        settings = ExtractionSettings.from_env()
        provider = build_provider(provider_settings)
    except ValueError as exc:
        print(json.dumps({"error": str(exc)}, ensure_ascii=True, indent=2))
        return 2

    with SearchRepository(args.db_path) as search_repository:
        title = search_repository.get_book_title(args.book_id)
        orchestrator = ExtractionOrchestrator(
            search_repository=search_repository,
            graph_repository=GraphRepository(search_repository.connection, cache=InMemoryBookCache()),
            client=ExtractionClient(provider),
            settings=settings,
            genre_hints=build_genre_hints(title=title or "", description=args.description or "", subjects=args.subject),
        )
        orchestrator.events.subscribe(_log_event)

        try:
            if args.rebuild:
                result = asyncio.run(orchestrator.rebuild_to_page(args.book_id, args.page))
            else:
                result = asyncio.run(orchestrator.update_to_page(args.book_id, args.page, force=args.force))
        except (ExtractionUnavailable, NotIndexed, ExtractionFailed) as exc:
            payload = {"error": str(exc), "error_type": type(exc).__name__, "book_id": args.book_id}
            print(json.dumps(payload, ensure_ascii=True, indent=2))
            return 2

    print(json.dumps(result.to_dict(), ensure_ascii=True, indent=2))
    return 0 if result.status != "not_indexed" else 2


if __name__ == "__main__":
    raise SystemExit(main())
