"""CLI entrypoint for dumping the spoiler-safe graph of a book at a page."""

from __future__ import annotations

import argparse
import json
import logging

from readgraph.graph.repository import GraphRepository
from readgraph.inference.graph import build_graph, compute_centrality, detect_communities
from readgraph.search.repository import SearchRepository


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Print the knowledge graph of a book visible at a page")
    parser.add_argument("--db-path", default=".readgraph.db", help="SQLite database path")
    parser.add_argument("--book-id", required=True, help="Book identifier")
    parser.add_argument("--page", type=int, required=True, help="Highest page the reader has reached")
    parser.add_argument("--metrics", action="store_true", help="Include community and centrality per entity")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.WARNING)

    if args.page < 0:
        print(json.dumps({"error": "page must be >= 0", "page": args.page}, ensure_ascii=True, indent=2))
        return 2

    with SearchRepository(args.db_path) as search_repository:
        graphs = GraphRepository(search_repository.connection)
        state = graphs.get_state(args.book_id)
        snapshot = graphs.snapshot(args.book_id, args.page)

    payload = snapshot.to_dict()
    payload["last_analyzed_page"] = state.last_analyzed_page if state is not None else None
    if args.metrics:
        graph = build_graph(snapshot.entities, snapshot.relationships)
        payload["communities"] = detect_communities(graph)
        payload["centrality"] = {node: round(value, 6) for node, value in compute_centrality(graph).items()}
    print(json.dumps(payload, ensure_ascii=False, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
