"""Graph analytics over living entities: triadic closure, communities and centrality."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Callable, Sequence

import networkx as nx

from readgraph.graph.merge import new_id
from readgraph.graph.models import Entity, Evidence, Relationship
from readgraph.graph.names import is_living
from readgraph.runtime import BackendYieldController, YieldController


LOGGER = logging.getLogger(__name__)

TRIADIC_TYPE = "possibly_related"
TRIADIC_METHOD = "triadic"
TRIADIC_CONFIDENCE = 0.6
INFERRED_CHUNK_ID = "inferred"
MAX_HUB_DEGREE = 25
MAX_PROPOSALS = 200
COMMUNITY_SEED = 42


@dataclass(slots=True)
class GraphInferenceResult:
    relationships: list[Relationship] = field(default_factory=list)
    communities: dict[str, int] = field(default_factory=dict)
    centrality: dict[str, float] = field(default_factory=dict)

    @property
    def community_count(self) -> int:
        return len(set(self.communities.values()))


def build_graph(entities: Sequence[Entity], relationships: Sequence[Relationship]) -> nx.MultiDiGraph:
    """One node per living entity and one edge per relationship between two of them."""

    graph = nx.MultiDiGraph()
    living = {entity.id: entity for entity in entities if is_living(entity)}
    for entity in living.values():
        graph.add_node(entity.id, name=entity.canonical_name)
    for relationship in relationships:
        source, target = relationship.source_entity_id, relationship.target_entity_id
        if source == target or source not in living or target not in living:
            continue
        graph.add_edge(
            source,
            target,
            key=relationship.id,
            type=relationship.type,
            weight=max(1, len(relationship.evidence)),
        )
    return graph


def _weighted_undirected(graph: nx.MultiDiGraph) -> nx.Graph:
    simple = nx.Graph()
    simple.add_nodes_from(graph.nodes(data=True))
    for source, target, data in graph.edges(data=True):
        weight = data.get("weight", 1)
        if simple.has_edge(source, target):
            simple[source][target]["weight"] += weight
        else:
            simple.add_edge(source, target, weight=weight)
    return simple


def detect_communities(graph: nx.MultiDiGraph, *, seed: int = COMMUNITY_SEED) -> dict[str, int]:
    if graph.number_of_nodes() == 0:
        return {}
    try:
        partition = nx.community.louvain_communities(_weighted_undirected(graph), weight="weight", seed=seed)
    except Exception as exc:
        LOGGER.warning("Community detection failed, using a single community: %s", exc)
        return {node: 0 for node in graph.nodes}

    communities: dict[str, int] = {}
    for index, members in enumerate(sorted(partition, key=lambda group: sorted(group))):
        for node in members:
            communities[node] = index
    return {node: communities.get(node, 0) for node in graph.nodes}


def compute_centrality(graph: nx.MultiDiGraph) -> dict[str, float]:
    if graph.number_of_nodes() == 0:
        return {}
    simple = _weighted_undirected(graph)
    try:
        return dict(nx.betweenness_centrality(simple, weight="weight"))
    except Exception as exc:
        LOGGER.warning("Betweenness centrality failed, using degree centrality: %s", exc)
        return dict(nx.degree_centrality(simple))


async def propose_triadic_relationships(
    graph: nx.MultiDiGraph,
    *,
    names: dict[str, str],
    book_id: str,
    max_page: int,
    yielder: YieldController | None = None,
    id_factory: Callable[[str], str] = new_id,
    max_hub_degree: int = MAX_HUB_DEGREE,
    max_proposals: int = MAX_PROPOSALS,
) -> list[Relationship]:
    """Propose A-C links for unlinked pairs that share a neighbour B."""

    yielder = yielder or BackendYieldController()
    undirected = _weighted_undirected(graph)
    proposals: list[Relationship] = []
    seen: set[frozenset[str]] = set()

    for node_a in sorted(undirected.nodes):
        neighbours_a = set(undirected.neighbors(node_a))
        for node_b in sorted(neighbours_a):
            if undirected.degree(node_b) > max_hub_degree:
                continue
            for node_c in sorted(undirected.neighbors(node_b)):
                if node_c == node_a or node_c in neighbours_a:
                    continue
                pair = frozenset((node_a, node_c))
                if pair in seen:
                    continue
                seen.add(pair)

                description = f"Both connected to {names.get(node_b, node_b)}"
                proposals.append(
                    Relationship(
                        id=id_factory("rel"),
                        book_id=book_id,
                        source_entity_id=node_a,
                        target_entity_id=node_c,
                        type=TRIADIC_TYPE,
                        description=description,
                        evidence=[
                            Evidence(
                                quote=description,
                                page=max_page,
                                chunk_id=INFERRED_CHUNK_ID,
                                confidence=TRIADIC_CONFIDENCE,
                                inferred=True,
                            )
                        ],
                        inferred=True,
                        inference_method=TRIADIC_METHOD,
                        confidence=TRIADIC_CONFIDENCE,
                        first_seen_page=max_page,
                        last_seen_page=max_page,
                    )
                )
                if len(proposals) >= max_proposals:
                    LOGGER.debug("Triadic closure stopped at %d proposals for %s", max_proposals, book_id)
                    return proposals
        await yielder.maybe_yield()
    return proposals


async def infer_graph(
    entities: Sequence[Entity],
    relationships: Sequence[Relationship],
    *,
    book_id: str,
    max_page: int,
    yielder: YieldController | None = None,
    id_factory: Callable[[str], str] = new_id,
) -> GraphInferenceResult:
    graph = build_graph(entities, relationships)
    names = {entity.id: entity.canonical_name for entity in entities}
    proposals = await propose_triadic_relationships(
        graph,
        names=names,
        book_id=book_id,
        max_page=max_page,
        yielder=yielder,
        id_factory=id_factory,
    )
    return GraphInferenceResult(
        relationships=proposals,
        communities=detect_communities(graph),
        centrality=compute_centrality(graph),
    )
