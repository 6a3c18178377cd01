"""
Graph view of a user's relationship edges.

Builds the payload used for graph visualization: visible nodes and edges,
identity clusters (nodes joined by SAME_AS edges), summary stats and
pagination. Optionally restricts the view to the neighbourhood of one entity.
"""

from collections import Counter
from typing import Dict, Iterable, List, Optional, Sequence, Set

from ..models.core import ENTITY_TYPES, RELATIONSHIP_TYPES, SAME_AS, GraphData, GraphEdge, GraphNode, GraphStats, Relationship
from ..repositories.base import RelationshipRepository, RepositoryError
from ..utils.config import GraphConfig, config
from ..utils.logging_config import get_logger

logger = get_logger(__name__)

MIN_DEPTH = 1
MAX_DEPTH = 3


class GraphDataError(Exception):
    """Custom exception for graph data errors."""
    pass


class UnionFind:
    """Disjoint sets over node ids with path compression."""

    def __init__(self, items: Iterable[str] = ()):
        self.parent: Dict[str, str] = {item: item for item in items}

    def add(self, item: str) -> None:
        self.parent.setdefault(item, item)

    def find(self, item: str) -> str:
        self.add(item)

        root = item
        while self.parent[root] != root:
            root = self.parent[root]

        # Point every node on the path straight at the root
        while item != root:
            next_item = self.parent[item]
            self.parent[item] = root
            item = next_item

        return root

    def union(self, x: str, y: str) -> None:
        root_x = self.find(x)
        root_y = self.find(y)
        if root_x != root_y:
            self.parent[root_x] = root_y


def compute_clusters(node_ids: Iterable[str], edges: Iterable[GraphEdge]) -> Dict[str, str]:
    """Map each node id to the representative of its SAME_AS cluster.

    Only identity edges between two of the given nodes join clusters; a node
    with no identity edge is its own cluster.
    """
    node_ids = list(node_ids)
    visible = set(node_ids)
    uf = UnionFind(node_ids)

    for edge in edges:
        if edge.is_identity and edge.source in visible and edge.target in visible:
            uf.union(edge.source, edge.target)

    return {node: uf.find(node) for node in node_ids}


def get_nodes_within_depth(center_id: str, relationships: Iterable[Relationship], max_depth: int) -> Set[str]:
    """Node ids reachable from ``center_id`` in at most ``max_depth`` hops.

    Edges are followed in both directions and each node is visited once. The
    centre is always included, even when it has no edges.
    """
    neighbours: Dict[str, Set[str]] = {}
    for rel in relationships:
        neighbours.setdefault(rel.source, set()).add(rel.target)
        neighbours.setdefault(rel.target, set()).add(rel.source)

    reachable = {center_id}
    frontier = {center_id}
    for _ in range(max_depth):
        next_frontier = set()
        for node in frontier:
            for neighbour in neighbours.get(node, ()):
                if neighbour not in reachable:
                    reachable.add(neighbour)
                    next_frontier.add(neighbour)
        if not next_frontier:
            break
        frontier = next_frontier

    return reachable


def clamp_depth(depth: Optional[int], default: int = 2) -> int:
    if depth is None:
        depth = default
    return max(MIN_DEPTH, min(MAX_DEPTH, int(depth)))


def _parse_filter(values: Optional[Iterable[str]], allowed: Sequence[str], upper: bool = False) -> Optional[Set[str]]:
    if values is None:
        return None
    parsed = set()
    for value in values:
        value = value.strip().upper() if upper else value.strip().lower()
        if value in allowed:
            parsed.add(value)
    return parsed


def build_graph_data(relationships: Sequence[Relationship],
                     entity_types: Optional[Iterable[str]] = None,
                     relationship_types: Optional[Iterable[str]] = None,
                     min_confidence: float = 0.5,
                     limit: int = 100,
                     center_entity: Optional[str] = None,
                     depth: int = 2,
                     include_stats: bool = True) -> GraphData:
    """Assemble the graph view from a user's relationship edges.

    Args:
        relationships: All edges of the user's graph
        entity_types: Node types to keep (unknown types are ignored; None keeps all)
        relationship_types: Edge types to keep (unknown types are ignored; None keeps all)
        min_confidence: Drop edges below this confidence
        limit: Maximum number of nodes, most connected first (at least 1)
        center_entity: Node id (``type:value``) to centre the view on
        depth: Hops from the centre, clamped to [1, 3]
        include_stats: Attach summary statistics

    Returns:
        Graph data with nodes, edges, clusters and pagination
    """
    limit = max(1, limit)
    entity_filter = _parse_filter(entity_types, ENTITY_TYPES)
    relationship_filter = _parse_filter(relationship_types, RELATIONSHIP_TYPES, upper=True)

    rels = [r for r in relationships if r.confidence >= min_confidence]
    if relationship_filter is not None:
        rels = [r for r in rels if r.relationship_type in relationship_filter]

    nodes: Dict[str, GraphNode] = {}
    identity_nodes = set()
    for rel in rels:
        for node_id, node_type, value in ((rel.source, rel.from_entity_type, rel.from_entity_value),
                                          (rel.target, rel.to_entity_type, rel.to_entity_value)):
            node = nodes.get(node_id)
            if node is None:
                node = nodes[node_id] = GraphNode(id=node_id, type=node_type, value=value, normalized=value.lower())
            node.connection_count += 1
        if rel.relationship_type == SAME_AS:
            identity_nodes.update((rel.source, rel.target))

    for node_id in identity_nodes:
        nodes[node_id].is_identity = True

    visible_nodes = list(nodes.values())
    if entity_filter is not None:
        visible_nodes = [n for n in visible_nodes if n.type in entity_filter]

    if center_entity:
        reachable = get_nodes_within_depth(center_entity, rels, clamp_depth(depth))
        visible_nodes = [n for n in visible_nodes if n.id in reachable]

    visible_nodes.sort(key=lambda n: n.connection_count, reverse=True)
    total = len(visible_nodes)
    visible_nodes = visible_nodes[:limit]
    visible_ids = {n.id for n in visible_nodes}

    edges: Dict[str, GraphEdge] = {}
    for rel in rels:
        if rel.source not in visible_ids or rel.target not in visible_ids:
            continue

        edge_id = f'{rel.source}:{rel.relationship_type}:{rel.target}'
        existing = edges.get(edge_id)
        if existing is None:
            edges[edge_id] = GraphEdge(id=edge_id,
                                       source=rel.source,
                                       target=rel.target,
                                       type=rel.relationship_type,
                                       confidence=rel.confidence,
                                       evidence=rel.evidence,
                                       is_identity=rel.relationship_type == SAME_AS)
        elif rel.confidence > existing.confidence:
            existing.confidence = rel.confidence
            existing.evidence = rel.evidence

    edge_list = list(edges.values())
    clusters = compute_clusters([n.id for n in visible_nodes], edge_list)
    for node in visible_nodes:
        node.cluster = clusters[node.id]

    graph = GraphData(nodes=visible_nodes, edges=edge_list, total=total, has_more=total > limit)
    if include_stats:
        graph.stats = _graph_stats(visible_nodes, edge_list)
    return graph


def _graph_stats(nodes: List[GraphNode], edges: List[GraphEdge]) -> GraphStats:
    avg_confidence = round(sum(e.confidence for e in edges) / len(edges), 2) if edges else 0.0
    return GraphStats(total_nodes=len(nodes),
                      total_edges=len(edges),
                      nodes_by_type=dict(Counter(n.type for n in nodes)),
                      edges_by_type=dict(Counter(e.type for e in edges)),
                      avg_confidence=avg_confidence,
                      identity_relationships=sum(1 for e in edges if e.is_identity),
                      clusters=len({n.cluster for n in nodes if n.cluster}))


class GraphService:
    """Serves graph views of a user's stored relationships."""

    def __init__(self, relationship_repository: RelationshipRepository, settings: Optional[GraphConfig] = None):
        self.relationships = relationship_repository
        self.settings = settings or config.graph

    async def get_graph_data(self,
                             user_id: str,
                             entity_types: Optional[Iterable[str]] = None,
                             relationship_types: Optional[Iterable[str]] = None,
                             min_confidence: Optional[float] = None,
                             limit: Optional[int] = None,
                             center_entity: Optional[str] = None,
                             depth: Optional[int] = None,
                             include_stats: bool = True) -> GraphData:
        """Graph view of a user's relationships.

        Unset parameters take the configured defaults; ``limit`` is kept
        between 1 and the configured maximum.

        Raises:
            GraphDataError: If the relationships cannot be loaded
        """
        if min_confidence is None:
            min_confidence = self.settings.default_min_confidence
        limit = max(1, min(limit or self.settings.default_node_limit, self.settings.max_node_limit))
        depth = clamp_depth(depth, self.settings.default_depth)

        try:
            relationships = await self.relationships.list_relationships(user_id, self.settings.relationship_fetch_limit)
        except RepositoryError as e:
            logger.error(f'Failed to load relationships for user {user_id}: {e}')
            raise GraphDataError(f'Failed to load graph data: {e}')

        graph = build_graph_data(relationships,
                                 entity_types=entity_types,
                                 relationship_types=relationship_types,
                                 min_confidence=min_confidence,
                                 limit=limit,
                                 center_entity=center_entity,
                                 depth=depth,
                                 include_stats=include_stats)

        logger.info(f'Returning {graph.returned} nodes and {len(graph.edges)} edges for user {user_id}')
        return graph
