"""
Bounded breadth-first traversal over the live graph.

Only active edges leading to active nodes are followed. Neighbour expansion
is ordered by (created_at, id) so a given graph always yields the same
visit order and the same representative paths.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from ..errors import NotFoundError, ValidationError
from .db.base import GraphStore
from .models import Direction, Edge, EdgeType, GraphPath, Node, NodeType, coerce_enum

logger = logging.getLogger(__name__)

MAX_TRAVERSAL_DEPTH = 10


def follow(edge: Edge, from_id: str, direction: Direction) -> str | None:
    """The node reached by crossing `edge` from `from_id`, or None if not allowed.

    A bidirectional edge may be crossed either way regardless of `direction`.
    """
    if edge.source_node_id == from_id:
        if direction in (Direction.OUTGOING, Direction.BOTH) or edge.is_bidirectional:
            return edge.target_node_id
    if edge.target_node_id == from_id:
        if direction in (Direction.INCOMING, Direction.BOTH) or edge.is_bidirectional:
            return edge.source_node_id
    return None


def ordered_edges(store: GraphStore, node_id: str, edge_types: set[str] | None) -> list[Edge]:
    edges = store.edges_of(node_id, is_active=True)
    if edge_types:
        edges = [e for e in edges if e.edge_type.value in edge_types]
    edges.sort(key=lambda e: (e.created_at, e.id))
    return edges


@dataclass
class TraversalResult:
    start_node: Node
    visited_nodes: list[Node] = field(default_factory=list)
    paths: list[GraphPath] = field(default_factory=list)
    depth: int = 0

    @property
    def total_nodes_visited(self) -> int:
        return len(self.visited_nodes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "startNode": self.start_node.to_dict(include_embedding=False),
            "visitedNodes": [n.to_dict(include_embedding=False) for n in self.visited_nodes],
            "paths": [p.to_dict() for p in self.paths],
            "totalNodesVisited": self.total_nodes_visited,
            "depth": self.depth,
        }


class TraversalEngine:
    def __init__(self, store: GraphStore):
        self.store = store

    def _active_start(self, node_id: str) -> Node:
        node = self.store.get_node(node_id)
        if node is None or not node.is_active:
            raise NotFoundError("node", node_id)
        return node

    def traverse(
        self,
        start_node_id: str,
        direction: str | Direction = Direction.BOTH,
        max_depth: int = 3,
        node_types: list[str] | None = None,
        edge_types: list[str] | None = None,
        limit: int = 100,
    ) -> TraversalResult:
        """Breadth-first expansion from `start_node_id`.

        `visited_nodes` includes the start node and is capped at `limit`. The
        type filter applies to reached nodes, never to the start. `depth` is
        the deepest level at which a node was collected.
        """
        dirn = coerce_enum(Direction, direction, "direction")
        if max_depth < 0 or max_depth > MAX_TRAVERSAL_DEPTH:
            raise ValidationError(f"maxDepth must be between 0 and {MAX_TRAVERSAL_DEPTH}")
        if limit < 1:
            raise ValidationError("limit must be >= 1")
        ntypes = {coerce_enum(NodeType, t, "nodeTypes").value for t in node_types or []}
        etypes = {coerce_enum(EdgeType, t, "edgeTypes").value for t in edge_types or []}

        start = self._active_start(start_node_id)
        result = TraversalResult(start_node=start, visited_nodes=[start])
        best_path: dict[str, GraphPath] = {start.id: GraphPath(node_ids=[start.id])}
        result.paths.append(best_path[start.id])
        visited = {start.id}
        frontier = [start.id]
        level = 0

        while frontier and level < max_depth and len(visited) < limit:
            level += 1
            next_frontier: list[str] = []
            for current_id in frontier:
                steps = []
                for edge in ordered_edges(self.store, current_id, etypes):
                    nxt = follow(edge, current_id, dirn)
                    if nxt is not None and nxt not in visited:
                        steps.append((edge, nxt))
                if not steps:
                    continue
                resolved = self.store.get_nodes({nxt for _, nxt in steps})
                for edge, nxt in steps:
                    if nxt in visited:
                        continue
                    node = resolved.get(nxt)
                    if node is None or not node.is_active:
                        continue
                    if ntypes and node.node_type.value not in ntypes:
                        continue
                    visited.add(nxt)
                    parent = best_path[current_id]
                    path = GraphPath(
                        node_ids=parent.node_ids + [nxt],
                        edge_ids=parent.edge_ids + [edge.id],
                        total_weight=parent.total_weight + edge.weight,
                    )
                    best_path[nxt] = path
                    result.visited_nodes.append(node)
                    result.paths.append(path)
                    result.depth = level
                    next_frontier.append(nxt)
                    if len(visited) >= limit:
                        break
                if len(visited) >= limit:
                    break
            frontier = next_frontier

        logger.debug(
            "Traversal from %s visited %d nodes (depth %d)", start.id, result.total_nodes_visited, result.depth
        )
        return result

    def neighbors(
        self,
        node_id: str,
        direction: str | Direction = Direction.BOTH,
        edge_types: list[str] | None = None,
        limit: int = 20,
    ) -> list[Node]:
        """Active nodes one hop away, in expansion order."""
        result = self.traverse(node_id, direction=direction, max_depth=1, edge_types=edge_types, limit=limit + 1)
        return result.visited_nodes[1:]
