"""
Shortest-path discovery and optional narration.

Edges are crossed in either direction here: a path answers "how are these two
entities related", not "what follows from what". Edge weight is the cost.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from ..errors import NotFoundError, ValidationError
from .db.base import GraphStore
from .models import Edge, EdgeType, GraphPath, Node, coerce_enum
from .traversal import ordered_edges

logger = logging.getLogger(__name__)

MAX_PATH_DEPTH = 10


@runtime_checkable
class ReasoningProvider(Protocol):
    """Narrates a discovered path.

    Returns a mapping with `explanation` (str), `reasoning` (list[str]),
    `confidence` (float in [0, 1]) and optionally `keyRelationships`.
    """

    def explain(self, path_nodes: list[Node], path_edges: list[Edge]) -> dict[str, Any]:
        ...


@dataclass
class PathExplanation:
    path: GraphPath
    explanation: str | None = None
    reasoning: list[str] = field(default_factory=list)
    confidence: float | None = None
    key_relationships: list[dict[str, Any]] = field(default_factory=list)
    degraded: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path.to_dict(),
            "explanation": self.explanation,
            "reasoning": list(self.reasoning),
            "confidence": self.confidence,
            "keyRelationships": list(self.key_relationships),
            "degraded": self.degraded,
        }


def key_relationships(path: GraphPath) -> list[dict[str, Any]]:
    by_id = {n.id: n for n in path.nodes}
    out = []
    for i, edge in enumerate(path.edges):
        a, b = by_id[path.node_ids[i]], by_id[path.node_ids[i + 1]]
        out.append(
            {
                "fromLabel": a.label,
                "toLabel": b.label,
                "relationship": edge.edge_type.value,
                "significance": edge.label or edge.description,
            }
        )
    return out


class PathFinder:
    def __init__(
        self,
        store: GraphStore,
        reasoning: ReasoningProvider | None = None,
        *,
        reasoning_timeout_s: float = 20.0,
    ):
        self.store = store
        self.reasoning = reasoning
        self.reasoning_timeout_s = reasoning_timeout_s
        self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="path-reasoning")

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    def _active_node(self, node_id: str) -> Node:
        node = self.store.get_node(node_id)
        if node is None or not node.is_active:
            raise NotFoundError("node", node_id)
        return node

    def find_path(
        self,
        start_node_id: str,
        end_node_id: str,
        max_depth: int = 6,
        edge_types: list[str] | None = None,
    ) -> GraphPath | None:
        """Cheapest path of at most `max_depth` hops, or None.

        Dijkstra over (cost, hops) states: among equal-cost paths the one with
        fewer hops wins. A node is re-expanded only when reached with strictly
        fewer hops than any earlier expansion, since that can still matter
        under the hop bound.
        """
        if max_depth < 1 or max_depth > MAX_PATH_DEPTH:
            raise ValidationError(f"maxDepth must be between 1 and {MAX_PATH_DEPTH}")
        etypes = {coerce_enum(EdgeType, t, "edgeTypes").value for t in edge_types or []}

        start = self._active_node(start_node_id)
        end = self._active_node(end_node_id)
        if start.id == end.id:
            return GraphPath(node_ids=[start.id], nodes=[start])

        active: dict[str, bool] = {start.id: True, end.id: True}
        nodes_seen: dict[str, Node] = {start.id: start, end.id: end}
        settled_hops: dict[str, int] = {}
        tie = itertools.count()
        heap: list[tuple[float, int, int, str, tuple[str, ...], tuple[Edge, ...]]] = [
            (0.0, 0, next(tie), start.id, (start.id,), ())
        ]

        while heap:
            cost, hops, _, node_id, node_ids, edges = heapq.heappop(heap)
            if node_id == end.id:
                return GraphPath(
                    node_ids=list(node_ids),
                    edge_ids=[e.id for e in edges],
                    total_weight=cost,
                    nodes=[nodes_seen[i] for i in node_ids],
                    edges=list(edges),
                )
            if hops >= settled_hops.get(node_id, max_depth + 1):
                continue
            settled_hops[node_id] = hops
            if hops == max_depth:
                continue

            candidates = [
                (edge, edge.other_end(node_id))
                for edge in ordered_edges(self.store, node_id, etypes)
                if edge.other_end(node_id) not in node_ids
            ]
            unknown = {nxt for _, nxt in candidates if nxt not in active}
            if unknown:
                found = self.store.get_nodes(unknown)
                for nid in unknown:
                    n = found.get(nid)
                    active[nid] = n is not None and n.is_active
                    if n is not None:
                        nodes_seen[nid] = n
            for edge, nxt in candidates:
                if not active[nxt]:
                    continue
                heapq.heappush(
                    heap,
                    (cost + edge.weight, hops + 1, next(tie), nxt, node_ids + (nxt,), edges + (edge,)),
                )
        return None

    def explain_path(
        self,
        start_node_id: str,
        end_node_id: str,
        max_depth: int = 6,
        include_reasoning: bool = True,
        edge_types: list[str] | None = None,
    ) -> PathExplanation | None:
        """Find a path and, if asked, narrate it.

        The narration step is optional enrichment: a missing, failing or slow
        provider yields the bare path with `degraded=True`.
        """
        path = self.find_path(start_node_id, end_node_id, max_depth=max_depth, edge_types=edge_types)
        if path is None:
            return None
        out = PathExplanation(path=path, key_relationships=key_relationships(path))
        if not include_reasoning:
            return out
        if self.reasoning is None:
            logger.warning("Path explanation requested but no reasoning provider is configured")
            out.degraded = True
            return out

        t0 = time.perf_counter()
        future = self._executor.submit(self.reasoning.explain, path.nodes, path.edges)
        try:
            narrated = future.result(timeout=self.reasoning_timeout_s)
            confidence = narrated.get("confidence")
            confidence = max(0.0, min(1.0, float(confidence))) if confidence is not None else None
        except FutureTimeout:
            future.cancel()
            logger.warning("Reasoning provider timed out after %.1fs", self.reasoning_timeout_s)
            out.degraded = True
            return out
        except Exception as e:
            logger.warning("Reasoning provider failed: %s", e)
            out.degraded = True
            return out

        out.explanation = narrated.get("explanation")
        out.reasoning = [str(r) for r in narrated.get("reasoning") or []]
        out.confidence = confidence
        if narrated.get("keyRelationships"):
            out.key_relationships = list(narrated["keyRelationships"])
        logger.debug("Path narrated in %.1fms", (time.perf_counter() - t0) * 1000)
        return out
