"""
Graph analytics: weighted-degree centrality and connected-component clusters.

Both measures depend only on graph structure (ids enter only as the seed of a
cluster's stable identifier), so isomorphic graphs get identical scores.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections import Counter, defaultdict, deque
from dataclasses import dataclass, replace
from typing import Any

from ..errors import NotFoundError
from .audit import AuditLog
from .db.base import GraphStore
from .locks import LockManager, conflict_retry
from .models import AuditEventType, Edge, EdgeType, GraphMetrics, Node, NodeType, coerce_enum, utcnow

logger = logging.getLogger(__name__)

CLUSTER_NAMESPACE = uuid.UUID("5b8f3c1e-2f5d-4c62-9a57-0c1d7e3b9a41")
TOP_CENTRAL_NODES = 10


def induced_subgraph(
    store: GraphStore,
    node_types: list[str] | None = None,
    edge_types: list[str] | None = None,
) -> tuple[list[Node], list[Edge]]:
    """Active nodes (optionally typed) and the active edges with both ends among them."""
    ntypes = [coerce_enum(NodeType, t, "nodeTypes").value for t in node_types or []]
    etypes = [coerce_enum(EdgeType, t, "edgeTypes").value for t in edge_types or []]
    nodes = store.list_nodes(node_types=ntypes or None, is_active=True)
    ids = {n.id for n in nodes}
    edges = [
        e
        for e in store.list_edges(edge_types=etypes or None, is_active=True)
        if e.source_node_id in ids and e.target_node_id in ids
    ]
    return nodes, edges


def weighted_degree_centrality(nodes: list[Node], edges: list[Edge]) -> dict[str, float]:
    """Sum of incident edge weights, min-max normalised to [0, 1].

    When every node has the same degree the range is empty; scores are then
    1.0 for a positive common degree and 0.0 otherwise.
    """
    degree = {n.id: 0.0 for n in nodes}
    for e in edges:
        degree[e.source_node_id] += e.weight
        degree[e.target_node_id] += e.weight
    if not degree:
        return {}
    lo, hi = min(degree.values()), max(degree.values())
    if hi == lo:
        return {nid: (1.0 if hi > 0 else 0.0) for nid in degree}
    span = hi - lo
    return {nid: (d - lo) / span for nid, d in degree.items()}


def connected_components(nodes: list[Node], edges: list[Edge]) -> dict[str, str]:
    """Map node id -> cluster id; edges are treated as undirected."""
    adjacency: dict[str, set[str]] = defaultdict(set)
    for e in edges:
        adjacency[e.source_node_id].add(e.target_node_id)
        adjacency[e.target_node_id].add(e.source_node_id)

    assignment: dict[str, str] = {}
    for start in sorted(n.id for n in nodes):
        if start in assignment:
            continue
        members = [start]
        seen = {start}
        queue = deque([start])
        while queue:
            current = queue.popleft()
            for nxt in adjacency[current]:
                if nxt not in seen:
                    seen.add(nxt)
                    members.append(nxt)
                    queue.append(nxt)
        # `start` is the smallest member since ids are visited in sorted order.
        cluster_id = str(uuid.uuid5(CLUSTER_NAMESPACE, start))
        for m in members:
            assignment[m] = cluster_id
    return assignment


def summarize(
    store: GraphStore,
    nodes: list[Node],
    edges: list[Edge],
    centrality: dict[str, float] | None = None,
    clusters: dict[str, str] | None = None,
) -> GraphMetrics:
    """Graph-wide counts plus structure figures for the analysed subgraph."""
    all_nodes = store.list_nodes()
    all_edges = store.list_edges()
    n, m = len(nodes), len(edges)
    metrics = GraphMetrics(
        total_nodes=len(all_nodes),
        active_nodes=sum(1 for x in all_nodes if x.is_active),
        total_edges=len(all_edges),
        active_edges=sum(1 for x in all_edges if x.is_active),
        nodes_by_type=dict(Counter(x.node_type.value for x in nodes)),
        edges_by_type=dict(Counter(x.edge_type.value for x in edges)),
        density=(m / (n * (n - 1))) if n > 1 else 0.0,
        avg_degree=(2 * m / n) if n else 0.0,
    )
    if clusters is not None:
        sizes = Counter(clusters.values())
        metrics.cluster_count = len(sizes)
        metrics.largest_cluster_size = max(sizes.values(), default=0)
    if centrality:
        labels = {x.id: x.label for x in nodes}
        ranked = sorted(centrality.items(), key=lambda kv: (-kv[1], kv[0]))[:TOP_CENTRAL_NODES]
        metrics.top_nodes_by_centrality = [
            {"nodeId": nid, "label": labels.get(nid), "centrality": score} for nid, score in ranked
        ]
    return metrics


@dataclass
class ComputeMetricsResult:
    metrics: GraphMetrics
    nodes_updated: int
    clusters_identified: int
    execution_time_ms: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "metrics": self.metrics.to_dict(),
            "nodesUpdated": self.nodes_updated,
            "clustersIdentified": self.clusters_identified,
            "executionTimeMs": self.execution_time_ms,
        }


class MetricsComputer:
    def __init__(self, store: GraphStore, audit: AuditLog, locks: LockManager, *, conflict_retries: int = 3):
        self.store = store
        self.audit = audit
        self.locks = locks
        self._retry = conflict_retry(conflict_retries)

    def compute(
        self,
        node_types: list[str] | None = None,
        edge_types: list[str] | None = None,
        compute_centrality: bool = True,
        compute_clusters: bool = True,
        *,
        actor: dict[str, Any] | None = None,
    ) -> ComputeMetricsResult:
        t0 = time.perf_counter()
        nodes, edges = induced_subgraph(self.store, node_types, edge_types)
        centrality = weighted_degree_centrality(nodes, edges) if compute_centrality else None
        clusters = connected_components(nodes, edges) if compute_clusters else None

        updated = 0
        if centrality is not None or clusters is not None:
            for node in nodes:
                changes: dict[str, Any] = {}
                if centrality is not None:
                    changes["centrality_score"] = centrality[node.id]
                if clusters is not None:
                    changes["cluster_id"] = clusters[node.id]
                if self._write_back(node.id, changes):
                    updated += 1

        metrics = summarize(self.store, nodes, edges, centrality, clusters)
        self.store.save_metrics(metrics)
        clusters_identified = len(set(clusters.values())) if clusters is not None else 0
        elapsed_ms = (time.perf_counter() - t0) * 1000
        self.audit.record(
            AuditEventType.METRICS_COMPUTED,
            metadata={
                "nodesUpdated": updated,
                "clustersIdentified": clusters_identified,
                "executionTimeMs": elapsed_ms,
                "nodeTypes": node_types or [],
                "edgeTypes": edge_types or [],
            },
            actor=actor,
        )
        logger.info(
            "Computed metrics over %d nodes / %d edges in %.1fms", len(nodes), len(edges), elapsed_ms
        )
        return ComputeMetricsResult(
            metrics=metrics,
            nodes_updated=updated,
            clusters_identified=clusters_identified,
            execution_time_ms=elapsed_ms,
        )

    def _write_back(self, node_id: str, changes: dict[str, Any]) -> bool:
        """Write derived scores onto a node; False if it vanished or went inactive meanwhile."""

        def once() -> bool:
            current = self.store.get_node(node_id)
            if current is None or not current.is_active:
                return False
            self.store.update_node(replace(current, **changes, updated_at=utcnow()), current.version)
            return True

        with self.locks.hold([node_id]):
            try:
                return self._retry(once)()
            except NotFoundError:
                return False

    def current(self) -> GraphMetrics:
        """Last persisted metrics, or a live count-only summary if none exist yet."""
        cached = self.store.latest_metrics()
        if cached is not None:
            return cached
        nodes, edges = induced_subgraph(self.store)
        return summarize(self.store, nodes, edges)
