from __future__ import annotations

import copy
import threading
from collections import defaultdict
from collections.abc import Iterable, Iterator
from contextlib import contextmanager

from ...errors import ConflictError, NotFoundError
from ..models import AuditLogEntry, Edge, GraphMetrics, Node, Snapshot
from .base import GraphStore


class InMemoryGraphStore(GraphStore):
    """Process-local store.

    A single re-entrant lock guards every call, and records are deep-copied
    in and out, so readers only ever see committed state. `transaction()`
    holds the lock for the whole batch and restores the previous state if
    the batch raises.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._nodes: dict[str, Node] = {}
        self._edges: dict[str, Edge] = {}
        self._adjacency: dict[str, set[str]] = defaultdict(set)
        self._snapshots: dict[str, Snapshot] = {}
        self._audit: list[AuditLogEntry] = []
        self._metrics: list[GraphMetrics] = []

    # --- Nodes ---

    def insert_node(self, node: Node) -> Node:
        with self._lock:
            if node.id in self._nodes:
                raise ConflictError(f"node already exists: {node.id}")
            self._nodes[node.id] = copy.deepcopy(node)
            return copy.deepcopy(node)

    def get_node(self, node_id: str) -> Node | None:
        with self._lock:
            node = self._nodes.get(node_id)
            return copy.deepcopy(node) if node is not None else None

    def get_nodes(self, node_ids: Iterable[str]) -> dict[str, Node]:
        with self._lock:
            return {i: copy.deepcopy(self._nodes[i]) for i in node_ids if i in self._nodes}

    def update_node(self, node: Node, expected_version: int) -> Node:
        with self._lock:
            current = self._nodes.get(node.id)
            if current is None:
                raise NotFoundError("node", node.id)
            if current.version != expected_version:
                raise ConflictError(
                    f"node {node.id} changed concurrently",
                    details={"expected": expected_version, "actual": current.version},
                )
            stored = copy.deepcopy(node)
            stored.version = expected_version + 1
            self._nodes[node.id] = stored
            return copy.deepcopy(stored)

    def list_nodes(
        self,
        *,
        node_types: Iterable[str] | None = None,
        is_active: bool | None = None,
    ) -> list[Node]:
        types = set(node_types) if node_types else None
        with self._lock:
            out = [
                n
                for n in self._nodes.values()
                if (types is None or n.node_type.value in types)
                and (is_active is None or n.is_active == is_active)
            ]
            return copy.deepcopy(out)

    # --- Edges ---

    def insert_edge(self, edge: Edge) -> Edge:
        with self._lock:
            if edge.id in self._edges:
                raise ConflictError(f"edge already exists: {edge.id}")
            self._edges[edge.id] = copy.deepcopy(edge)
            self._adjacency[edge.source_node_id].add(edge.id)
            self._adjacency[edge.target_node_id].add(edge.id)
            return copy.deepcopy(edge)

    def get_edge(self, edge_id: str) -> Edge | None:
        with self._lock:
            edge = self._edges.get(edge_id)
            return copy.deepcopy(edge) if edge is not None else None

    def update_edge(self, edge: Edge, expected_version: int) -> Edge:
        with self._lock:
            current = self._edges.get(edge.id)
            if current is None:
                raise NotFoundError("edge", edge.id)
            if current.version != expected_version:
                raise ConflictError(
                    f"edge {edge.id} changed concurrently",
                    details={"expected": expected_version, "actual": current.version},
                )
            # Endpoints may move (merge redirection), keep the adjacency index in step.
            for nid in (current.source_node_id, current.target_node_id):
                self._adjacency[nid].discard(edge.id)
            stored = copy.deepcopy(edge)
            stored.version = expected_version + 1
            self._edges[edge.id] = stored
            self._adjacency[stored.source_node_id].add(edge.id)
            self._adjacency[stored.target_node_id].add(edge.id)
            return copy.deepcopy(stored)

    def delete_edge(self, edge_id: str, expected_version: int | None = None) -> bool:
        with self._lock:
            current = self._edges.get(edge_id)
            if current is None:
                return False
            if expected_version is not None and current.version != expected_version:
                raise ConflictError(f"edge {edge_id} changed concurrently")
            del self._edges[edge_id]
            for nid in (current.source_node_id, current.target_node_id):
                self._adjacency[nid].discard(edge_id)
            return True

    def edges_of(self, node_id: str, *, is_active: bool | None = None) -> list[Edge]:
        with self._lock:
            out = [
                self._edges[eid]
                for eid in self._adjacency.get(node_id, ())
                if is_active is None or self._edges[eid].is_active == is_active
            ]
            return copy.deepcopy(out)

    def list_edges(
        self,
        *,
        edge_types: Iterable[str] | None = None,
        is_active: bool | None = None,
    ) -> list[Edge]:
        types = set(edge_types) if edge_types else None
        with self._lock:
            out = [
                e
                for e in self._edges.values()
                if (types is None or e.edge_type.value in types)
                and (is_active is None or e.is_active == is_active)
            ]
            return copy.deepcopy(out)

    # --- Snapshots ---

    def save_snapshot(self, snapshot: Snapshot) -> None:
        with self._lock:
            self._snapshots[snapshot.id] = copy.deepcopy(snapshot)

    def get_snapshot(self, snapshot_id: str) -> Snapshot | None:
        with self._lock:
            snap = self._snapshots.get(snapshot_id)
            return copy.deepcopy(snap) if snap is not None else None

    def list_snapshots(self) -> list[Snapshot]:
        with self._lock:
            out = sorted(self._snapshots.values(), key=lambda s: (s.created_at, s.id), reverse=True)
            return copy.deepcopy(out)

    # --- Audit ---

    def append_audit(self, entry: AuditLogEntry) -> None:
        with self._lock:
            self._audit.append(copy.deepcopy(entry))

    def list_audit(self) -> list[AuditLogEntry]:
        with self._lock:
            return copy.deepcopy(list(reversed(self._audit)))

    # --- Metrics ---

    def save_metrics(self, metrics: GraphMetrics) -> None:
        with self._lock:
            self._metrics.append(copy.deepcopy(metrics))

    def latest_metrics(self) -> GraphMetrics | None:
        with self._lock:
            return copy.deepcopy(self._metrics[-1]) if self._metrics else None

    # --- Batches ---

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            saved = copy.deepcopy(
                (self._nodes, self._edges, dict(self._adjacency), self._snapshots, self._audit, self._metrics)
            )
            try:
                yield
            except BaseException:
                nodes, edges, adjacency, snapshots, audit, metrics = saved
                self._nodes = nodes
                self._edges = edges
                self._adjacency = defaultdict(set, adjacency)
                self._snapshots = snapshots
                self._audit = audit
                self._metrics = metrics
                raise
