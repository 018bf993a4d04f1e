"""
Storage abstraction for the intelligence graph.

The graph engine treats storage as a collaborator: indexed CRUD, a few
filtered query primitives, conditional (versioned) writes and batch
transactions. Everything richer (search, sorting, pagination, traversal)
happens above this layer.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator
from contextlib import contextmanager

from ..models import AuditLogEntry, Edge, GraphMetrics, Node, Snapshot


class GraphStore(ABC):
    """Abstract graph storage.

    Contract:
    - reads return copies; mutating a returned record never changes the store
    - `update_*` succeeds only when the stored version equals
      `expected_version`, stores the record with version `expected_version + 1`
      and raises `ConflictError` otherwise (`NotFoundError` if absent)
    - inside `transaction()` all writes commit together or not at all
    """

    # --- Nodes ---

    @abstractmethod
    def insert_node(self, node: Node) -> Node:
        ...

    @abstractmethod
    def get_node(self, node_id: str) -> Node | None:
        ...

    @abstractmethod
    def get_nodes(self, node_ids: Iterable[str]) -> dict[str, Node]:
        """Resolve several ids at once; missing ids are simply absent."""

    @abstractmethod
    def update_node(self, node: Node, expected_version: int) -> Node:
        ...

    @abstractmethod
    def list_nodes(
        self,
        *,
        node_types: Iterable[str] | None = None,
        is_active: bool | None = None,
    ) -> list[Node]:
        ...

    # --- Edges ---

    @abstractmethod
    def insert_edge(self, edge: Edge) -> Edge:
        ...

    @abstractmethod
    def get_edge(self, edge_id: str) -> Edge | None:
        ...

    @abstractmethod
    def update_edge(self, edge: Edge, expected_version: int) -> Edge:
        ...

    @abstractmethod
    def delete_edge(self, edge_id: str, expected_version: int | None = None) -> bool:
        """Remove an edge record. Returns False if it did not exist."""

    @abstractmethod
    def edges_of(self, node_id: str, *, is_active: bool | None = None) -> list[Edge]:
        """Edges where `node_id` is the source or the target."""

    @abstractmethod
    def list_edges(
        self,
        *,
        edge_types: Iterable[str] | None = None,
        is_active: bool | None = None,
    ) -> list[Edge]:
        ...

    # --- Snapshots ---

    @abstractmethod
    def save_snapshot(self, snapshot: Snapshot) -> None:
        ...

    @abstractmethod
    def get_snapshot(self, snapshot_id: str) -> Snapshot | None:
        ...

    @abstractmethod
    def list_snapshots(self) -> list[Snapshot]:
        """All snapshots, newest first."""

    # --- Audit ---

    @abstractmethod
    def append_audit(self, entry: AuditLogEntry) -> None:
        ...

    @abstractmethod
    def list_audit(self) -> list[AuditLogEntry]:
        """All entries, newest first."""

    # --- Metrics ---

    @abstractmethod
    def save_metrics(self, metrics: GraphMetrics) -> None:
        ...

    @abstractmethod
    def latest_metrics(self) -> GraphMetrics | None:
        ...

    # --- Batches ---

    @abstractmethod
    @contextmanager
    def transaction(self) -> Iterator[None]:
        ...

    def close(self) -> None:
        """Release resources held by the store."""
