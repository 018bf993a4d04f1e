"""
GraphService wires every graph component over one store.

The HTTP layer and the CLI talk to this facade only; it holds no logic of its
own beyond construction and shutdown.
"""

from __future__ import annotations

import logging

from ..embeddings import Embedder
from ..settings import GraphSettings
from .audit import AuditLog
from .db import GraphStore, build_store
from .edges import EdgeRegistry
from .locks import LockManager
from .merge import MergeEngine
from .metrics import MetricsComputer
from .nodes import NodeRegistry
from .paths import PathFinder, ReasoningProvider
from .query import GraphQueryEngine
from .search import SemanticSearchIndex
from .snapshots import SnapshotManager
from .traversal import TraversalEngine

logger = logging.getLogger(__name__)


class GraphService:
    def __init__(
        self,
        store: GraphStore,
        *,
        embedder: Embedder | None = None,
        reasoning: ReasoningProvider | None = None,
        reasoning_timeout_s: float = 20.0,
        conflict_retries: int = 3,
        snapshot_workers: int = 2,
        max_page_size: int = 100,
    ):
        self.store = store
        self.locks = LockManager()
        self.audit = AuditLog(store)
        self.nodes = NodeRegistry(
            store, self.audit, self.locks, conflict_retries=conflict_retries, max_page_size=max_page_size
        )
        self.edges = EdgeRegistry(
            store, self.audit, self.locks, conflict_retries=conflict_retries, max_page_size=max_page_size
        )
        self.traversal = TraversalEngine(store)
        self.paths = PathFinder(store, reasoning, reasoning_timeout_s=reasoning_timeout_s)
        self.merge = MergeEngine(store, self.audit, self.locks)
        self.metrics = MetricsComputer(store, self.audit, self.locks, conflict_retries=conflict_retries)
        self.snapshots = SnapshotManager(store, self.audit, workers=snapshot_workers)
        self.search = SemanticSearchIndex(
            store, self.audit, self.locks, embedder, conflict_retries=conflict_retries
        )
        self.query = GraphQueryEngine(store, self.traversal, self.search)
        self._closers = []
        if reasoning is not None and hasattr(reasoning, "close"):
            self._closers.append(reasoning.close)

    def close(self) -> None:
        self.snapshots.close()
        self.paths.close()
        for closer in self._closers:
            closer()
        self.store.close()


def build_service(settings: GraphSettings) -> GraphService:
    """Create a GraphService from settings (store backend, embedder, reasoning provider)."""
    from ..embeddings import build_embedder
    from ..reasoning import HttpReasoningProvider

    store = build_store(settings.store, sqlite_path=settings.sqlite_path)
    embedder = build_embedder(st_model=settings.st_model, dim=settings.embedding_dim)
    reasoning = None
    if settings.reasoning_url:
        reasoning = HttpReasoningProvider(
            settings.reasoning_url,
            api_key=settings.reasoning_api_key,
            model=settings.reasoning_model,
            timeout_s=settings.reasoning_timeout_s,
        )
    logger.info(
        "Graph service: store=%s embedder=%s reasoning=%s",
        settings.store,
        type(embedder).__name__,
        "http" if reasoning else "none",
    )
    return GraphService(
        store,
        embedder=embedder,
        reasoning=reasoning,
        reasoning_timeout_s=settings.reasoning_timeout_s,
        conflict_retries=settings.conflict_retries,
        snapshot_workers=settings.snapshot_workers,
        max_page_size=settings.max_page_size,
    )
