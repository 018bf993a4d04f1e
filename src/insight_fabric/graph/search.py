"""
Embedding generation and cosine-similarity search over node content.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field, replace
from typing import Any

import numpy as np

from ..embeddings import Embedder
from ..errors import DependencyError, NotFoundError, ValidationError
from .audit import AuditLog
from .db.base import GraphStore
from .locks import LockManager, conflict_retry
from .models import AuditEventType, Node, NodeType, coerce_enum, utcnow

logger = logging.getLogger(__name__)


def context_text(node: Node) -> str:
    """The text a node's embedding is generated from."""
    parts = [node.label.strip()]
    if node.description:
        parts.append(node.description.strip())
    text = ". ".join(p for p in parts if p)
    if node.tags:
        text += f" Tags: {', '.join(node.tags)}"
    return text


def text_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


@dataclass
class SearchHit:
    node: Node
    similarity: float
    matched_context: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "node": self.node.to_dict(include_embedding=False),
            "similarity": self.similarity,
            "matchedContext": self.matched_context,
        }


@dataclass
class EmbeddingRun:
    generated: int = 0
    skipped: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"generated": self.generated, "skipped": self.skipped, "errors": list(self.errors)}


class SemanticSearchIndex:
    def __init__(
        self,
        store: GraphStore,
        audit: AuditLog,
        locks: LockManager,
        embedder: Embedder | None = None,
        *,
        conflict_retries: int = 3,
    ):
        self.store = store
        self.audit = audit
        self.locks = locks
        self.embedder = embedder
        self._retry = conflict_retry(conflict_retries)

    def _query_vector(self, query: str | list[float]) -> np.ndarray | None:
        if isinstance(query, str):
            if not query.strip():
                raise ValidationError("query must not be empty", details={"field": "query"})
            if self.embedder is None:
                logger.warning("Text search requested but no embedder is configured")
                return None
            try:
                return np.asarray(self.embedder.embed([query])[0], dtype=np.float64)
            except Exception as e:
                logger.warning("Embedding the search query failed: %s", e)
                return None
        return np.asarray(query, dtype=np.float64)

    def search(
        self,
        query: str | list[float],
        node_types: list[str] | None = None,
        threshold: float = 0.7,
        limit: int = 20,
    ) -> list[SearchHit]:
        """Active nodes whose embedding has cosine similarity >= threshold, best first."""
        if not 0.0 <= threshold <= 1.0:
            raise ValidationError("threshold must be within [0, 1]", details={"field": "threshold"})
        if limit < 1:
            raise ValidationError("limit must be >= 1", details={"field": "limit"})
        ntypes = [coerce_enum(NodeType, t, "nodeTypes").value for t in node_types or []]

        q = self._query_vector(query)
        if q is None or q.ndim != 1 or q.size == 0:
            return []
        q_norm = float(np.linalg.norm(q))
        if q_norm == 0.0:
            return []

        candidates = [
            n
            for n in self.store.list_nodes(node_types=ntypes or None, is_active=True)
            if n.embedding is not None and len(n.embedding) == q.size
        ]
        if not candidates:
            return []

        matrix = np.asarray([n.embedding for n in candidates], dtype=np.float64)
        norms = np.linalg.norm(matrix, axis=1)
        with np.errstate(divide="ignore", invalid="ignore"):
            sims = (matrix @ q) / (norms * q_norm)

        hits = [
            SearchHit(node=n, similarity=float(min(1.0, s)), matched_context=context_text(n))
            for n, s, norm in zip(candidates, sims, norms)
            if norm > 0 and s >= threshold
        ]
        hits.sort(key=lambda h: (-h.similarity, h.node.id))
        return hits[:limit]

    def generate_embeddings(
        self,
        node_ids: list[str] | None = None,
        force_regenerate: bool = False,
        *,
        actor: dict[str, Any] | None = None,
    ) -> EmbeddingRun:
        """(Re)compute embeddings; nodes whose context text is unchanged are skipped."""
        if self.embedder is None:
            raise DependencyError("no embedder configured")
        run = EmbeddingRun()
        if node_ids:
            found = self.store.get_nodes(node_ids)
            nodes = []
            for nid in node_ids:
                node = found.get(nid)
                if node is None:
                    run.errors.append({"nodeId": nid, "error": "not found"})
                elif not node.is_active:
                    run.errors.append({"nodeId": nid, "error": "inactive"})
                else:
                    nodes.append(node)
        else:
            nodes = self.store.list_nodes(is_active=True)

        pending: list[tuple[Node, str, str]] = []
        for node in nodes:
            text = context_text(node)
            digest = text_hash(text)
            if not force_regenerate and node.embedding is not None and node.embedding_hash == digest:
                run.skipped += 1
                continue
            pending.append((node, text, digest))

        if pending:
            try:
                vectors = self.embedder.embed([text for _, text, _ in pending])
            except Exception as e:
                raise DependencyError(f"embedder failed: {e}") from e
            for (node, _, digest), vector in zip(pending, vectors):
                if self._write_back(node.id, [float(x) for x in vector], digest):
                    run.generated += 1
                else:
                    run.errors.append({"nodeId": node.id, "error": "node changed or removed"})

        self.audit.record(
            AuditEventType.EMBEDDINGS_GENERATED,
            metadata={"generated": run.generated, "skipped": run.skipped, "errors": len(run.errors)},
            actor=actor,
        )
        logger.info("Embeddings generated=%d skipped=%d errors=%d", run.generated, run.skipped, len(run.errors))
        return run

    def _write_back(self, node_id: str, vector: list[float], digest: str) -> bool:
        def once() -> bool:
            current = self.store.get_node(node_id)
            if current is None or not current.is_active:
                return False
            self.store.update_node(
                replace(current, embedding=vector, embedding_hash=digest, updated_at=utcnow()), current.version
            )
            return True

        with self.locks.hold([node_id]):
            try:
                return self._retry(once)()
            except NotFoundError:
                return False
