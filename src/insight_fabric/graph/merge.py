"""
Node deduplication.

A merge is one batch: resolve the sources and every edge touching them,
lock the lot, re-read under the locks, and apply all writes inside a single
store transaction. Anything that moved between the first read and the
locked re-read aborts the merge with ConflictError.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any

from ..errors import ConflictError, ValidationError
from .audit import AuditLog
from .db.base import GraphStore
from .locks import LockManager
from .models import AuditEventType, Edge, MergeStrategy, Node, coerce_enum, unique_strings, utcnow
from .nodes import check_label
from .properties import validate_properties

logger = logging.getLogger(__name__)

MAX_MERGE_SOURCES = 10


@dataclass
class MergeResult:
    merged_node: Node
    merged_node_ids: list[str]
    edges_preserved: int
    edges_removed: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "mergedNode": self.merged_node.to_dict(include_embedding=False),
            "mergedNodeIds": list(self.merged_node_ids),
            "edgesPreserved": self.edges_preserved,
            "edgesRemoved": self.edges_removed,
        }


def union_fields(sources: list[Node]) -> dict[str, Any]:
    """Union tags/categories, merge properties left to right (later wins)."""
    props: dict[str, Any] = {}
    for n in sources:
        props.update(n.properties)
    return {
        "tags": unique_strings(t for n in sources for t in n.tags),
        "categories": unique_strings(c for n in sources for c in n.categories),
        "properties": props,
        "confidence_score": max(n.confidence_score for n in sources),
    }


class MergeEngine:
    def __init__(self, store: GraphStore, audit: AuditLog, locks: LockManager):
        self.store = store
        self.audit = audit
        self.locks = locks

    def _check_sources(self, ids: list[str], found: dict[str, Node]) -> list[Node]:
        missing = [i for i in ids if i not in found]
        if missing:
            raise ValidationError(f"source nodes not found: {missing}", details={"missing": missing})
        inactive = [i for i in ids if not found[i].is_active]
        if inactive:
            raise ValidationError(f"source nodes are inactive: {inactive}", details={"inactive": inactive})
        return [found[i] for i in ids]

    def _touching(self, ids: list[str]) -> dict[str, Edge]:
        edges: dict[str, Edge] = {}
        for nid in ids:
            for e in self.store.edges_of(nid):
                edges[e.id] = e
        return edges

    def merge(
        self,
        source_node_ids: list[str],
        strategy: str | MergeStrategy = MergeStrategy.CREATE_NEW,
        new_label: str | None = None,
        new_description: str | None = None,
        preserve_edges: bool = True,
        *,
        actor: dict[str, Any] | None = None,
    ) -> MergeResult:
        strat = coerce_enum(MergeStrategy, strategy, "strategy")
        ids = list(source_node_ids or [])
        if len(ids) < 2:
            raise ValidationError("merge requires at least 2 source nodes")
        if len(ids) > MAX_MERGE_SOURCES:
            raise ValidationError(f"merge accepts at most {MAX_MERGE_SOURCES} source nodes")
        if len(set(ids)) != len(ids):
            raise ValidationError("source node ids must be distinct")
        if new_label is not None:
            check_label(new_label)

        initial_nodes = {n.id: n.version for n in self._check_sources(ids, self.store.get_nodes(ids))}
        initial_edges = {e.id: e.version for e in self._touching(ids).values()}
        endpoints = {nid for e in self._touching(ids).values() for nid in (e.source_node_id, e.target_node_id)}

        with self.locks.hold([*ids, *initial_edges, *endpoints]), self.store.transaction():
            sources = self._check_sources(ids, self.store.get_nodes(ids))
            touched = self._touching(ids)
            if {n.id: n.version for n in sources} != initial_nodes or {
                e.id: e.version for e in touched.values()
            } != initial_edges:
                raise ConflictError("merge sources changed concurrently", details={"sourceNodeIds": ids})
            result = self._apply(strat, sources, touched, new_label, new_description, preserve_edges, actor)

        logger.info(
            "Merged %d nodes into %s (preserved=%d removed=%d)",
            len(ids),
            result.merged_node.id,
            result.edges_preserved,
            result.edges_removed,
        )
        return result

    def _apply(
        self,
        strategy: MergeStrategy,
        sources: list[Node],
        touched: dict[str, Edge],
        new_label: str | None,
        new_description: str | None,
        preserve_edges: bool,
        actor: dict[str, Any] | None,
    ) -> MergeResult:
        first = sources[0]
        absorbed = union_fields(sources)
        absorbed["properties"] = validate_properties(first.node_type, absorbed["properties"])
        description = new_description or next((n.description for n in sources if n.description), None)
        now = utcnow()

        if strategy == MergeStrategy.CREATE_NEW:
            survivor = self.store.insert_node(
                Node(
                    node_type=first.node_type,
                    label=new_label or f"{first.label} (Merged)",
                    description=description,
                    source_system=first.source_system,
                    **absorbed,
                )
            )
            retired = sources
        else:
            survivor = self.store.update_node(
                replace(
                    first,
                    label=new_label or first.label,
                    description=description,
                    updated_at=now,
                    **absorbed,
                ),
                first.version,
            )
            retired = sources[1:]

        retired_ids = {n.id for n in retired}

        def moved(node_id: str) -> str:
            return survivor.id if node_id in retired_ids else node_id

        # Survivor-only edges first so redirected duplicates collide with them, not the reverse.
        # Only redirected edges are ever dropped.
        ordered = sorted(
            touched.values(),
            key=lambda e: (e.source_node_id in retired_ids or e.target_node_id in retired_ids, e.created_at, e.id),
        )
        seen: set[tuple[str, str, str]] = set()
        preserved = removed = 0
        redirected_ids: list[str] = []
        dropped_ids: list[str] = []
        for edge in ordered:
            src, tgt = moved(edge.source_node_id), moved(edge.target_node_id)
            signature = (edge.edge_type.value, src, tgt)
            redirect = (src, tgt) != (edge.source_node_id, edge.target_node_id)
            if redirect and not preserve_edges and signature in seen:
                self.store.delete_edge(edge.id, edge.version)
                removed += 1
                dropped_ids.append(edge.id)
                continue
            seen.add(signature)
            preserved += 1
            if redirect:
                self.store.update_edge(
                    replace(edge, source_node_id=src, target_node_id=tgt, updated_at=now), edge.version
                )
                redirected_ids.append(edge.id)

        for node in retired:
            self.store.update_node(replace(node, is_active=False, updated_at=now), node.version)

        merged_ids = [n.id for n in sources]
        self.audit.record(
            AuditEventType.NODES_MERGED,
            node_id=survivor.id,
            before={"nodes": [n.to_dict(include_embedding=False) for n in sources]},
            after=survivor.to_dict(include_embedding=False),
            metadata={
                "strategy": strategy.value,
                "sourceNodeIds": merged_ids,
                "mergedNodeId": survivor.id,
                "nodeIds": [*merged_ids, survivor.id],
                "preserveEdges": preserve_edges,
                "edgesPreserved": preserved,
                "edgesRemoved": removed,
                "redirectedEdgeIds": redirected_ids,
                "removedEdgeIds": dropped_ids,
            },
            actor=actor,
        )
        return MergeResult(
            merged_node=survivor,
            merged_node_ids=merged_ids,
            edges_preserved=preserved,
            edges_removed=removed,
        )
