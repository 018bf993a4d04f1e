from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any

from ..errors import NotFoundError, ValidationError
from .audit import AuditLog
from .db.base import GraphStore
from .listing import check_page, sort_and_page
from .locks import LockManager, conflict_retry
from .models import AuditEventType, Edge, EdgeType, Node, coerce_enum, utcnow
from .nodes import check_confidence

logger = logging.getLogger(__name__)

MAX_EDGE_WEIGHT = 1000.0

EDGE_SORT_KEYS = {
    "created_at": lambda e: e.created_at,
    "weight": lambda e: e.weight,
}

UPDATABLE_EDGE_FIELDS = {
    "label",
    "description",
    "weight",
    "is_bidirectional",
    "properties",
    "confidence_score",
    "is_active",
}


def check_weight(value: Any) -> float:
    try:
        weight = float(value)
    except (TypeError, ValueError) as e:
        raise ValidationError("weight must be a number", details={"field": "weight"}) from e
    if not 0.0 <= weight <= MAX_EDGE_WEIGHT:
        raise ValidationError(
            f"weight must be within [0, {MAX_EDGE_WEIGHT:g}]", details={"field": "weight"}
        )
    return weight


class EdgeRegistry:
    """Edge lifecycle. Endpoints are validated once, at creation."""

    def __init__(
        self,
        store: GraphStore,
        audit: AuditLog,
        locks: LockManager,
        *,
        conflict_retries: int = 3,
        max_page_size: int = 100,
    ):
        self.store = store
        self.audit = audit
        self.locks = locks
        self.max_page_size = max_page_size
        self._retry = conflict_retry(conflict_retries)

    def create(
        self,
        source_node_id: str,
        target_node_id: str,
        edge_type: str | EdgeType,
        label: str | None = None,
        description: str | None = None,
        weight: float | None = None,
        is_bidirectional: bool = False,
        properties: dict[str, Any] | None = None,
        confidence_score: float | None = None,
        *,
        actor: dict[str, Any] | None = None,
    ) -> Edge:
        etype = coerce_enum(EdgeType, edge_type, "edgeType")
        edge = Edge(
            source_node_id=source_node_id,
            target_node_id=target_node_id,
            edge_type=etype,
            label=label,
            description=description,
            weight=check_weight(1.0 if weight is None else weight),
            is_bidirectional=bool(is_bidirectional),
            properties=dict(properties or {}),
            confidence_score=check_confidence(1.0 if confidence_score is None else confidence_score),
        )
        # Holding both endpoints keeps a concurrent merge from retiring them mid-create.
        with self.locks.hold([source_node_id, target_node_id]):
            endpoints = self.store.get_nodes([source_node_id, target_node_id])
            for role, nid in (("source", source_node_id), ("target", target_node_id)):
                node = endpoints.get(nid)
                if node is None:
                    raise ValidationError(
                        f"{role} node does not exist: {nid}", details={"field": f"{role}NodeId", "id": nid}
                    )
                if not node.is_active:
                    raise ValidationError(
                        f"{role} node is inactive: {nid}", details={"field": f"{role}NodeId", "id": nid}
                    )
            stored = self.store.insert_edge(edge)
            self.audit.record(
                AuditEventType.EDGE_CREATED,
                edge_id=stored.id,
                after=stored.to_dict(),
                metadata={"sourceNodeId": source_node_id, "targetNodeId": target_node_id},
                actor=actor,
            )
        logger.info("Created edge %s %s -[%s]-> %s", stored.id, source_node_id, etype.value, target_node_id)
        return stored

    def get(self, edge_id: str) -> Edge:
        edge = self.store.get_edge(edge_id)
        if edge is None:
            raise NotFoundError("edge", edge_id)
        return edge

    def get_with_nodes(self, edge_id: str) -> tuple[Edge, Node, Node]:
        edge = self.get(edge_id)
        endpoints = self.store.get_nodes([edge.source_node_id, edge.target_node_id])
        for nid in (edge.source_node_id, edge.target_node_id):
            if nid not in endpoints:
                raise NotFoundError("node", nid)
        return edge, endpoints[edge.source_node_id], endpoints[edge.target_node_id]

    def update(self, edge_id: str, fields: dict[str, Any], *, actor: dict[str, Any] | None = None) -> Edge:
        unknown = set(fields) - UPDATABLE_EDGE_FIELDS
        if unknown:
            raise ValidationError(f"fields not updatable: {sorted(unknown)}", details={"fields": sorted(unknown)})
        with self.locks.hold([edge_id]):
            return self._retry(self._update_once)(edge_id, fields, actor)

    def _update_once(self, edge_id: str, fields: dict[str, Any], actor: dict[str, Any] | None) -> Edge:
        current = self.get(edge_id)
        changes: dict[str, Any] = {}
        for key in ("label", "description"):
            if key in fields:
                changes[key] = fields[key]
        if "weight" in fields:
            changes["weight"] = check_weight(fields["weight"])
        if "is_bidirectional" in fields:
            changes["is_bidirectional"] = bool(fields["is_bidirectional"])
        if "properties" in fields:
            changes["properties"] = dict(fields["properties"] or {})
        if "confidence_score" in fields:
            changes["confidence_score"] = check_confidence(fields["confidence_score"])
        if "is_active" in fields:
            changes["is_active"] = bool(fields["is_active"])

        stored = self.store.update_edge(replace(current, **changes, updated_at=utcnow()), current.version)
        self.audit.record(
            AuditEventType.EDGE_UPDATED,
            edge_id=edge_id,
            before=current.to_dict(),
            after=stored.to_dict(),
            metadata={"fields": sorted(changes)},
            actor=actor,
        )
        return stored

    def delete(self, edge_id: str, *, actor: dict[str, Any] | None = None) -> None:
        """Remove the edge record; later lookups raise NotFoundError."""
        with self.locks.hold([edge_id]):
            current = self.get(edge_id)
            if not self.store.delete_edge(edge_id):
                raise NotFoundError("edge", edge_id)
            self.audit.record(
                AuditEventType.EDGE_DELETED,
                edge_id=edge_id,
                before=current.to_dict(),
                actor=actor,
            )
        logger.info("Deleted edge %s", edge_id)

    def list(
        self,
        *,
        edge_types: list[str] | None = None,
        node_id: str | None = None,
        source_node_id: str | None = None,
        target_node_id: str | None = None,
        min_weight: float | None = None,
        max_weight: float | None = None,
        is_active: bool | None = None,
        is_bidirectional: bool | None = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[Edge], int]:
        check_page(limit, offset, max_limit=self.max_page_size)
        if sort_by not in EDGE_SORT_KEYS:
            raise ValidationError(f"invalid sortBy: {sort_by}", details={"allowed": sorted(EDGE_SORT_KEYS)})
        if sort_order not in ("asc", "desc"):
            raise ValidationError(f"invalid sortOrder: {sort_order}")
        types = [coerce_enum(EdgeType, t, "edgeTypes").value for t in edge_types or []]

        if node_id is not None:
            edges = self.store.edges_of(node_id, is_active=is_active)
            if types:
                edges = [e for e in edges if e.edge_type.value in types]
        else:
            edges = self.store.list_edges(edge_types=types or None, is_active=is_active)

        matched = [
            e
            for e in edges
            if (source_node_id is None or e.source_node_id == source_node_id)
            and (target_node_id is None or e.target_node_id == target_node_id)
            and (min_weight is None or e.weight >= min_weight)
            and (max_weight is None or e.weight <= max_weight)
            and (is_bidirectional is None or e.is_bidirectional == is_bidirectional)
        ]
        return sort_and_page(
            matched,
            key=EDGE_SORT_KEYS[sort_by],
            descending=sort_order == "desc",
            limit=limit,
            offset=offset,
        )
