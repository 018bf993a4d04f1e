"""
Node lifecycle for the intelligence graph.

NodeRegistry owns node identity and the active/inactive transition. Every
mutation is written with a version check and recorded in the audit log.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any

from ..errors import NotFoundError, ValidationError
from .audit import AuditLog
from .db.base import GraphStore
from .listing import check_page, sort_and_page
from .locks import LockManager, conflict_retry
from .models import AuditEventType, Edge, Node, NodeType, coerce_enum, unique_strings, utcnow
from .properties import validate_properties

logger = logging.getLogger(__name__)

MAX_LABEL_LENGTH = 500

NODE_SORT_KEYS = {
    "created_at": lambda n: n.created_at,
    "updated_at": lambda n: n.updated_at,
    "label": lambda n: n.label.lower(),
    "centrality_score": lambda n: n.centrality_score,
}

UPDATABLE_NODE_FIELDS = {
    "label",
    "description",
    "tags",
    "categories",
    "properties",
    "confidence_score",
    "is_active",
    "external_id",
    "source_system",
}


def check_label(label: Any) -> str:
    if not isinstance(label, str) or not label.strip():
        raise ValidationError("label must be a non-empty string", details={"field": "label"})
    if len(label) > MAX_LABEL_LENGTH:
        raise ValidationError(
            f"label must be at most {MAX_LABEL_LENGTH} characters", details={"field": "label"}
        )
    return label


def check_confidence(value: Any) -> float:
    try:
        score = float(value)
    except (TypeError, ValueError) as e:
        raise ValidationError("confidenceScore must be a number", details={"field": "confidenceScore"}) from e
    if not 0.0 <= score <= 1.0:
        raise ValidationError("confidenceScore must be within [0, 1]", details={"field": "confidenceScore"})
    return score


def node_matches_search(node: Node, term: str) -> bool:
    t = term.lower()
    return (
        t in node.label.lower()
        or (node.description is not None and t in node.description.lower())
        or any(t in tag.lower() for tag in node.tags)
    )


class NodeRegistry:
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
        node_type: str | NodeType,
        label: str,
        description: str | None = None,
        tags: list[str] | None = None,
        categories: list[str] | None = None,
        properties: dict[str, Any] | None = None,
        confidence_score: float | None = None,
        external_id: str | None = None,
        source_system: str | None = None,
        *,
        actor: dict[str, Any] | None = None,
    ) -> Node:
        ntype = coerce_enum(NodeType, node_type, "nodeType")
        node = Node(
            node_type=ntype,
            label=check_label(label),
            description=description,
            tags=unique_strings(tags),
            categories=unique_strings(categories),
            properties=validate_properties(ntype, properties),
            confidence_score=check_confidence(1.0 if confidence_score is None else confidence_score),
            external_id=external_id,
            source_system=source_system,
        )
        stored = self.store.insert_node(node)
        self.audit.record(
            AuditEventType.NODE_CREATED,
            node_id=stored.id,
            after=stored.to_dict(include_embedding=False),
            actor=actor,
        )
        logger.info("Created node %s (%s)", stored.id, ntype.value)
        return stored

    def get(self, node_id: str) -> Node:
        node = self.store.get_node(node_id)
        if node is None:
            raise NotFoundError("node", node_id)
        return node

    def update(self, node_id: str, fields: dict[str, Any], *, actor: dict[str, Any] | None = None) -> Node:
        """Apply only the supplied fields. Version conflicts are retried."""
        unknown = set(fields) - UPDATABLE_NODE_FIELDS
        if unknown:
            raise ValidationError(f"fields not updatable: {sorted(unknown)}", details={"fields": sorted(unknown)})
        with self.locks.hold([node_id]):
            return self._retry(self._update_once)(node_id, fields, actor)

    def _update_once(self, node_id: str, fields: dict[str, Any], actor: dict[str, Any] | None) -> Node:
        current = self.get(node_id)
        changes: dict[str, Any] = {}
        if "label" in fields:
            changes["label"] = check_label(fields["label"])
        if "description" in fields:
            changes["description"] = fields["description"]
        if "tags" in fields:
            changes["tags"] = unique_strings(fields["tags"])
        if "categories" in fields:
            changes["categories"] = unique_strings(fields["categories"])
        if "properties" in fields:
            changes["properties"] = validate_properties(current.node_type, fields["properties"])
        if "confidence_score" in fields:
            changes["confidence_score"] = check_confidence(fields["confidence_score"])
        if "is_active" in fields:
            changes["is_active"] = bool(fields["is_active"])
        for key in ("external_id", "source_system"):
            if key in fields:
                changes[key] = fields[key]

        updated = replace(current, **changes, updated_at=utcnow())
        stored = self.store.update_node(updated, current.version)
        self.audit.record(
            AuditEventType.NODE_UPDATED,
            node_id=node_id,
            before=current.to_dict(include_embedding=False),
            after=stored.to_dict(include_embedding=False),
            metadata={"fields": sorted(changes)},
            actor=actor,
        )
        return stored

    def soft_delete(self, node_id: str, *, actor: dict[str, Any] | None = None) -> Node:
        """Mark a node inactive. Edges are left untouched. Idempotent."""
        with self.locks.hold([node_id]):
            return self._retry(self._soft_delete_once)(node_id, actor)

    def _soft_delete_once(self, node_id: str, actor: dict[str, Any] | None) -> Node:
        current = self.get(node_id)
        if not current.is_active:
            return current
        stored = self.store.update_node(replace(current, is_active=False, updated_at=utcnow()), current.version)
        self.audit.record(
            AuditEventType.NODE_DELETED,
            node_id=node_id,
            before=current.to_dict(include_embedding=False),
            after=stored.to_dict(include_embedding=False),
            actor=actor,
        )
        logger.info("Soft-deleted node %s", node_id)
        return stored

    def list(
        self,
        *,
        node_types: list[str] | None = None,
        tags: list[str] | None = None,
        categories: list[str] | None = None,
        search: str | None = None,
        is_active: bool | None = None,
        cluster_id: str | None = None,
        source_system: str | None = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[Node], int]:
        check_page(limit, offset, max_limit=self.max_page_size)
        if sort_by not in NODE_SORT_KEYS:
            raise ValidationError(f"invalid sortBy: {sort_by}", details={"allowed": sorted(NODE_SORT_KEYS)})
        if sort_order not in ("asc", "desc"):
            raise ValidationError(f"invalid sortOrder: {sort_order}")
        types = [coerce_enum(NodeType, t, "nodeTypes").value for t in node_types or []]

        nodes = self.store.list_nodes(node_types=types or None, is_active=is_active)
        tag_set = set(tags or [])
        cat_set = set(categories or [])
        term = (search or "").strip()
        matched = [
            n
            for n in nodes
            if (not tag_set or tag_set.intersection(n.tags))
            and (not cat_set or cat_set.intersection(n.categories))
            and (not term or node_matches_search(n, term))
            and (cluster_id is None or n.cluster_id == cluster_id)
            and (source_system is None or n.source_system == source_system)
        ]
        return sort_and_page(
            matched,
            key=NODE_SORT_KEYS[sort_by],
            descending=sort_order == "desc",
            limit=limit,
            offset=offset,
        )

    def connections(self, node_id: str) -> dict[str, Any]:
        """The node with its active incident edges and active neighbours."""
        node = self.get(node_id)
        edges = sorted(self.store.edges_of(node_id, is_active=True), key=lambda e: (e.created_at, e.id))
        incoming: list[Edge] = [e for e in edges if e.target_node_id == node_id]
        outgoing: list[Edge] = [e for e in edges if e.source_node_id == node_id]
        neighbor_ids = list(dict.fromkeys(e.other_end(node_id) for e in edges if e.other_end(node_id) != node_id))
        resolved = self.store.get_nodes(neighbor_ids)
        neighbors = [resolved[i] for i in neighbor_ids if i in resolved and resolved[i].is_active]
        return {
            "node": node,
            "incoming_edges": incoming,
            "outgoing_edges": outgoing,
            "neighbors": neighbors,
        }
