from __future__ import annotations

import logging
from typing import Any

from .db.base import GraphStore
from .models import AuditEventType, AuditLogEntry, coerce_enum

logger = logging.getLogger(__name__)


class AuditLog:
    """Append-only record of structural mutations."""

    def __init__(self, store: GraphStore):
        self.store = store

    def record(
        self,
        event_type: AuditEventType,
        *,
        node_id: str | None = None,
        edge_id: str | None = None,
        snapshot_id: str | None = None,
        before: dict[str, Any] | None = None,
        after: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
        actor: dict[str, Any] | None = None,
    ) -> AuditLogEntry:
        entry = AuditLogEntry(
            event_type=event_type,
            node_id=node_id,
            edge_id=edge_id,
            snapshot_id=snapshot_id,
            before_state=before,
            after_state=after,
            metadata=dict(metadata or {}),
            actor_context=dict(actor or {}),
        )
        self.store.append_audit(entry)
        logger.debug("audit %s node=%s edge=%s snapshot=%s", event_type.value, node_id, edge_id, snapshot_id)
        return entry

    def list(
        self,
        *,
        event_type: str | None = None,
        node_id: str | None = None,
        edge_id: str | None = None,
        snapshot_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[AuditLogEntry], int]:
        """Entries newest first, plus the total before pagination."""
        wanted = coerce_enum(AuditEventType, event_type, "eventType") if event_type else None
        entries = [
            e
            for e in self.store.list_audit()
            if (wanted is None or e.event_type == wanted)
            and (node_id is None or e.node_id == node_id or node_id in e.metadata.get("nodeIds", ()))
            and (edge_id is None or e.edge_id == edge_id)
            and (snapshot_id is None or e.snapshot_id == snapshot_id)
        ]
        return entries[offset : offset + limit], len(entries)
