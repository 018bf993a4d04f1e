"""
Point-in-time captures of the live graph, computed in the background.

A snapshot is a job: `pending` when accepted, `computing` while a worker
captures it, then `complete` or `failed`. Callers poll `get()` (or block on
`wait()`); capture errors are recorded on the snapshot, never raised to the
caller that created it.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any

from ..errors import ConflictError, NotFoundError, ValidationError
from .audit import AuditLog
from .db.base import GraphStore
from .listing import check_page, sort_and_page
from .metrics import connected_components, induced_subgraph, summarize
from .models import (
    AuditEventType,
    NodeType,
    Snapshot,
    SnapshotStatus,
    SnapshotType,
    coerce_enum,
    utcnow,
)

logger = logging.getLogger(__name__)

MAX_SNAPSHOT_NAME = 300

# Bookkeeping fields that change on every write without changing content.
DIFF_IGNORED_FIELDS = frozenset({"version", "updatedAt"})

DIFF_METRIC_KEYS = ("totalNodes", "activeNodes", "totalEdges", "activeEdges", "density", "avgDegree", "clusterCount")

SNAPSHOT_SORT_KEYS = {
    "created_at": lambda s: s.created_at,
    "node_count": lambda s: s.captured_node_count,
}


def _field_changes(before: dict[str, Any], after: dict[str, Any]) -> dict[str, dict[str, Any]]:
    changes = {}
    for key in sorted(set(before) | set(after)):
        if key in DIFF_IGNORED_FIELDS:
            continue
        if before.get(key) != after.get(key):
            changes[key] = {"before": before.get(key), "after": after.get(key)}
    return changes


def _diff_docs(
    old: dict[str, dict[str, Any]], new: dict[str, dict[str, Any]]
) -> tuple[list[str], list[str], list[dict[str, Any]]]:
    added = sorted(set(new) - set(old))
    removed = sorted(set(old) - set(new))
    modified = []
    for item_id in sorted(set(old) & set(new)):
        changes = _field_changes(old[item_id], new[item_id])
        if changes:
            modified.append({"id": item_id, "changes": changes})
    return added, removed, modified


def compute_diff(previous: Snapshot, current: Snapshot) -> dict[str, Any]:
    """Structural delta from `previous` to `current` (added/removed by id, modified by field)."""
    nodes_added, nodes_removed, nodes_modified = _diff_docs(previous.nodes, current.nodes)
    edges_added, edges_removed, edges_modified = _diff_docs(previous.edges, current.edges)

    metrics_changes = {}
    before_m, after_m = previous.metrics or {}, current.metrics or {}
    for key in DIFF_METRIC_KEYS:
        b, a = before_m.get(key), after_m.get(key)
        if isinstance(b, (int, float)) and isinstance(a, (int, float)) and a != b:
            metrics_changes[key] = {"before": b, "after": a, "change": a - b}

    return {
        "previousSnapshotId": previous.id,
        "nodesAdded": len(nodes_added),
        "nodesRemoved": len(nodes_removed),
        "nodesModified": len(nodes_modified),
        "edgesAdded": len(edges_added),
        "edgesRemoved": len(edges_removed),
        "edgesModified": len(edges_modified),
        "addedNodeIds": nodes_added,
        "removedNodeIds": nodes_removed,
        "modifiedNodes": nodes_modified,
        "addedEdgeIds": edges_added,
        "removedEdgeIds": edges_removed,
        "modifiedEdges": edges_modified,
        "metricsChanges": metrics_changes,
    }


def diff_is_empty(diff: dict[str, Any]) -> bool:
    return not any(
        diff[k]
        for k in ("addedNodeIds", "removedNodeIds", "modifiedNodes", "addedEdgeIds", "removedEdgeIds", "modifiedEdges")
    )


class SnapshotManager:
    def __init__(self, store: GraphStore, audit: AuditLog, *, workers: int = 2):
        self.store = store
        self.audit = audit
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="snapshot")
        self._guard = threading.RLock()
        self._inflight: dict[str, Future] = {}

    def close(self) -> None:
        self._executor.shutdown(wait=True, cancel_futures=False)

    def create(
        self,
        name: str,
        description: str | None = None,
        snapshot_type: str | SnapshotType = SnapshotType.FULL,
        compute_diff: bool = True,
        node_types: list[str] | None = None,
        *,
        actor: dict[str, Any] | None = None,
    ) -> Snapshot:
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("name must be a non-empty string", details={"field": "name"})
        if len(name) > MAX_SNAPSHOT_NAME:
            raise ValidationError(f"name must be at most {MAX_SNAPSHOT_NAME} characters", details={"field": "name"})
        stype = coerce_enum(SnapshotType, snapshot_type, "snapshotType")
        types = sorted({coerce_enum(NodeType, t, "nodeTypes").value for t in node_types or []}) or None

        snap = Snapshot(
            name=name,
            description=description,
            snapshot_type=stype,
            node_types=types,
            compute_diff=bool(compute_diff) or stype == SnapshotType.INCREMENTAL,
        )
        with self._guard:
            self.store.save_snapshot(snap)
            self.audit.record(
                AuditEventType.SNAPSHOT_CREATED,
                snapshot_id=snap.id,
                after=snap.to_dict(),
                actor=actor,
            )
            self._submit(snap.id)
        logger.info("Snapshot %s (%s) queued", snap.id, snap.scope)
        return snap

    def regenerate(self, snapshot_id: str, *, actor: dict[str, Any] | None = None) -> Snapshot:
        """Reset a snapshot to pending and capture it again."""
        with self._guard:
            snap = self.get(snapshot_id)
            running = self._inflight.get(snapshot_id)
            if running is not None and not running.done():
                raise ConflictError(
                    f"snapshot {snapshot_id} is already being captured",
                    details={"status": snap.status.value},
                )
            before = snap.to_dict()
            snap.status = SnapshotStatus.PENDING
            snap.captured_node_count = snap.captured_edge_count = snap.cluster_count = 0
            snap.metrics = snap.diff = snap.previous_snapshot_id = snap.error_message = None
            snap.nodes, snap.edges = {}, {}
            snap.started_at = snap.completed_at = None
            self.store.save_snapshot(snap)
            self.audit.record(
                AuditEventType.SNAPSHOT_REGENERATED,
                snapshot_id=snap.id,
                before=before,
                after=snap.to_dict(),
                actor=actor,
            )
            self._submit(snap.id)
        logger.info("Snapshot %s re-queued", snap.id)
        return snap

    def _submit(self, snapshot_id: str) -> None:
        # caller holds self._guard
        future = self._executor.submit(self._capture, snapshot_id)
        self._inflight[snapshot_id] = future
        future.add_done_callback(lambda _f, sid=snapshot_id: self._finished(sid, _f))

    def _finished(self, snapshot_id: str, future: Future) -> None:
        with self._guard:
            if self._inflight.get(snapshot_id) is future:
                del self._inflight[snapshot_id]

    def _previous(self, snap: Snapshot) -> Snapshot | None:
        """The nearest older complete snapshot of the same scope."""
        ordered = self.store.list_snapshots()
        ids = [s.id for s in ordered]
        older = ordered[ids.index(snap.id) + 1 :] if snap.id in ids else ordered
        for candidate in older:
            if candidate.status == SnapshotStatus.COMPLETE and candidate.scope == snap.scope:
                return candidate
        return None

    def _capture(self, snapshot_id: str) -> None:
        snap = self.store.get_snapshot(snapshot_id)
        if snap is None:
            return
        snap.status = SnapshotStatus.COMPUTING
        snap.started_at = utcnow()
        self.store.save_snapshot(snap)
        try:
            nodes, edges = induced_subgraph(self.store, snap.node_types)
            clusters = connected_components(nodes, edges)
            snap.nodes = {n.id: n.to_dict(include_embedding=False) for n in nodes}
            snap.edges = {e.id: e.to_dict() for e in edges}
            snap.captured_node_count = len(nodes)
            snap.captured_edge_count = len(edges)
            snap.cluster_count = len(set(clusters.values()))
            snap.metrics = summarize(self.store, nodes, edges, clusters=clusters).to_dict()
            if snap.compute_diff:
                previous = self._previous(snap)
                if previous is not None:
                    snap.previous_snapshot_id = previous.id
                    snap.diff = compute_diff(previous, snap)
            snap.status = SnapshotStatus.COMPLETE
        except Exception as e:
            logger.exception("Snapshot %s failed", snapshot_id)
            snap.status = SnapshotStatus.FAILED
            snap.error_message = str(e) or e.__class__.__name__
        snap.completed_at = utcnow()
        self.store.save_snapshot(snap)
        logger.info(
            "Snapshot %s %s (%d nodes, %d edges)",
            snapshot_id,
            snap.status.value,
            snap.captured_node_count,
            snap.captured_edge_count,
        )

    def get(self, snapshot_id: str) -> Snapshot:
        snap = self.store.get_snapshot(snapshot_id)
        if snap is None:
            raise NotFoundError("snapshot", snapshot_id)
        return snap

    def wait(self, snapshot_id: str, timeout: float | None = None) -> Snapshot:
        """Block until the snapshot's current capture finishes."""
        with self._guard:
            future = self._inflight.get(snapshot_id)
        if future is not None:
            future.result(timeout=timeout)
        return self.get(snapshot_id)

    def list(
        self,
        *,
        status: str | None = None,
        snapshot_type: str | None = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[Snapshot], int]:
        check_page(limit, offset, max_limit=100)
        if sort_by not in SNAPSHOT_SORT_KEYS:
            raise ValidationError(f"invalid sortBy: {sort_by}", details={"allowed": sorted(SNAPSHOT_SORT_KEYS)})
        if sort_order not in ("asc", "desc"):
            raise ValidationError(f"invalid sortOrder: {sort_order}")
        wanted_status = coerce_enum(SnapshotStatus, status, "status") if status else None
        wanted_type = coerce_enum(SnapshotType, snapshot_type, "snapshotType") if snapshot_type else None
        matched = [
            s
            for s in self.store.list_snapshots()
            if (wanted_status is None or s.status == wanted_status)
            and (wanted_type is None or s.snapshot_type == wanted_type)
        ]
        return sort_and_page(
            matched,
            key=SNAPSHOT_SORT_KEYS[sort_by],
            descending=sort_order == "desc",
            limit=limit,
            offset=offset,
        )
