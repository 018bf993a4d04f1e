from __future__ import annotations

import json
import os
import sqlite3
import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager

from ...errors import ConflictError, NotFoundError
from ..models import AuditLogEntry, Edge, GraphMetrics, Node, Snapshot
from .base import GraphStore

SCHEMA = """
PRAGMA journal_mode=WAL;

CREATE TABLE IF NOT EXISTS nodes (
  id TEXT PRIMARY KEY,
  node_type TEXT NOT NULL,
  is_active INTEGER NOT NULL,
  version INTEGER NOT NULL,
  doc_json TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS edges (
  id TEXT PRIMARY KEY,
  source_node_id TEXT NOT NULL,
  target_node_id TEXT NOT NULL,
  edge_type TEXT NOT NULL,
  is_active INTEGER NOT NULL,
  version INTEGER NOT NULL,
  doc_json TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS snapshots (
  id TEXT PRIMARY KEY,
  created_at TEXT NOT NULL,
  doc_json TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS audit_log (
  seq INTEGER PRIMARY KEY AUTOINCREMENT,
  id TEXT NOT NULL UNIQUE,
  doc_json TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS graph_metrics (
  seq INTEGER PRIMARY KEY AUTOINCREMENT,
  doc_json TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_nodes_type_active ON nodes(node_type, is_active);
CREATE INDEX IF NOT EXISTS idx_edges_source ON edges(source_node_id);
CREATE INDEX IF NOT EXISTS idx_edges_target ON edges(target_node_id);
CREATE INDEX IF NOT EXISTS idx_edges_type_active ON edges(edge_type, is_active);
"""


def _placeholders(n: int) -> str:
    return ",".join("?" * n)


class SQLiteGraphStore(GraphStore):
    """SQLite-backed store; records are kept as JSON documents.

    Each call opens its own connection unless the calling thread is inside
    `transaction()`, in which case the transaction's connection is reused.
    """

    def __init__(self, path: str):
        self.path = os.path.expanduser(path)
        self._local = threading.local()
        parent = os.path.dirname(self.path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        self.init()

    def connect(self) -> sqlite3.Connection:
        con = sqlite3.connect(self.path, timeout=30.0, isolation_level=None)
        con.execute("PRAGMA foreign_keys=ON")
        return con

    def init(self) -> None:
        con = self.connect()
        try:
            con.executescript(SCHEMA)
        finally:
            con.close()

    @contextmanager
    def _con(self) -> Iterator[sqlite3.Connection]:
        current = getattr(self._local, "con", None)
        if current is not None:
            yield current
            return
        con = self.connect()
        try:
            yield con
        finally:
            con.close()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        if getattr(self._local, "con", None) is not None:
            # nested: join the outer batch
            yield
            return
        con = self.connect()
        self._local.con = con
        try:
            con.execute("BEGIN IMMEDIATE")
            try:
                yield
            except BaseException:
                con.execute("ROLLBACK")
                raise
            con.execute("COMMIT")
        finally:
            self._local.con = None
            con.close()

    # --- Nodes ---

    def insert_node(self, node: Node) -> Node:
        with self._con() as con:
            try:
                con.execute(
                    "INSERT INTO nodes(id, node_type, is_active, version, doc_json) VALUES (?,?,?,?,?)",
                    (node.id, node.node_type.value, int(node.is_active), node.version, json.dumps(node.to_dict())),
                )
            except sqlite3.IntegrityError as e:
                raise ConflictError(f"node already exists: {node.id}") from e
        return Node.from_dict(node.to_dict())

    def get_node(self, node_id: str) -> Node | None:
        with self._con() as con:
            row = con.execute("SELECT doc_json FROM nodes WHERE id=?", (node_id,)).fetchone()
        return Node.from_dict(json.loads(row[0])) if row else None

    def get_nodes(self, node_ids: Iterable[str]) -> dict[str, Node]:
        ids = list(dict.fromkeys(node_ids))
        if not ids:
            return {}
        with self._con() as con:
            rows = con.execute(
                f"SELECT doc_json FROM nodes WHERE id IN ({_placeholders(len(ids))})", ids
            ).fetchall()
        out = (Node.from_dict(json.loads(r[0])) for r in rows)
        return {n.id: n for n in out}

    def update_node(self, node: Node, expected_version: int) -> Node:
        stored = Node.from_dict(node.to_dict())
        stored.version = expected_version + 1
        with self._con() as con:
            cur = con.execute(
                "UPDATE nodes SET node_type=?, is_active=?, version=?, doc_json=? WHERE id=? AND version=?",
                (
                    stored.node_type.value,
                    int(stored.is_active),
                    stored.version,
                    json.dumps(stored.to_dict()),
                    stored.id,
                    expected_version,
                ),
            )
            if cur.rowcount == 0:
                row = con.execute("SELECT version FROM nodes WHERE id=?", (node.id,)).fetchone()
                if row is None:
                    raise NotFoundError("node", node.id)
                raise ConflictError(
                    f"node {node.id} changed concurrently",
                    details={"expected": expected_version, "actual": row[0]},
                )
        return stored

    def list_nodes(
        self,
        *,
        node_types: Iterable[str] | None = None,
        is_active: bool | None = None,
    ) -> list[Node]:
        sql = "SELECT doc_json FROM nodes WHERE 1=1"
        params: list = []
        types = list(node_types or [])
        if types:
            sql += f" AND node_type IN ({_placeholders(len(types))})"
            params.extend(types)
        if is_active is not None:
            sql += " AND is_active=?"
            params.append(int(is_active))
        with self._con() as con:
            rows = con.execute(sql, params).fetchall()
        return [Node.from_dict(json.loads(r[0])) for r in rows]

    # --- Edges ---

    def insert_edge(self, edge: Edge) -> Edge:
        with self._con() as con:
            try:
                con.execute(
                    """
                    INSERT INTO edges(id, source_node_id, target_node_id, edge_type, is_active, version, doc_json)
                    VALUES (?,?,?,?,?,?,?)
                    """,
                    (
                        edge.id,
                        edge.source_node_id,
                        edge.target_node_id,
                        edge.edge_type.value,
                        int(edge.is_active),
                        edge.version,
                        json.dumps(edge.to_dict()),
                    ),
                )
            except sqlite3.IntegrityError as e:
                raise ConflictError(f"edge already exists: {edge.id}") from e
        return Edge.from_dict(edge.to_dict())

    def get_edge(self, edge_id: str) -> Edge | None:
        with self._con() as con:
            row = con.execute("SELECT doc_json FROM edges WHERE id=?", (edge_id,)).fetchone()
        return Edge.from_dict(json.loads(row[0])) if row else None

    def update_edge(self, edge: Edge, expected_version: int) -> Edge:
        stored = Edge.from_dict(edge.to_dict())
        stored.version = expected_version + 1
        with self._con() as con:
            cur = con.execute(
                """
                UPDATE edges SET source_node_id=?, target_node_id=?, edge_type=?, is_active=?, version=?, doc_json=?
                WHERE id=? AND version=?
                """,
                (
                    stored.source_node_id,
                    stored.target_node_id,
                    stored.edge_type.value,
                    int(stored.is_active),
                    stored.version,
                    json.dumps(stored.to_dict()),
                    stored.id,
                    expected_version,
                ),
            )
            if cur.rowcount == 0:
                row = con.execute("SELECT version FROM edges WHERE id=?", (edge.id,)).fetchone()
                if row is None:
                    raise NotFoundError("edge", edge.id)
                raise ConflictError(
                    f"edge {edge.id} changed concurrently",
                    details={"expected": expected_version, "actual": row[0]},
                )
        return stored

    def delete_edge(self, edge_id: str, expected_version: int | None = None) -> bool:
        with self._con() as con:
            if expected_version is None:
                cur = con.execute("DELETE FROM edges WHERE id=?", (edge_id,))
                return cur.rowcount > 0
            cur = con.execute("DELETE FROM edges WHERE id=? AND version=?", (edge_id, expected_version))
            if cur.rowcount > 0:
                return True
            row = con.execute("SELECT version FROM edges WHERE id=?", (edge_id,)).fetchone()
            if row is None:
                return False
            raise ConflictError(f"edge {edge_id} changed concurrently")

    def edges_of(self, node_id: str, *, is_active: bool | None = None) -> list[Edge]:
        sql = "SELECT doc_json FROM edges WHERE (source_node_id=? OR target_node_id=?)"
        params: list = [node_id, node_id]
        if is_active is not None:
            sql += " AND is_active=?"
            params.append(int(is_active))
        with self._con() as con:
            rows = con.execute(sql, params).fetchall()
        return [Edge.from_dict(json.loads(r[0])) for r in rows]

    def list_edges(
        self,
        *,
        edge_types: Iterable[str] | None = None,
        is_active: bool | None = None,
    ) -> list[Edge]:
        sql = "SELECT doc_json FROM edges WHERE 1=1"
        params: list = []
        types = list(edge_types or [])
        if types:
            sql += f" AND edge_type IN ({_placeholders(len(types))})"
            params.extend(types)
        if is_active is not None:
            sql += " AND is_active=?"
            params.append(int(is_active))
        with self._con() as con:
            rows = con.execute(sql, params).fetchall()
        return [Edge.from_dict(json.loads(r[0])) for r in rows]

    # --- Snapshots ---

    def save_snapshot(self, snapshot: Snapshot) -> None:
        with self._con() as con:
            con.execute(
                """
                INSERT INTO snapshots(id, created_at, doc_json) VALUES (?,?,?)
                ON CONFLICT(id) DO UPDATE SET doc_json=excluded.doc_json
                """,
                (snapshot.id, snapshot.created_at.isoformat(), json.dumps(snapshot.to_record())),
            )

    def get_snapshot(self, snapshot_id: str) -> Snapshot | None:
        with self._con() as con:
            row = con.execute("SELECT doc_json FROM snapshots WHERE id=?", (snapshot_id,)).fetchone()
        return Snapshot.from_record(json.loads(row[0])) if row else None

    def list_snapshots(self) -> list[Snapshot]:
        with self._con() as con:
            rows = con.execute("SELECT doc_json FROM snapshots ORDER BY created_at DESC, id DESC").fetchall()
        return [Snapshot.from_record(json.loads(r[0])) for r in rows]

    # --- Audit ---

    def append_audit(self, entry: AuditLogEntry) -> None:
        with self._con() as con:
            con.execute(
                "INSERT INTO audit_log(id, doc_json) VALUES (?,?)",
                (entry.id, json.dumps(entry.to_dict())),
            )

    def list_audit(self) -> list[AuditLogEntry]:
        with self._con() as con:
            rows = con.execute("SELECT doc_json FROM audit_log ORDER BY seq DESC").fetchall()
        return [AuditLogEntry.from_dict(json.loads(r[0])) for r in rows]

    # --- Metrics ---

    def save_metrics(self, metrics: GraphMetrics) -> None:
        with self._con() as con:
            con.execute("INSERT INTO graph_metrics(doc_json) VALUES (?)", (json.dumps(metrics.to_dict()),))

    def latest_metrics(self) -> GraphMetrics | None:
        with self._con() as con:
            row = con.execute("SELECT doc_json FROM graph_metrics ORDER BY seq DESC LIMIT 1").fetchone()
        return GraphMetrics.from_dict(json.loads(row[0])) if row else None
