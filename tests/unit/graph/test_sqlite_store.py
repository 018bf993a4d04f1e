from pathlib import Path

import pytest

from insight_fabric.errors import ConflictError, NotFoundError
from insight_fabric.graph.db import SQLiteGraphStore, build_store
from insight_fabric.graph.models import AuditEventType, AuditLogEntry, Edge, EdgeType, Node, NodeType, Snapshot
from insight_fabric.graph.service import GraphService


def test_node_and_edge_roundtrip(tmp_path: Path) -> None:
    store = SQLiteGraphStore(str(tmp_path / "graph.sqlite"))
    a = store.insert_node(Node(node_type=NodeType.JOURNALIST, label="A", tags=["x"], properties={"outlet": "D"}))
    b = store.insert_node(Node(node_type=NodeType.TOPIC, label="B"))
    e = store.insert_edge(Edge(source_node_id=a.id, target_node_id=b.id, edge_type=EdgeType.COVERS, weight=2.5))

    got = store.get_node(a.id)
    assert got.tags == ["x"]
    assert got.properties == {"outlet": "D"}
    assert store.get_edge(e.id).weight == 2.5
    assert [x.id for x in store.edges_of(b.id)] == [e.id]
    assert [x.id for x in store.list_nodes(node_types=["topic"])] == [b.id]


def test_versioned_update(tmp_path: Path) -> None:
    store = SQLiteGraphStore(str(tmp_path / "graph.sqlite"))
    node = store.insert_node(Node(node_type=NodeType.TOPIC, label="T"))

    node.label = "T2"
    stored = store.update_node(node, expected_version=1)
    assert stored.version == 2

    with pytest.raises(ConflictError):
        store.update_node(node, expected_version=1)
    with pytest.raises(NotFoundError):
        store.update_node(Node(node_type=NodeType.TOPIC, label="ghost"), expected_version=1)


def test_transaction_rolls_back(tmp_path: Path) -> None:
    store = SQLiteGraphStore(str(tmp_path / "graph.sqlite"))
    with pytest.raises(RuntimeError):
        with store.transaction():
            store.insert_node(Node(node_type=NodeType.TOPIC, label="lost"))
            raise RuntimeError("abort")
    assert store.list_nodes() == []


def test_snapshot_audit_and_metrics_persist(tmp_path: Path) -> None:
    path = str(tmp_path / "graph.sqlite")
    store = SQLiteGraphStore(path)
    snap = Snapshot(name="s", nodes={"n": {"id": "n", "label": "x"}})
    store.save_snapshot(snap)
    store.append_audit(AuditLogEntry(event_type=AuditEventType.SNAPSHOT_CREATED, snapshot_id=snap.id))

    reopened = SQLiteGraphStore(path)
    assert reopened.get_snapshot(snap.id).nodes == {"n": {"id": "n", "label": "x"}}
    assert reopened.list_audit()[0].snapshot_id == snap.id
    assert reopened.latest_metrics() is None


def test_service_over_sqlite(tmp_path: Path) -> None:
    svc = GraphService(build_store("sqlite", sqlite_path=str(tmp_path / "g.sqlite")), snapshot_workers=1)
    try:
        j1 = svc.nodes.create("journalist", "John Doe")
        j2 = svc.nodes.create("journalist", "J. Doe")
        pub = svc.nodes.create("publication", "Daily")
        svc.edges.create(j1.id, pub.id, "belongs_to")
        svc.edges.create(j2.id, pub.id, "belongs_to")

        res = svc.merge.merge([j1.id, j2.id], preserve_edges=False)
        assert (res.edges_preserved, res.edges_removed) == (1, 1)
        assert svc.paths.find_path(res.merged_node.id, pub.id).path_length == 1

        snap = svc.snapshots.wait(svc.snapshots.create("after merge").id, timeout=5)
        assert snap.captured_node_count == 2
    finally:
        svc.close()


def test_unknown_backend() -> None:
    with pytest.raises(ValueError):
        build_store("cassandra")
