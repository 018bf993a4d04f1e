from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient

from insight_fabric.api import auth
from insight_fabric.api.app import create_app
from insight_fabric.embeddings import StubEmbedder
from insight_fabric.graph.db import InMemoryGraphStore
from insight_fabric.graph.service import GraphService
from insight_fabric.settings import settings

BASE = "/v1/graph"


@pytest.fixture
def client() -> Iterator[TestClient]:
    svc = GraphService(InMemoryGraphStore(), embedder=StubEmbedder(dim=64), snapshot_workers=1)
    with TestClient(create_app(svc)) as c:
        c.service = svc
        yield c


def _node(client: TestClient, node_type: str, label: str, **extra) -> dict:
    r = client.post(f"{BASE}/nodes", json={"nodeType": node_type, "label": label, **extra})
    assert r.status_code == 201, r.text
    return r.json()


def _edge(client: TestClient, source: str, target: str, edge_type: str, **extra) -> dict:
    body = {"sourceNodeId": source, "targetNodeId": target, "edgeType": edge_type, **extra}
    r = client.post(f"{BASE}/edges", json=body)
    assert r.status_code == 201, r.text
    return r.json()


def test_health(client: TestClient) -> None:
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["ok"] is True


def test_create_traverse_and_path(client: TestClient) -> None:
    n1 = _node(client, "content_piece", "X")
    n2 = _node(client, "journalist", "Y")
    edge = _edge(client, n1["id"], n2["id"], "authored_by", weight=1.5)
    assert edge["weight"] == 1.5
    assert n1["isActive"] is True and n1["version"] == 1

    r = client.post(f"{BASE}/traverse", json={"startNodeId": n1["id"], "direction": "both", "maxDepth": 1})
    assert r.status_code == 200
    body = r.json()
    assert {n["id"] for n in body["visitedNodes"]} == {n1["id"], n2["id"]}
    assert body["totalNodesVisited"] == 2

    r = client.post(f"{BASE}/path", json={"startNodeId": n1["id"], "endNodeId": n2["id"], "maxDepth": 6})
    body = r.json()
    assert body["found"] is True
    assert body["path"]["pathLength"] == 1
    assert body["path"]["edgeIds"] == [edge["id"]]


def test_no_path_between_isolated_nodes(client: TestClient) -> None:
    a = _node(client, "topic", "a")
    b = _node(client, "topic", "b")
    r = client.post(f"{BASE}/path", json={"startNodeId": a["id"], "endNodeId": b["id"], "maxDepth": 10})
    assert r.status_code == 200
    assert r.json() == {"found": False, "path": None}

    r = client.post(f"{BASE}/explain-path", json={"startNodeId": a["id"], "endNodeId": b["id"]})
    assert r.json()["path"] is None


def test_explain_path_degrades_without_provider(client: TestClient) -> None:
    a = _node(client, "topic", "a")
    b = _node(client, "topic", "b")
    _edge(client, a["id"], b["id"], "related_to")
    r = client.post(f"{BASE}/explain-path", json={"startNodeId": a["id"], "endNodeId": b["id"]})
    body = r.json()
    assert r.status_code == 200
    assert body["degraded"] is True
    assert body["keyRelationships"][0]["relationship"] == "related_to"


def test_merge_endpoint(client: TestClient) -> None:
    j1 = _node(client, "journalist", "John Doe")
    j2 = _node(client, "journalist", "J. Doe")
    r = client.post(
        f"{BASE}/merge",
        json={
            "sourceNodeIds": [j1["id"], j2["id"]],
            "strategy": "create_new",
            "newLabel": "John Doe (Merged)",
            "preserveEdges": True,
        },
        headers={"X-User-Id": "editor-7"},
    )
    assert r.status_code == 200, r.text
    merged = r.json()["mergedNode"]
    assert merged["isActive"] is True
    assert merged["label"] == "John Doe (Merged)"
    for src in (j1, j2):
        assert client.get(f"{BASE}/nodes/{src['id']}").json()["isActive"] is False

    logs = client.get(f"{BASE}/audit", params={"eventType": "nodes_merged"}).json()
    assert logs["total"] == 1
    assert logs["logs"][0]["actorContext"] == {"userId": "editor-7"}


def test_delete_edge_then_404(client: TestClient) -> None:
    a = _node(client, "topic", "a")
    b = _node(client, "topic", "b")
    edge = _edge(client, a["id"], b["id"], "related_to")

    assert client.delete(f"{BASE}/edges/{edge['id']}").status_code == 204
    r = client.get(f"{BASE}/edges/{edge['id']}")
    assert r.status_code == 404
    body = r.json()
    assert body["ok"] is False
    assert body["error_code"] == "NOT_FOUND"


def test_error_envelopes(client: TestClient) -> None:
    r = client.post(f"{BASE}/nodes", json={"nodeType": "planet", "label": "Mars"})
    assert r.status_code == 400
    assert r.json()["error_code"] == "VALIDATION_ERROR"
    assert "allowed" in r.json()["details"]

    r = client.post(f"{BASE}/nodes", json={"label": "no type"})
    assert r.status_code == 422
    assert r.json()["details"]["errors"]

    a = _node(client, "topic", "a")
    r = client.post(f"{BASE}/edges", json={"sourceNodeId": a["id"], "targetNodeId": "nope", "edgeType": "related_to"})
    assert r.status_code == 400

    r = client.post(f"{BASE}/traverse", json={"startNodeId": a["id"], "maxDepth": 11})
    assert r.status_code == 400

    assert client.get(f"{BASE}/nodes/missing").status_code == 404
    assert client.post(f"{BASE}/embeddings", json={"nodeIds": ["x"] * 101}).status_code == 422


def test_node_update_list_and_delete(client: TestClient) -> None:
    a = _node(client, "journalist", "Alice", tags=["tech"])
    _node(client, "topic", "AI")

    r = client.patch(f"{BASE}/nodes/{a['id']}", json={"label": "Alice B."})
    assert r.status_code == 200
    assert r.json()["label"] == "Alice B."
    assert r.json()["tags"] == ["tech"]
    assert r.json()["version"] == 2

    listed = client.get(f"{BASE}/nodes", params={"nodeTypes": "journalist,topic", "sortBy": "label", "sortOrder": "asc"})
    assert [n["label"] for n in listed.json()["nodes"]] == ["AI", "Alice B."]

    assert client.delete(f"{BASE}/nodes/{a['id']}").status_code == 204
    active = client.get(f"{BASE}/nodes", params={"isActive": "true"}).json()
    assert active["total"] == 1

    assert client.get(f"{BASE}/nodes", params={"limit": 500}).status_code == 400


def test_connections_and_neighbors(client: TestClient) -> None:
    a = _node(client, "organization", "Acme")
    b = _node(client, "user", "Bea")
    _edge(client, b["id"], a["id"], "belongs_to")

    conn = client.get(f"{BASE}/nodes/{a['id']}/connections").json()
    assert len(conn["incomingEdges"]) == 1
    assert conn["outgoingEdges"] == []
    assert [n["id"] for n in conn["neighbors"]] == [b["id"]]

    nb = client.get(f"{BASE}/nodes/{a['id']}/neighbors", params={"direction": "outgoing"}).json()
    assert nb["count"] == 0


def test_snapshots_metrics_and_search(client: TestClient) -> None:
    a = _node(client, "topic", "AI regulation")
    b = _node(client, "topic", "Organic farming")
    _edge(client, a["id"], b["id"], "contrasts_with")

    r = client.post(f"{BASE}/snapshots", json={"name": "baseline"})
    assert r.status_code == 201
    snap_id = r.json()["id"]
    client.service.snapshots.wait(snap_id, timeout=5)
    snap = client.get(f"{BASE}/snapshots/{snap_id}").json()
    assert snap["status"] == "complete"
    assert snap["capturedNodeCount"] == 2

    assert client.post(f"{BASE}/snapshots/{snap_id}/regenerate").status_code == 200
    client.service.snapshots.wait(snap_id, timeout=5)
    assert client.get(f"{BASE}/snapshots", params={"status": "complete"}).json()["total"] == 1

    r = client.post(f"{BASE}/metrics/compute", json={})
    assert r.status_code == 200
    assert r.json()["clustersIdentified"] == 1
    assert client.get(f"{BASE}/metrics").json()["clusterCount"] == 1

    gen = client.post(f"{BASE}/embeddings", json={}).json()
    assert gen["generated"] == 2
    r = client.post(f"{BASE}/search", json={"query": "AI regulation", "threshold": 0.99})
    body = r.json()
    assert body["count"] == 1
    assert body["results"][0]["node"]["id"] == a["id"]

    assert client.post(f"{BASE}/search", json={}).status_code == 400

    stats = client.get(f"{BASE}/stats").json()
    assert stats["totalNodes"] == 2
    assert stats["lastMetricsComputed"] is not None


def test_query_endpoint(client: TestClient) -> None:
    _node(client, "journalist", "Alice", properties={"outlet": "Daily"})
    _node(client, "journalist", "Bob", properties={"outlet": "Weekly"})
    r = client.post(
        f"{BASE}/query",
        json={"nodeFilters": [{"field": "properties.outlet", "operator": "equals", "value": "Daily"}], "groupBy": "node_type"},
    )
    assert r.status_code == 200
    body = r.json()
    assert [n["label"] for n in body["nodes"]] == ["Alice"]
    assert body["aggregations"] == {"node_type": {"journalist": 1}}


def test_api_key_is_enforced(client: TestClient, monkeypatch) -> None:
    monkeypatch.setattr(auth.settings, "api_key", "secret")
    r = client.get(f"{BASE}/stats")
    assert r.status_code == 401
    assert r.json()["error_code"] == "UNAUTHORIZED"
    assert client.get(f"{BASE}/stats", headers={"X-API-Key": "secret"}).status_code == 200
    assert client.get("/health").status_code == 200


def test_page_sizes_follow_settings(client: TestClient) -> None:
    _node(client, "topic", "AI")

    assert client.get(f"{BASE}/nodes").json()["limit"] == settings.default_page_size
    audit = client.get(f"{BASE}/audit").json()
    assert audit["limit"] == settings.audit_page_size
    assert audit["total"] == 1

    too_many = settings.max_page_size + 1
    for path in ("/audit", "/edges"):
        r = client.get(f"{BASE}{path}", params={"limit": too_many})
        assert r.status_code == 400
        assert r.json()["error_code"] == "VALIDATION_ERROR"
    assert client.get(f"{BASE}/audit", params={"offset": -1}).status_code == 400
