import time

import pytest

from insight_fabric.errors import NotFoundError, ValidationError
from insight_fabric.graph.db import InMemoryGraphStore
from insight_fabric.graph.service import GraphService


class CannedReasoner:
    def __init__(self, payload: dict):
        self.payload = payload
        self.calls = 0

    def explain(self, path_nodes, path_edges):
        self.calls += 1
        return self.payload


class SlowReasoner:
    def explain(self, path_nodes, path_edges):
        time.sleep(1.0)
        return {"explanation": "too late", "confidence": 0.9}


class BrokenReasoner:
    def explain(self, path_nodes, path_edges):
        raise RuntimeError("model unavailable")


def _with_reasoner(reasoner, timeout: float = 5.0) -> GraphService:
    return GraphService(InMemoryGraphStore(), reasoning=reasoner, reasoning_timeout_s=timeout, snapshot_workers=1)


def _authored(service: GraphService):
    n1 = service.nodes.create("content_piece", "X")
    n2 = service.nodes.create("journalist", "Y")
    edge = service.edges.create(n1.id, n2.id, "authored_by", weight=1.5)
    return n1, n2, edge


def test_single_edge_path(service: GraphService) -> None:
    n1, n2, edge = _authored(service)

    path = service.paths.find_path(n1.id, n2.id, max_depth=6)

    assert path is not None
    assert path.path_length == 1
    assert path.edge_ids == [edge.id]
    assert path.node_ids == [n1.id, n2.id]
    assert path.total_weight == 1.5


def test_disconnected_nodes_have_no_path(service: GraphService) -> None:
    a = service.nodes.create("topic", "a")
    b = service.nodes.create("topic", "b")
    for depth in (1, 6, 10):
        assert service.paths.find_path(a.id, b.id, max_depth=depth) is None


def test_same_start_and_end(service: GraphService) -> None:
    a = service.nodes.create("topic", "a")
    path = service.paths.find_path(a.id, a.id)
    assert path.node_ids == [a.id]
    assert path.path_length == 0


def test_cheapest_path_wins_within_hop_bound(service: GraphService) -> None:
    a, b, c, d = (service.nodes.create("topic", x) for x in "abcd")
    service.edges.create(a.id, d.id, "related_to", weight=10.0)
    service.edges.create(a.id, b.id, "related_to", weight=1.0)
    service.edges.create(b.id, c.id, "related_to", weight=1.0)
    service.edges.create(c.id, d.id, "related_to", weight=1.0)

    cheap = service.paths.find_path(a.id, d.id, max_depth=6)
    assert [n.label for n in cheap.nodes] == ["a", "b", "c", "d"]
    assert cheap.total_weight == 3.0

    bounded = service.paths.find_path(a.id, d.id, max_depth=2)
    assert bounded.path_length == 1
    assert bounded.total_weight == 10.0


def test_deeper_bound_never_costs_more(service: GraphService) -> None:
    nodes = [service.nodes.create("topic", f"n{i}") for i in range(6)]
    weights = [4.0, 1.0, 2.0, 0.5, 3.0]
    for (a, b), w in zip(zip(nodes, nodes[1:]), weights):
        service.edges.create(a.id, b.id, "leads_to", weight=w)
    service.edges.create(nodes[0].id, nodes[5].id, "leads_to", weight=20.0)
    service.edges.create(nodes[1].id, nodes[4].id, "leads_to", weight=9.0)

    costs = []
    for depth in range(1, 7):
        path = service.paths.find_path(nodes[0].id, nodes[5].id, max_depth=depth)
        assert path is not None and path.path_length <= depth
        costs.append(path.total_weight)
    assert costs == sorted(costs, reverse=True)


def test_paths_ignore_edge_direction_and_inactive_nodes(service: GraphService) -> None:
    a, b, c = (service.nodes.create("topic", x) for x in "abc")
    service.edges.create(b.id, a.id, "cites")
    service.edges.create(c.id, b.id, "cites")
    assert service.paths.find_path(a.id, c.id).path_length == 2

    service.nodes.soft_delete(b.id)
    assert service.paths.find_path(a.id, c.id) is None
    with pytest.raises(NotFoundError):
        service.paths.find_path(a.id, b.id)


def test_invalid_depth(service: GraphService) -> None:
    a = service.nodes.create("topic", "a")
    with pytest.raises(ValidationError):
        service.paths.find_path(a.id, a.id, max_depth=0)
    with pytest.raises(ValidationError):
        service.paths.find_path(a.id, a.id, max_depth=11)


def test_explain_path_with_provider() -> None:
    reasoner = CannedReasoner({"explanation": "X was written by Y", "reasoning": ["step"], "confidence": 1.7})
    svc = _with_reasoner(reasoner)
    try:
        n1, n2, _ = _authored(svc)
        out = svc.paths.explain_path(n1.id, n2.id)
    finally:
        svc.close()

    assert out.degraded is False
    assert out.explanation == "X was written by Y"
    assert out.confidence == 1.0
    assert out.key_relationships[0]["relationship"] == "authored_by"
    assert reasoner.calls == 1


def test_explain_path_without_reasoning_skips_provider() -> None:
    reasoner = CannedReasoner({"explanation": "unused"})
    svc = _with_reasoner(reasoner)
    try:
        n1, n2, _ = _authored(svc)
        out = svc.paths.explain_path(n1.id, n2.id, include_reasoning=False)
    finally:
        svc.close()

    assert out.degraded is False
    assert out.explanation is None
    assert reasoner.calls == 0


@pytest.mark.parametrize("reasoner", [SlowReasoner(), BrokenReasoner(), CannedReasoner({"confidence": "high"})])
def test_explain_path_degrades_on_provider_trouble(reasoner) -> None:
    svc = _with_reasoner(reasoner, timeout=0.2)
    try:
        n1, n2, edge = _authored(svc)
        out = svc.paths.explain_path(n1.id, n2.id)
    finally:
        svc.close()

    assert out.degraded is True
    assert out.path.edge_ids == [edge.id]
    assert out.explanation is None


def test_explain_path_without_provider_is_degraded(bare_service: GraphService) -> None:
    n1, n2, _ = _authored(bare_service)
    assert bare_service.paths.explain_path(n1.id, n2.id).degraded is True


def test_explain_path_when_unreachable(service: GraphService) -> None:
    a = service.nodes.create("topic", "a")
    b = service.nodes.create("topic", "b")
    assert service.paths.explain_path(a.id, b.id) is None
