import pytest

from insight_fabric.errors import NotFoundError, ValidationError
from insight_fabric.graph.models import AuditEventType, NodeType
from insight_fabric.graph.service import GraphService


def test_create_node_defaults_and_audit(service: GraphService) -> None:
    node = service.nodes.create("content_piece", "X", tags=["a", "a", "b"], actor={"userId": "u1"})

    assert node.node_type == NodeType.CONTENT_PIECE
    assert node.is_active is True
    assert node.version == 1
    assert node.confidence_score == 1.0
    assert node.tags == ["a", "b"]

    logs, total = service.audit.list(node_id=node.id)
    assert total == 1
    assert logs[0].event_type == AuditEventType.NODE_CREATED
    assert logs[0].actor_context == {"userId": "u1"}


@pytest.mark.parametrize(
    "kwargs",
    [
        {"node_type": "not_a_type", "label": "X"},
        {"node_type": "organization", "label": ""},
        {"node_type": "organization", "label": "   "},
        {"node_type": "organization", "label": "x" * 501},
        {"node_type": "organization", "label": "X", "confidence_score": 1.5},
    ],
)
def test_create_node_rejects_bad_input(service: GraphService, kwargs: dict) -> None:
    with pytest.raises(ValidationError):
        service.nodes.create(**kwargs)
    assert service.store.list_nodes() == []


def test_typed_properties_are_validated(service: GraphService) -> None:
    ok = service.nodes.create("risk_indicator", "Churn", properties={"severity": "high", "score": 80, "extra": 1})
    assert ok.properties["extra"] == 1

    with pytest.raises(ValidationError) as exc:
        service.nodes.create("risk_indicator", "Churn", properties={"severity": "apocalyptic"})
    assert exc.value.details["errors"]

    # Types without a declared shape take any property bag.
    assert service.nodes.create("organization", "B", properties={"anything": [1, 2]}).properties == {"anything": [1, 2]}


def test_get_missing_node(service: GraphService) -> None:
    with pytest.raises(NotFoundError):
        service.nodes.get("missing")


def test_update_bumps_version_and_records_fields(service: GraphService) -> None:
    node = service.nodes.create("organization", "Acme")
    updated = service.nodes.update(node.id, {"label": "Acme Corp", "tags": ["retail"]})

    assert updated.label == "Acme Corp"
    assert updated.tags == ["retail"]
    assert updated.version == node.version + 1
    assert updated.updated_at >= node.updated_at

    logs, _ = service.audit.list(event_type="node_updated")
    assert logs[0].metadata["fields"] == ["label", "tags"]
    assert logs[0].before_state["label"] == "Acme"
    assert logs[0].after_state["label"] == "Acme Corp"


def test_update_rejects_unknown_fields(service: GraphService) -> None:
    node = service.nodes.create("organization", "Acme")
    with pytest.raises(ValidationError):
        service.nodes.update(node.id, {"node_type": "journalist"})


def test_soft_delete_is_idempotent_and_keeps_edges(service: GraphService) -> None:
    a = service.nodes.create("organization", "A")
    b = service.nodes.create("organization", "B")
    edge = service.edges.create(a.id, b.id, "related_to")

    first = service.nodes.soft_delete(a.id)
    second = service.nodes.soft_delete(a.id)

    assert first.is_active is False
    assert second.version == first.version
    assert service.edges.get(edge.id).is_active is True
    _, total = service.audit.list(event_type="node_deleted")
    assert total == 1


def test_list_filters_sorting_and_paging(service: GraphService) -> None:
    for i, label in enumerate(["Charlie", "alpha", "Bravo"]):
        service.nodes.create("journalist", label, tags=["press"] if i else [])
    service.nodes.create("organization", "Alpha Org")

    nodes, total = service.nodes.list(node_types=["journalist"], sort_by="label", sort_order="asc")
    assert total == 3
    assert [n.label for n in nodes] == ["alpha", "Bravo", "Charlie"]

    nodes, total = service.nodes.list(search="alpha")
    assert total == 2

    nodes, total = service.nodes.list(tags=["press"], limit=1, offset=1)
    assert total == 2
    assert len(nodes) == 1

    with pytest.raises(ValidationError):
        service.nodes.list(limit=0)
    with pytest.raises(ValidationError):
        service.nodes.list(sort_by="nope")


def test_connections_split_by_direction(service: GraphService) -> None:
    hub = service.nodes.create("organization", "Hub")
    out = service.nodes.create("competitor", "Out")
    inc = service.nodes.create("user", "In")
    gone = service.nodes.create("user", "Gone")
    service.edges.create(hub.id, out.id, "contains")
    service.edges.create(inc.id, hub.id, "belongs_to")
    service.edges.create(gone.id, hub.id, "belongs_to")
    service.nodes.soft_delete(gone.id)

    conn = service.nodes.connections(hub.id)

    assert [e.target_node_id for e in conn["outgoing_edges"]] == [out.id]
    assert {e.source_node_id for e in conn["incoming_edges"]} == {inc.id, gone.id}
    assert {n.id for n in conn["neighbors"]} == {out.id, inc.id}
