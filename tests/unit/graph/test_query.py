import pytest

from insight_fabric.errors import ValidationError
from insight_fabric.graph.service import GraphService


def _newsroom(service: GraphService):
    alice = service.nodes.create("journalist", "Alice", tags=["tech"], properties={"outlet": "Daily", "followers": 500})
    bob = service.nodes.create("journalist", "Bob", tags=["finance"], properties={"outlet": "Weekly", "followers": 50})
    story = service.nodes.create("content_piece", "Launch story", properties={"wordCount": 800})
    service.edges.create(story.id, alice.id, "authored_by")
    return alice, bob, story


@pytest.mark.parametrize(
    "flt, expected",
    [
        ({"field": "label", "operator": "equals", "value": "Alice"}, {"Alice"}),
        ({"field": "label", "operator": "not_equals", "value": "Alice"}, {"Bob", "Launch story"}),
        ({"field": "label", "operator": "contains", "value": "STORY"}, {"Launch story"}),
        ({"field": "label", "operator": "starts_with", "value": "b"}, {"Bob"}),
        ({"field": "label", "operator": "ends_with", "value": "ce"}, {"Alice"}),
        ({"field": "properties.followers", "operator": "greater_than", "value": 100}, {"Alice"}),
        ({"field": "properties.followers", "operator": "less_than", "value": 100}, {"Bob"}),
        ({"field": "properties.outlet", "operator": "in", "value": ["Daily", "Monthly"]}, {"Alice"}),
        ({"field": "nodeType", "operator": "not_in", "value": ["journalist"]}, {"Launch story"}),
        ({"field": "properties.wordCount", "operator": "exists"}, {"Launch story"}),
        ({"field": "properties.outlet", "operator": "not_exists"}, {"Launch story"}),
        ({"field": "tags", "operator": "contains", "value": "tech"}, {"Alice"}),
    ],
)
def test_filter_operators(service: GraphService, flt: dict, expected: set) -> None:
    _newsroom(service)
    res = service.query.query(node_filters=[flt])
    assert {n.label for n in res.nodes} == expected
    assert res.total == len(expected)


def test_filters_are_anded(service: GraphService) -> None:
    _newsroom(service)
    res = service.query.query(
        node_filters=[
            {"field": "node_type", "operator": "equals", "value": "journalist"},
            {"field": "properties.followers", "operator": "greater_than", "value": 10},
        ],
        limit=1,
    )
    assert res.total == 2
    assert len(res.nodes) == 1


def test_traversal_mode_returns_paths_and_edges(service: GraphService) -> None:
    alice, _, story = _newsroom(service)
    res = service.query.query(start_node_id=story.id, max_depth=1)

    assert {n.id for n in res.nodes} == {story.id, alice.id}
    assert len(res.edges) == 1
    assert {p.node_ids[-1] for p in res.paths} == {story.id, alice.id}


def test_semantic_mode(service: GraphService) -> None:
    alice, *_ = _newsroom(service)
    service.search.generate_embeddings()
    res = service.query.query(semantic_query="Alice Tags: tech", semantic_threshold=0.99)
    assert [n.id for n in res.nodes] == [alice.id]


def test_group_by(service: GraphService) -> None:
    _newsroom(service)
    res = service.query.query(group_by="node_type")
    assert res.aggregations == {"node_type": {"journalist": 2, "content_piece": 1}}

    with pytest.raises(ValidationError):
        service.query.query(group_by="label")


def test_bad_queries(service: GraphService) -> None:
    with pytest.raises(ValidationError):
        service.query.query(node_filters=[{"field": "label", "operator": "like", "value": "x"}])
    with pytest.raises(ValidationError):
        service.query.query(node_filters=[{"field": "label", "operator": "equals"}] * 21)
    with pytest.raises(ValidationError):
        service.query.query(limit=0)


def test_stats(service: GraphService) -> None:
    _, bob, _ = _newsroom(service)
    service.nodes.soft_delete(bob.id)

    stats = service.query.stats()

    assert (stats.total_nodes, stats.active_nodes, stats.total_edges) == (3, 2, 1)
    assert stats.nodes_by_type == {"journalist": 2, "content_piece": 1}
    assert stats.last_metrics_computed is None
    assert len(stats.recent_nodes) == 3
