import pytest

from insight_fabric.errors import ConflictError, ValidationError
from insight_fabric.graph.service import GraphService


def test_create_new_merge_retires_sources(service: GraphService) -> None:
    j1 = service.nodes.create("journalist", "John Doe", tags=["tech"], properties={"outlet": "Daily"})
    j2 = service.nodes.create("journalist", "J. Doe", tags=["ai"], properties={"beat": "AI"})

    res = service.merge.merge([j1.id, j2.id], strategy="create_new", new_label="John Doe (Merged)", preserve_edges=True)

    merged = service.nodes.get(res.merged_node.id)
    assert merged.is_active is True
    assert merged.label == "John Doe (Merged)"
    assert merged.id not in (j1.id, j2.id)
    assert merged.tags == ["tech", "ai"]
    assert merged.properties == {"outlet": "Daily", "beat": "AI"}
    assert service.nodes.get(j1.id).is_active is False
    assert service.nodes.get(j2.id).is_active is False
    assert res.merged_node_ids == [j1.id, j2.id]


def test_default_label_for_create_new(service: GraphService) -> None:
    a = service.nodes.create("topic", "AI")
    b = service.nodes.create("topic", "A.I.")
    res = service.merge.merge([a.id, b.id])
    assert res.merged_node.label == "AI (Merged)"


def test_merge_into_first_keeps_first_node(service: GraphService) -> None:
    a = service.nodes.create("topic", "AI")
    b = service.nodes.create("topic", "A.I.")
    other = service.nodes.create("theme", "Tech")
    edge = service.edges.create(b.id, other.id, "belongs_to")

    res = service.merge.merge([a.id, b.id], strategy="merge_into_first")

    assert res.merged_node.id == a.id
    assert service.nodes.get(a.id).is_active is True
    assert service.nodes.get(b.id).is_active is False
    assert service.edges.get(edge.id).source_node_id == a.id


def test_edges_are_redirected_and_duplicates_dropped(service: GraphService) -> None:
    a = service.nodes.create("journalist", "A")
    b = service.nodes.create("journalist", "B")
    pub = service.nodes.create("publication", "Daily")
    story = service.nodes.create("content_piece", "Story")
    e1 = service.edges.create(a.id, pub.id, "belongs_to")
    e2 = service.edges.create(b.id, pub.id, "belongs_to")
    e3 = service.edges.create(story.id, b.id, "authored_by")
    touching = 3

    res = service.merge.merge([a.id, b.id], preserve_edges=False)

    assert res.edges_preserved + res.edges_removed == touching
    assert res.edges_removed == 1
    survivor = res.merged_node.id
    remaining = [service.store.get_edge(e.id) for e in (e1, e2, e3)]
    kept = [e for e in remaining if e is not None]
    assert len(kept) == 2
    assert all(survivor in (e.source_node_id, e.target_node_id) for e in kept)


def test_preserve_edges_keeps_duplicates(service: GraphService) -> None:
    a = service.nodes.create("journalist", "A")
    b = service.nodes.create("journalist", "B")
    pub = service.nodes.create("publication", "Daily")
    service.edges.create(a.id, pub.id, "belongs_to")
    service.edges.create(b.id, pub.id, "belongs_to")

    res = service.merge.merge([a.id, b.id], preserve_edges=True)

    assert (res.edges_preserved, res.edges_removed) == (2, 0)
    assert len(service.store.edges_of(res.merged_node.id)) == 2


def test_merge_writes_one_audit_entry(service: GraphService) -> None:
    a = service.nodes.create("topic", "a")
    b = service.nodes.create("topic", "b")
    res = service.merge.merge([a.id, b.id], actor={"tenantId": "t1"})

    logs, total = service.audit.list(event_type="nodes_merged")
    assert total == 1
    entry = logs[0]
    assert entry.metadata["sourceNodeIds"] == [a.id, b.id]
    assert entry.metadata["mergedNodeId"] == res.merged_node.id
    assert entry.actor_context == {"tenantId": "t1"}

    by_source, _ = service.audit.list(node_id=a.id)
    assert entry.id in {e.id for e in by_source}


@pytest.mark.parametrize("ids", [[], ["only"], ["x"] * 11])
def test_merge_rejects_bad_source_counts(service: GraphService, ids) -> None:
    with pytest.raises(ValidationError):
        service.merge.merge(ids)


def test_merge_rejects_missing_inactive_or_duplicate_sources(service: GraphService) -> None:
    a = service.nodes.create("topic", "a")
    b = service.nodes.create("topic", "b")
    with pytest.raises(ValidationError):
        service.merge.merge([a.id, "missing"])
    with pytest.raises(ValidationError):
        service.merge.merge([a.id, a.id])
    service.nodes.soft_delete(b.id)
    with pytest.raises(ValidationError):
        service.merge.merge([a.id, b.id])
    with pytest.raises(ValidationError):
        service.merge.merge([a.id, b.id], strategy="average")


def test_failed_merge_leaves_graph_untouched(service: GraphService, monkeypatch) -> None:
    a = service.nodes.create("topic", "a")
    b = service.nodes.create("topic", "b")
    other = service.nodes.create("topic", "c")
    edge = service.edges.create(b.id, other.id, "related_to")

    def boom(*args, **kwargs):
        raise RuntimeError("audit store down")

    monkeypatch.setattr(service.merge.audit, "record", boom)
    with pytest.raises(RuntimeError):
        service.merge.merge([a.id, b.id], strategy="merge_into_first")

    assert service.nodes.get(b.id).is_active is True
    assert service.edges.get(edge.id).source_node_id == b.id
    assert len(service.store.list_nodes()) == 3


def test_concurrent_change_is_a_conflict(service: GraphService, monkeypatch) -> None:
    a = service.nodes.create("topic", "a")
    b = service.nodes.create("topic", "b")
    engine = service.merge
    original = engine._touching
    calls = {"n": 0}

    def touching_then_edit(ids):
        calls["n"] += 1
        if calls["n"] == 2:
            # Simulate a writer that slipped in before the locks were taken.
            node = service.store.get_node(b.id)
            service.store.update_node(node, node.version)
        return original(ids)

    monkeypatch.setattr(engine, "_touching", touching_then_edit)
    with pytest.raises(ConflictError):
        engine.merge([a.id, b.id])
    assert service.nodes.get(a.id).is_active is True


def test_survivor_edges_are_never_dropped(service: GraphService) -> None:
    a = service.nodes.create("journalist", "A")
    b = service.nodes.create("journalist", "B")
    pub = service.nodes.create("publication", "Daily")
    first = service.edges.create(a.id, pub.id, "belongs_to")
    second = service.edges.create(a.id, pub.id, "belongs_to")

    res = service.merge.merge([a.id, b.id], strategy="merge_into_first", preserve_edges=False)

    assert (res.edges_preserved, res.edges_removed) == (2, 0)
    assert service.edges.get(first.id).source_node_id == a.id
    assert service.edges.get(second.id).source_node_id == a.id


def test_only_redirected_duplicates_are_dropped(service: GraphService) -> None:
    a = service.nodes.create("journalist", "A")
    b = service.nodes.create("journalist", "B")
    pub = service.nodes.create("publication", "Daily")
    kept = [service.edges.create(a.id, pub.id, "belongs_to") for _ in range(2)]
    dup = service.edges.create(b.id, pub.id, "belongs_to")
    between = service.edges.create(a.id, b.id, "related_to")
    touching = 4

    res = service.merge.merge([a.id, b.id], strategy="merge_into_first", preserve_edges=False)

    assert res.edges_preserved + res.edges_removed == touching
    assert (res.edges_preserved, res.edges_removed) == (3, 1)
    assert all(service.store.get_edge(e.id) is not None for e in kept)
    assert service.store.get_edge(dup.id) is None
    loop = service.edges.get(between.id)
    assert (loop.source_node_id, loop.target_node_id) == (a.id, a.id)


def test_merged_properties_must_fit_the_survivor_type(service: GraphService) -> None:
    campaign = service.nodes.create("campaign", "Launch", properties={"budget": 1000})
    topic = service.nodes.create("topic", "Launch", properties={"budget": -5})

    for strategy in ("create_new", "merge_into_first"):
        with pytest.raises(ValidationError):
            service.merge.merge([campaign.id, topic.id], strategy=strategy)

    assert service.nodes.get(topic.id).is_active is True
    assert service.nodes.get(campaign.id).properties == {"budget": 1000}
    assert len(service.store.list_nodes()) == 2
