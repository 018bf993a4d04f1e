from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, Response

from ..errors import ValidationError
from ..graph.listing import check_page
from ..graph.service import GraphService
from ..settings import settings
from .auth import actor_context, require_api_key
from .schemas import (
    ComputeMetricsIn,
    EdgeCreateIn,
    EdgeUpdateIn,
    EmbeddingsIn,
    ExplainPathIn,
    GraphQueryIn,
    MergeIn,
    NodeCreateIn,
    NodeUpdateIn,
    PathIn,
    SearchIn,
    SnapshotCreateIn,
    TraverseIn,
)


def _split(values: list[str] | None) -> list[str] | None:
    """Accept both repeated (?a=x&a=y) and comma-separated (?a=x,y) list params."""
    if not values:
        return None
    out = [v.strip() for raw in values for v in raw.split(",") if v.strip()]
    return out or None


def build_graph_router(service: GraphService) -> APIRouter:
    r = APIRouter(prefix="/v1/graph", tags=["graph"], dependencies=[Depends(require_api_key)])

    # --- Nodes ---

    @r.post("/nodes", status_code=201)
    def create_node(payload: NodeCreateIn, actor: dict = Depends(actor_context)):
        node = service.nodes.create(**payload.model_dump(), actor=actor)
        return node.to_dict(include_embedding=False)

    @r.get("/nodes")
    def list_nodes(
        node_types: list[str] | None = Query(default=None, alias="nodeTypes"),
        tags: list[str] | None = Query(default=None),
        categories: list[str] | None = Query(default=None),
        search: str | None = None,
        is_active: bool | None = Query(default=None, alias="isActive"),
        cluster_id: str | None = Query(default=None, alias="clusterId"),
        source_system: str | None = Query(default=None, alias="sourceSystem"),
        sort_by: str = Query(default="created_at", alias="sortBy"),
        sort_order: str = Query(default="desc", alias="sortOrder"),
        limit: int = settings.default_page_size,
        offset: int = 0,
    ):
        nodes, total = service.nodes.list(
            node_types=_split(node_types),
            tags=_split(tags),
            categories=_split(categories),
            search=search,
            is_active=is_active,
            cluster_id=cluster_id,
            source_system=source_system,
            sort_by=sort_by,
            sort_order=sort_order,
            limit=limit,
            offset=offset,
        )
        return {
            "nodes": [n.to_dict(include_embedding=False) for n in nodes],
            "total": total,
            "limit": limit,
            "offset": offset,
        }

    @r.get("/nodes/{node_id}")
    def get_node(node_id: str):
        return service.nodes.get(node_id).to_dict(include_embedding=False)

    @r.get("/nodes/{node_id}/connections")
    def node_connections(node_id: str):
        out = service.nodes.connections(node_id)
        return {
            "node": out["node"].to_dict(include_embedding=False),
            "incomingEdges": [e.to_dict() for e in out["incoming_edges"]],
            "outgoingEdges": [e.to_dict() for e in out["outgoing_edges"]],
            "neighbors": [n.to_dict(include_embedding=False) for n in out["neighbors"]],
        }

    @r.get("/nodes/{node_id}/neighbors")
    def node_neighbors(
        node_id: str,
        direction: str = "both",
        edge_types: list[str] | None = Query(default=None, alias="edgeTypes"),
        limit: int = settings.default_page_size,
    ):
        check_page(limit, 0, max_limit=settings.max_page_size)
        nodes = service.traversal.neighbors(node_id, direction=direction, edge_types=_split(edge_types), limit=limit)
        return {"nodes": [n.to_dict(include_embedding=False) for n in nodes], "count": len(nodes)}

    @r.patch("/nodes/{node_id}")
    def update_node(node_id: str, payload: NodeUpdateIn, actor: dict = Depends(actor_context)):
        fields = payload.model_dump(exclude_unset=True)
        return service.nodes.update(node_id, fields, actor=actor).to_dict(include_embedding=False)

    @r.delete("/nodes/{node_id}", status_code=204)
    def delete_node(node_id: str, actor: dict = Depends(actor_context)):
        service.nodes.soft_delete(node_id, actor=actor)
        return Response(status_code=204)

    # --- Edges ---

    @r.post("/edges", status_code=201)
    def create_edge(payload: EdgeCreateIn, actor: dict = Depends(actor_context)):
        return service.edges.create(**payload.model_dump(), actor=actor).to_dict()

    @r.get("/edges")
    def list_edges(
        edge_types: list[str] | None = Query(default=None, alias="edgeTypes"),
        node_id: str | None = Query(default=None, alias="nodeId"),
        source_node_id: str | None = Query(default=None, alias="sourceNodeId"),
        target_node_id: str | None = Query(default=None, alias="targetNodeId"),
        min_weight: float | None = Query(default=None, alias="minWeight"),
        max_weight: float | None = Query(default=None, alias="maxWeight"),
        is_active: bool | None = Query(default=None, alias="isActive"),
        is_bidirectional: bool | None = Query(default=None, alias="isBidirectional"),
        sort_by: str = Query(default="created_at", alias="sortBy"),
        sort_order: str = Query(default="desc", alias="sortOrder"),
        limit: int = settings.default_page_size,
        offset: int = 0,
    ):
        edges, total = service.edges.list(
            edge_types=_split(edge_types),
            node_id=node_id,
            source_node_id=source_node_id,
            target_node_id=target_node_id,
            min_weight=min_weight,
            max_weight=max_weight,
            is_active=is_active,
            is_bidirectional=is_bidirectional,
            sort_by=sort_by,
            sort_order=sort_order,
            limit=limit,
            offset=offset,
        )
        return {"edges": [e.to_dict() for e in edges], "total": total, "limit": limit, "offset": offset}

    @r.get("/edges/{edge_id}")
    def get_edge(edge_id: str):
        return service.edges.get(edge_id).to_dict()

    @r.get("/edges/{edge_id}/with-nodes")
    def get_edge_with_nodes(edge_id: str):
        edge, source, target = service.edges.get_with_nodes(edge_id)
        return {
            "edge": edge.to_dict(),
            "sourceNode": source.to_dict(include_embedding=False),
            "targetNode": target.to_dict(include_embedding=False),
        }

    @r.patch("/edges/{edge_id}")
    def update_edge(edge_id: str, payload: EdgeUpdateIn, actor: dict = Depends(actor_context)):
        return service.edges.update(edge_id, payload.model_dump(exclude_unset=True), actor=actor).to_dict()

    @r.delete("/edges/{edge_id}", status_code=204)
    def delete_edge(edge_id: str, actor: dict = Depends(actor_context)):
        service.edges.delete(edge_id, actor=actor)
        return Response(status_code=204)

    # --- Query, traversal, paths ---

    @r.post("/query")
    def query_graph(payload: GraphQueryIn):
        data = payload.model_dump()
        data["node_filters"] = [f.model_dump() for f in payload.node_filters]
        return service.query.query(**data).to_dict()

    @r.post("/traverse")
    def traverse(payload: TraverseIn):
        return service.traversal.traverse(**payload.model_dump()).to_dict()

    @r.post("/path")
    def shortest_path(payload: PathIn):
        path = service.paths.find_path(**payload.model_dump())
        return {"found": path is not None, "path": path.to_dict() if path else None}

    @r.post("/explain-path")
    def explain_path(payload: ExplainPathIn):
        out = service.paths.explain_path(**payload.model_dump())
        if out is None:
            return {
                "path": None,
                "explanation": None,
                "reasoning": [],
                "confidence": None,
                "keyRelationships": [],
                "degraded": False,
            }
        return out.to_dict()

    # --- Maintenance ---

    @r.post("/merge")
    def merge_nodes(payload: MergeIn, actor: dict = Depends(actor_context)):
        return service.merge.merge(**payload.model_dump(), actor=actor).to_dict()

    @r.get("/metrics")
    def get_metrics():
        return service.metrics.current().to_dict()

    @r.post("/metrics/compute")
    def compute_metrics(payload: ComputeMetricsIn | None = None, actor: dict = Depends(actor_context)):
        body = (payload or ComputeMetricsIn()).model_dump()
        return service.metrics.compute(**body, actor=actor).to_dict()

    @r.post("/embeddings")
    def generate_embeddings(payload: EmbeddingsIn | None = None, actor: dict = Depends(actor_context)):
        body = (payload or EmbeddingsIn()).model_dump()
        return service.search.generate_embeddings(**body, actor=actor).to_dict()

    @r.post("/search")
    def semantic_search(payload: SearchIn):
        query: Any = payload.query if payload.query is not None else payload.embedding
        if query is None:
            raise ValidationError("either query or embedding is required")
        hits = service.search.search(
            query, node_types=payload.node_types, threshold=payload.threshold, limit=payload.limit
        )
        return {"results": [h.to_dict() for h in hits], "count": len(hits)}

    # --- Snapshots ---

    @r.post("/snapshots", status_code=201)
    def create_snapshot(payload: SnapshotCreateIn, actor: dict = Depends(actor_context)):
        return service.snapshots.create(**payload.model_dump(), actor=actor).to_dict()

    @r.get("/snapshots")
    def list_snapshots(
        status: str | None = None,
        snapshot_type: str | None = Query(default=None, alias="snapshotType"),
        sort_by: str = Query(default="created_at", alias="sortBy"),
        sort_order: str = Query(default="desc", alias="sortOrder"),
        limit: int = settings.default_page_size,
        offset: int = 0,
    ):
        snaps, total = service.snapshots.list(
            status=status,
            snapshot_type=snapshot_type,
            sort_by=sort_by,
            sort_order=sort_order,
            limit=limit,
            offset=offset,
        )
        return {"snapshots": [s.to_dict() for s in snaps], "total": total, "limit": limit, "offset": offset}

    @r.get("/snapshots/{snapshot_id}")
    def get_snapshot(snapshot_id: str):
        return service.snapshots.get(snapshot_id).to_dict()

    @r.post("/snapshots/{snapshot_id}/regenerate")
    def regenerate_snapshot(snapshot_id: str, actor: dict = Depends(actor_context)):
        return service.snapshots.regenerate(snapshot_id, actor=actor).to_dict()

    # --- Audit & stats ---

    @r.get("/audit")
    def list_audit(
        event_type: str | None = Query(default=None, alias="eventType"),
        node_id: str | None = Query(default=None, alias="nodeId"),
        edge_id: str | None = Query(default=None, alias="edgeId"),
        snapshot_id: str | None = Query(default=None, alias="snapshotId"),
        limit: int = settings.audit_page_size,
        offset: int = 0,
    ):
        check_page(limit, offset, max_limit=settings.max_page_size)
        logs, total = service.audit.list(
            event_type=event_type,
            node_id=node_id,
            edge_id=edge_id,
            snapshot_id=snapshot_id,
            limit=limit,
            offset=offset,
        )
        return {"logs": [e.to_dict() for e in logs], "total": total, "limit": limit, "offset": offset}

    @r.get("/stats")
    def stats():
        return service.query.stats().to_dict()

    return r
