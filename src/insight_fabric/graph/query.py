"""
Filter + group-by queries over nodes, and whole-graph statistics.

Not a query language: a list of `{field, operator, value}` filters applied to
one of three candidate sets (semantic hits, a traversal, or all active nodes).
"""

from __future__ import annotations

import logging
import re
import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from ..errors import ValidationError
from .db.base import GraphStore
from .models import Edge, EdgeType, GraphPath, Node, NodeType, Snapshot, coerce_enum
from .search import SemanticSearchIndex
from .traversal import TraversalEngine

logger = logging.getLogger(__name__)

MAX_QUERY_LIMIT = 1000
MAX_FILTERS = 20
GROUP_BY_FIELDS = ("node_type", "cluster_id", "edge_type")


class QueryOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    IN = "in"
    NOT_IN = "not_in"
    EXISTS = "exists"
    NOT_EXISTS = "not_exists"


@dataclass
class QueryFilter:
    field: str
    operator: QueryOperator
    value: Any = None


_MISSING = object()


def _snake(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


def resolve_field(node: Node, name: str) -> Any:
    """Node attribute (camelCase or snake_case) or `properties.<key>`; _MISSING if absent."""
    if name.startswith("properties."):
        return node.properties.get(name.split(".", 1)[1], _MISSING)
    attr = _snake(name)
    if attr == "embedding" or not hasattr(node, attr):
        return _MISSING
    value = getattr(node, attr)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _as_text(value: Any) -> str:
    return str(value).lower()


def matches(node: Node, f: QueryFilter) -> bool:
    actual = resolve_field(node, f.field)
    op = f.operator
    if op == QueryOperator.EXISTS:
        return actual is not _MISSING and actual is not None
    if op == QueryOperator.NOT_EXISTS:
        return actual is _MISSING or actual is None
    if actual is _MISSING or actual is None:
        return op in (QueryOperator.NOT_EQUALS, QueryOperator.NOT_IN)

    if op == QueryOperator.EQUALS:
        return actual == f.value
    if op == QueryOperator.NOT_EQUALS:
        return actual != f.value
    if op == QueryOperator.CONTAINS:
        if isinstance(actual, (list, tuple, set)):
            return f.value in actual
        return _as_text(f.value) in _as_text(actual)
    if op == QueryOperator.STARTS_WITH:
        return _as_text(actual).startswith(_as_text(f.value))
    if op == QueryOperator.ENDS_WITH:
        return _as_text(actual).endswith(_as_text(f.value))
    if op in (QueryOperator.GREATER_THAN, QueryOperator.LESS_THAN):
        try:
            return actual > f.value if op == QueryOperator.GREATER_THAN else actual < f.value
        except TypeError:
            return False
    if op in (QueryOperator.IN, QueryOperator.NOT_IN):
        options = f.value if isinstance(f.value, (list, tuple, set)) else [f.value]
        if isinstance(actual, (list, tuple, set)):
            hit = any(a in options for a in actual)
        else:
            hit = actual in options
        return hit if op == QueryOperator.IN else not hit
    return False


def parse_filters(raw: list[dict[str, Any]] | None) -> list[QueryFilter]:
    raw = raw or []
    if len(raw) > MAX_FILTERS:
        raise ValidationError(f"at most {MAX_FILTERS} filters are allowed")
    out = []
    for item in raw:
        name = item.get("field")
        if not isinstance(name, str) or not name:
            raise ValidationError("filter field must be a non-empty string", details={"filter": item})
        out.append(
            QueryFilter(
                field=name,
                operator=coerce_enum(QueryOperator, item.get("operator"), "operator"),
                value=item.get("value"),
            )
        )
    return out


@dataclass
class QueryResult:
    nodes: list[Node]
    edges: list[Edge]
    total: int
    execution_time_ms: float
    paths: list[GraphPath] | None = None
    aggregations: dict[str, dict[str, int]] | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "nodes": [n.to_dict(include_embedding=False) for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
            "total": self.total,
            "executionTimeMs": self.execution_time_ms,
        }
        if self.paths is not None:
            out["paths"] = [p.to_dict() for p in self.paths]
        if self.aggregations is not None:
            out["aggregations"] = self.aggregations
        return out


@dataclass
class GraphStats:
    total_nodes: int
    total_edges: int
    active_nodes: int
    active_edges: int
    nodes_by_type: dict[str, int]
    edges_by_type: dict[str, int]
    recent_nodes: list[Node] = field(default_factory=list)
    recent_snapshots: list[Snapshot] = field(default_factory=list)
    last_metrics_computed: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalNodes": self.total_nodes,
            "totalEdges": self.total_edges,
            "activeNodes": self.active_nodes,
            "activeEdges": self.active_edges,
            "nodesByType": self.nodes_by_type,
            "edgesByType": self.edges_by_type,
            "recentNodes": [n.to_dict(include_embedding=False) for n in self.recent_nodes],
            "recentSnapshots": [s.to_dict() for s in self.recent_snapshots],
            "lastMetricsComputed": self.last_metrics_computed,
        }


class GraphQueryEngine:
    def __init__(self, store: GraphStore, traversal: TraversalEngine, search: SemanticSearchIndex):
        self.store = store
        self.traversal = traversal
        self.search = search

    def query(
        self,
        node_filters: list[dict[str, Any]] | None = None,
        node_types: list[str] | None = None,
        start_node_id: str | None = None,
        direction: str | None = None,
        max_depth: int = 3,
        edge_types: list[str] | None = None,
        semantic_query: str | None = None,
        semantic_threshold: float = 0.7,
        group_by: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> QueryResult:
        t0 = time.perf_counter()
        if limit < 1 or limit > MAX_QUERY_LIMIT:
            raise ValidationError(f"limit must be between 1 and {MAX_QUERY_LIMIT}")
        if offset < 0:
            raise ValidationError("offset must be >= 0")
        if group_by is not None and group_by not in GROUP_BY_FIELDS:
            raise ValidationError(f"invalid groupBy: {group_by}", details={"allowed": list(GROUP_BY_FIELDS)})
        filters = parse_filters(node_filters)
        ntypes = [coerce_enum(NodeType, t, "nodeTypes").value for t in node_types or []]
        etypes = {coerce_enum(EdgeType, t, "edgeTypes").value for t in edge_types or []}

        paths: list[GraphPath] | None = None
        if semantic_query:
            hits = self.search.search(
                semantic_query, node_types=ntypes, threshold=semantic_threshold, limit=MAX_QUERY_LIMIT
            )
            candidates = [h.node for h in hits]
        elif start_node_id:
            walk = self.traversal.traverse(
                start_node_id,
                direction=direction or "both",
                max_depth=max_depth,
                node_types=ntypes,
                edge_types=list(etypes),
                limit=MAX_QUERY_LIMIT,
            )
            candidates = walk.visited_nodes
            paths = walk.paths
        else:
            candidates = sorted(
                self.store.list_nodes(node_types=ntypes or None, is_active=True),
                key=lambda n: (n.created_at, n.id),
                reverse=True,
            )

        matched = [n for n in candidates if all(matches(n, f) for f in filters)]
        page = matched[offset : offset + limit]
        if paths is not None:
            kept = {n.id for n in page}
            paths = [p for p in paths if p.node_ids[-1] in kept]

        page_ids = {n.id for n in page}
        edges_seen: dict[str, Edge] = {}
        for n in page:
            for e in self.store.edges_of(n.id, is_active=True):
                if e.source_node_id in page_ids and e.target_node_id in page_ids:
                    if not etypes or e.edge_type.value in etypes:
                        edges_seen[e.id] = e
        edges = sorted(edges_seen.values(), key=lambda e: (e.created_at, e.id))

        aggregations = None
        if group_by == "node_type":
            aggregations = {"node_type": dict(Counter(n.node_type.value for n in matched))}
        elif group_by == "cluster_id":
            aggregations = {"cluster_id": dict(Counter(n.cluster_id or "unclustered" for n in matched))}
        elif group_by == "edge_type":
            aggregations = {"edge_type": dict(Counter(e.edge_type.value for e in edges))}

        elapsed_ms = (time.perf_counter() - t0) * 1000
        logger.debug("Query matched %d nodes in %.1fms", len(matched), elapsed_ms)
        return QueryResult(
            nodes=page,
            edges=edges,
            total=len(matched),
            execution_time_ms=elapsed_ms,
            paths=paths,
            aggregations=aggregations,
        )

    def stats(self) -> GraphStats:
        nodes = self.store.list_nodes()
        edges = self.store.list_edges()
        recent = sorted(nodes, key=lambda n: (n.created_at, n.id), reverse=True)[:5]
        metrics = self.store.latest_metrics()
        return GraphStats(
            total_nodes=len(nodes),
            total_edges=len(edges),
            active_nodes=sum(1 for n in nodes if n.is_active),
            active_edges=sum(1 for e in edges if e.is_active),
            nodes_by_type=dict(Counter(n.node_type.value for n in nodes)),
            edges_by_type=dict(Counter(e.edge_type.value for e in edges)),
            recent_nodes=recent,
            recent_snapshots=self.store.list_snapshots()[:5],
            last_metrics_computed=metrics.computed_at.isoformat() if metrics else None,
        )
