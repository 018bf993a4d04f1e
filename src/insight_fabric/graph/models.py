"""
Core data model for the intelligence graph.

Records are plain dataclasses. `to_dict()` renders the camelCase JSON shape
used on the wire and in snapshot captures; `from_dict()` reverses it so
stores can persist documents without knowing every field.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, TypeVar

from ..errors import ValidationError


def utcnow() -> datetime:
    return datetime.now(UTC)


def new_id() -> str:
    return str(uuid.uuid4())


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_dt(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def unique_strings(values: Any) -> list[str]:
    """Order-preserving de-duplication; tags and categories behave as sets."""
    out: list[str] = []
    for v in values or []:
        s = str(v)
        if s not in out:
            out.append(s)
    return out


E = TypeVar("E", bound=Enum)


def coerce_enum(enum_cls: type[E], value: Any, field_name: str) -> E:
    """Parse an enum value, raising the graph `ValidationError` on unknown input."""
    try:
        return enum_cls(value)
    except ValueError as e:
        raise ValidationError(
            f"invalid {field_name}: {value!r}",
            details={"field": field_name, "allowed": [m.value for m in enum_cls]},
        ) from e


class NodeType(str, Enum):
    ORGANIZATION = "organization"
    USER = "user"
    TEAM = "team"
    PRESS_RELEASE = "press_release"
    MEDIA_COVERAGE = "media_coverage"
    JOURNALIST = "journalist"
    PUBLICATION = "publication"
    MEDIA_LIST = "media_list"
    PITCH = "pitch"
    OUTREACH_CAMPAIGN = "outreach_campaign"
    CAMPAIGN = "campaign"
    MEDIA_MENTION = "media_mention"
    MEDIA_ALERT = "media_alert"
    SENTIMENT_SIGNAL = "sentiment_signal"
    PERFORMANCE_METRIC = "performance_metric"
    KPI_INDICATOR = "kpi_indicator"
    TREND_SIGNAL = "trend_signal"
    COMPETITOR = "competitor"
    COMPETITIVE_INSIGHT = "competitive_insight"
    MARKET_TREND = "market_trend"
    CRISIS_EVENT = "crisis_event"
    CRISIS_RESPONSE = "crisis_response"
    RISK_FACTOR = "risk_factor"
    RISK_INDICATOR = "risk_indicator"
    RISK_ASSESSMENT = "risk_assessment"
    ESCALATION = "escalation"
    BRAND_SIGNAL = "brand_signal"
    BRAND_MENTION = "brand_mention"
    REPUTATION_SCORE = "reputation_score"
    COMPLIANCE_ITEM = "compliance_item"
    GOVERNANCE_POLICY = "governance_policy"
    AUDIT_FINDING = "audit_finding"
    EXECUTIVE_DIGEST = "executive_digest"
    BOARD_REPORT = "board_report"
    INVESTOR_UPDATE = "investor_update"
    COMMAND_CENTER_ALERT = "command_center_alert"
    STRATEGIC_REPORT = "strategic_report"
    STRATEGIC_INSIGHT = "strategic_insight"
    STRATEGIC_RECOMMENDATION = "strategic_recommendation"
    AUDIENCE_PERSONA = "audience_persona"
    AUDIENCE_SEGMENT = "audience_segment"
    CONTENT_BRIEF = "content_brief"
    CONTENT_PIECE = "content_piece"
    NARRATIVE = "narrative"
    CLUSTER = "cluster"
    TOPIC = "topic"
    THEME = "theme"
    EVENT = "event"
    CUSTOM = "custom"


class EdgeType(str, Enum):
    # Hierarchical
    PARENT_OF = "parent_of"
    CHILD_OF = "child_of"
    BELONGS_TO = "belongs_to"
    CONTAINS = "contains"
    # Causal
    CAUSED_BY = "caused_by"
    LEADS_TO = "leads_to"
    TRIGGERS = "triggers"
    MITIGATES = "mitigates"
    ESCALATES_TO = "escalates_to"
    # Temporal
    PRECEDES = "precedes"
    FOLLOWS = "follows"
    CONCURRENT_WITH = "concurrent_with"
    DURING = "during"
    # Semantic
    SIMILAR_TO = "similar_to"
    RELATED_TO = "related_to"
    CONTRASTS_WITH = "contrasts_with"
    COMPLEMENTS = "complements"
    # Attribution
    AUTHORED_BY = "authored_by"
    MENTIONS = "mentions"
    REFERENCES = "references"
    CITES = "cites"
    COVERS = "covers"
    # Influence
    INFLUENCES = "influences"
    IMPACTS = "impacts"
    DERIVES_FROM = "derives_from"
    CONTRIBUTES_TO = "contributes_to"
    # Association
    ASSOCIATED_WITH = "associated_with"
    LINKED_TO = "linked_to"
    CORRELATES_WITH = "correlates_with"
    # Sentiment
    POSITIVE_SENTIMENT_TOWARD = "positive_sentiment_toward"
    NEGATIVE_SENTIMENT_TOWARD = "negative_sentiment_toward"
    NEUTRAL_SENTIMENT_TOWARD = "neutral_sentiment_toward"
    # Strategic
    SUPPORTS_STRATEGY = "supports_strategy"
    THREATENS_STRATEGY = "threatens_strategy"
    OPPORTUNITY_FOR = "opportunity_for"
    RISK_TO = "risk_to"
    CUSTOM = "custom"


class Direction(str, Enum):
    INCOMING = "incoming"
    OUTGOING = "outgoing"
    BOTH = "both"


class SnapshotType(str, Enum):
    FULL = "full"
    INCREMENTAL = "incremental"


class SnapshotStatus(str, Enum):
    PENDING = "pending"
    COMPUTING = "computing"
    COMPLETE = "complete"
    FAILED = "failed"


class AuditEventType(str, Enum):
    NODE_CREATED = "node_created"
    NODE_UPDATED = "node_updated"
    NODE_DELETED = "node_deleted"
    EDGE_CREATED = "edge_created"
    EDGE_UPDATED = "edge_updated"
    EDGE_DELETED = "edge_deleted"
    NODES_MERGED = "nodes_merged"
    SNAPSHOT_CREATED = "snapshot_created"
    SNAPSHOT_REGENERATED = "snapshot_regenerated"
    METRICS_COMPUTED = "metrics_computed"
    EMBEDDINGS_GENERATED = "embeddings_generated"


class MergeStrategy(str, Enum):
    CREATE_NEW = "create_new"
    MERGE_INTO_FIRST = "merge_into_first"


@dataclass
class Node:
    """A typed vertex representing a business entity."""

    node_type: NodeType
    label: str
    id: str = field(default_factory=new_id)
    description: str | None = None
    tags: list[str] = field(default_factory=list)
    categories: list[str] = field(default_factory=list)
    properties: dict[str, Any] = field(default_factory=dict)
    confidence_score: float = 1.0
    is_active: bool = True
    centrality_score: float | None = None
    cluster_id: str | None = None
    embedding: list[float] | None = None
    embedding_hash: str | None = None
    external_id: str | None = None
    source_system: str | None = None
    version: int = 1
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self, *, include_embedding: bool = True) -> dict[str, Any]:
        out = {
            "id": self.id,
            "nodeType": NodeType(self.node_type).value,
            "label": self.label,
            "description": self.description,
            "tags": list(self.tags),
            "categories": list(self.categories),
            "properties": dict(self.properties),
            "confidenceScore": self.confidence_score,
            "isActive": self.is_active,
            "centralityScore": self.centrality_score,
            "clusterId": self.cluster_id,
            "embeddingHash": self.embedding_hash,
            "externalId": self.external_id,
            "sourceSystem": self.source_system,
            "version": self.version,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }
        if include_embedding:
            out["embedding"] = list(self.embedding) if self.embedding is not None else None
        return out

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Node:
        return cls(
            id=d["id"],
            node_type=NodeType(d["nodeType"]),
            label=d["label"],
            description=d.get("description"),
            tags=unique_strings(d.get("tags")),
            categories=unique_strings(d.get("categories")),
            properties=dict(d.get("properties") or {}),
            confidence_score=float(d.get("confidenceScore", 1.0)),
            is_active=bool(d.get("isActive", True)),
            centrality_score=d.get("centralityScore"),
            cluster_id=d.get("clusterId"),
            embedding=d.get("embedding"),
            embedding_hash=d.get("embeddingHash"),
            external_id=d.get("externalId"),
            source_system=d.get("sourceSystem"),
            version=int(d.get("version", 1)),
            created_at=_parse_dt(d.get("createdAt")) or utcnow(),
            updated_at=_parse_dt(d.get("updatedAt")) or utcnow(),
        )


@dataclass
class Edge:
    """A typed, weighted, optionally bidirectional relationship."""

    source_node_id: str
    target_node_id: str
    edge_type: EdgeType
    id: str = field(default_factory=new_id)
    label: str | None = None
    description: str | None = None
    weight: float = 1.0
    is_bidirectional: bool = False
    properties: dict[str, Any] = field(default_factory=dict)
    confidence_score: float = 1.0
    is_active: bool = True
    version: int = 1
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def other_end(self, node_id: str) -> str:
        return self.target_node_id if self.source_node_id == node_id else self.source_node_id

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "sourceNodeId": self.source_node_id,
            "targetNodeId": self.target_node_id,
            "edgeType": EdgeType(self.edge_type).value,
            "label": self.label,
            "description": self.description,
            "weight": self.weight,
            "isBidirectional": self.is_bidirectional,
            "properties": dict(self.properties),
            "confidenceScore": self.confidence_score,
            "isActive": self.is_active,
            "version": self.version,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Edge:
        return cls(
            id=d["id"],
            source_node_id=d["sourceNodeId"],
            target_node_id=d["targetNodeId"],
            edge_type=EdgeType(d["edgeType"]),
            label=d.get("label"),
            description=d.get("description"),
            weight=float(d.get("weight", 1.0)),
            is_bidirectional=bool(d.get("isBidirectional", False)),
            properties=dict(d.get("properties") or {}),
            confidence_score=float(d.get("confidenceScore", 1.0)),
            is_active=bool(d.get("isActive", True)),
            version=int(d.get("version", 1)),
            created_at=_parse_dt(d.get("createdAt")) or utcnow(),
            updated_at=_parse_dt(d.get("updatedAt")) or utcnow(),
        )


@dataclass
class GraphPath:
    """An ordered node/edge sequence. `nodes`/`edges` are filled when resolved."""

    node_ids: list[str]
    edge_ids: list[str] = field(default_factory=list)
    total_weight: float = 0.0
    nodes: list[Node] = field(default_factory=list)
    edges: list[Edge] = field(default_factory=list)

    @property
    def path_length(self) -> int:
        return len(self.edge_ids)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "startNodeId": self.node_ids[0],
            "endNodeId": self.node_ids[-1],
            "nodeIds": list(self.node_ids),
            "edgeIds": list(self.edge_ids),
            "pathLength": self.path_length,
            "totalWeight": self.total_weight,
        }
        if self.nodes:
            out["nodes"] = [n.to_dict(include_embedding=False) for n in self.nodes]
        if self.edges:
            out["edges"] = [e.to_dict() for e in self.edges]
        return out


@dataclass
class GraphMetrics:
    total_nodes: int = 0
    active_nodes: int = 0
    total_edges: int = 0
    active_edges: int = 0
    nodes_by_type: dict[str, int] = field(default_factory=dict)
    edges_by_type: dict[str, int] = field(default_factory=dict)
    density: float | None = None
    avg_degree: float | None = None
    cluster_count: int | None = None
    largest_cluster_size: int | None = None
    top_nodes_by_centrality: list[dict[str, Any]] = field(default_factory=list)
    computed_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalNodes": self.total_nodes,
            "activeNodes": self.active_nodes,
            "totalEdges": self.total_edges,
            "activeEdges": self.active_edges,
            "nodesByType": dict(self.nodes_by_type),
            "edgesByType": dict(self.edges_by_type),
            "density": self.density,
            "avgDegree": self.avg_degree,
            "clusterCount": self.cluster_count,
            "largestClusterSize": self.largest_cluster_size,
            "topNodesByCentrality": list(self.top_nodes_by_centrality),
            "computedAt": _iso(self.computed_at),
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> GraphMetrics:
        return cls(
            total_nodes=int(d.get("totalNodes", 0)),
            active_nodes=int(d.get("activeNodes", 0)),
            total_edges=int(d.get("totalEdges", 0)),
            active_edges=int(d.get("activeEdges", 0)),
            nodes_by_type=dict(d.get("nodesByType") or {}),
            edges_by_type=dict(d.get("edgesByType") or {}),
            density=d.get("density"),
            avg_degree=d.get("avgDegree"),
            cluster_count=d.get("clusterCount"),
            largest_cluster_size=d.get("largestClusterSize"),
            top_nodes_by_centrality=list(d.get("topNodesByCentrality") or []),
            computed_at=_parse_dt(d.get("computedAt")) or utcnow(),
        )


@dataclass
class Snapshot:
    """A point-in-time capture of active nodes/edges.

    `nodes` and `edges` hold the captured documents (id -> to_dict()) and are
    what later diffs compare against; they are not rendered by `to_dict()`.
    """

    name: str
    snapshot_type: SnapshotType = SnapshotType.FULL
    id: str = field(default_factory=new_id)
    description: str | None = None
    node_types: list[str] | None = None
    compute_diff: bool = True
    status: SnapshotStatus = SnapshotStatus.PENDING
    captured_node_count: int = 0
    captured_edge_count: int = 0
    cluster_count: int = 0
    metrics: dict[str, Any] | None = None
    diff: dict[str, Any] | None = None
    previous_snapshot_id: str | None = None
    error_message: str | None = None
    nodes: dict[str, dict[str, Any]] = field(default_factory=dict)
    edges: dict[str, dict[str, Any]] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def scope(self) -> str:
        types = ",".join(sorted(self.node_types or []))
        return f"{SnapshotType(self.snapshot_type).value}:{types or '*'}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "snapshotType": SnapshotType(self.snapshot_type).value,
            "nodeTypes": list(self.node_types) if self.node_types else None,
            "scope": self.scope,
            "computeDiff": self.compute_diff,
            "status": SnapshotStatus(self.status).value,
            "capturedNodeCount": self.captured_node_count,
            "capturedEdgeCount": self.captured_edge_count,
            "clusterCount": self.cluster_count,
            "metrics": self.metrics,
            "diff": self.diff,
            "previousSnapshotId": self.previous_snapshot_id,
            "errorMessage": self.error_message,
            "createdAt": _iso(self.created_at),
            "startedAt": _iso(self.started_at),
            "completedAt": _iso(self.completed_at),
        }

    def to_record(self) -> dict[str, Any]:
        """Full document including captured data, for persistence."""
        out = self.to_dict()
        out["nodes"] = self.nodes
        out["edges"] = self.edges
        return out

    @classmethod
    def from_record(cls, d: dict[str, Any]) -> Snapshot:
        return cls(
            id=d["id"],
            name=d["name"],
            description=d.get("description"),
            snapshot_type=SnapshotType(d.get("snapshotType", "full")),
            node_types=d.get("nodeTypes"),
            compute_diff=bool(d.get("computeDiff", True)),
            status=SnapshotStatus(d.get("status", "pending")),
            captured_node_count=int(d.get("capturedNodeCount", 0)),
            captured_edge_count=int(d.get("capturedEdgeCount", 0)),
            cluster_count=int(d.get("clusterCount", 0)),
            metrics=d.get("metrics"),
            diff=d.get("diff"),
            previous_snapshot_id=d.get("previousSnapshotId"),
            error_message=d.get("errorMessage"),
            nodes=dict(d.get("nodes") or {}),
            edges=dict(d.get("edges") or {}),
            created_at=_parse_dt(d.get("createdAt")) or utcnow(),
            started_at=_parse_dt(d.get("startedAt")),
            completed_at=_parse_dt(d.get("completedAt")),
        )


@dataclass
class AuditLogEntry:
    event_type: AuditEventType
    id: str = field(default_factory=new_id)
    node_id: str | None = None
    edge_id: str | None = None
    snapshot_id: str | None = None
    before_state: dict[str, Any] | None = None
    after_state: dict[str, Any] | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    actor_context: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "eventType": AuditEventType(self.event_type).value,
            "nodeId": self.node_id,
            "edgeId": self.edge_id,
            "snapshotId": self.snapshot_id,
            "beforeState": self.before_state,
            "afterState": self.after_state,
            "metadata": dict(self.metadata),
            "actorContext": dict(self.actor_context),
            "timestamp": _iso(self.timestamp),
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> AuditLogEntry:
        return cls(
            id=d["id"],
            event_type=AuditEventType(d["eventType"]),
            node_id=d.get("nodeId"),
            edge_id=d.get("edgeId"),
            snapshot_id=d.get("snapshotId"),
            before_state=d.get("beforeState"),
            after_state=d.get("afterState"),
            metadata=dict(d.get("metadata") or {}),
            actor_context=dict(d.get("actorContext") or {}),
            timestamp=_parse_dt(d.get("timestamp")) or utcnow(),
        )
