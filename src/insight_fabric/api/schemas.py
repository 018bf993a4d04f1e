from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Request bodies are camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class NodeCreateIn(CamelModel):
    node_type: str
    label: str
    description: str | None = None
    tags: list[str] = Field(default_factory=list)
    categories: list[str] = Field(default_factory=list)
    properties: dict[str, Any] = Field(default_factory=dict)
    confidence_score: float | None = None
    external_id: str | None = None
    source_system: str | None = None


class NodeUpdateIn(CamelModel):
    label: str | None = None
    description: str | None = None
    tags: list[str] | None = None
    categories: list[str] | None = None
    properties: dict[str, Any] | None = None
    confidence_score: float | None = None
    is_active: bool | None = None
    external_id: str | None = None
    source_system: str | None = None


class EdgeCreateIn(CamelModel):
    source_node_id: str
    target_node_id: str
    edge_type: str
    label: str | None = None
    description: str | None = None
    weight: float | None = None
    is_bidirectional: bool = False
    properties: dict[str, Any] = Field(default_factory=dict)
    confidence_score: float | None = None


class EdgeUpdateIn(CamelModel):
    label: str | None = None
    description: str | None = None
    weight: float | None = None
    is_bidirectional: bool | None = None
    properties: dict[str, Any] | None = None
    confidence_score: float | None = None
    is_active: bool | None = None


class QueryFilterIn(CamelModel):
    field: str
    operator: str
    value: Any = None


class GraphQueryIn(CamelModel):
    node_filters: list[QueryFilterIn] = Field(default_factory=list)
    node_types: list[str] | None = None
    start_node_id: str | None = None
    direction: str | None = None
    max_depth: int = 3
    edge_types: list[str] | None = None
    semantic_query: str | None = None
    semantic_threshold: float = 0.7
    group_by: str | None = None
    limit: int = 100
    offset: int = 0


class TraverseIn(CamelModel):
    start_node_id: str
    direction: str = "both"
    max_depth: int = 3
    node_types: list[str] | None = None
    edge_types: list[str] | None = None
    limit: int = 100


class PathIn(CamelModel):
    start_node_id: str
    end_node_id: str
    max_depth: int = 6
    edge_types: list[str] | None = None


class ExplainPathIn(PathIn):
    include_reasoning: bool = True


class MergeIn(CamelModel):
    source_node_ids: list[str]
    strategy: str = "create_new"
    new_label: str | None = None
    new_description: str | None = None
    preserve_edges: bool = True


class ComputeMetricsIn(CamelModel):
    node_types: list[str] | None = None
    edge_types: list[str] | None = None
    compute_centrality: bool = True
    compute_clusters: bool = True


class EmbeddingsIn(CamelModel):
    node_ids: list[str] | None = Field(default=None, max_length=100)
    force_regenerate: bool = False


class SearchIn(CamelModel):
    query: str | None = None
    embedding: list[float] | None = None
    node_types: list[str] | None = None
    threshold: float = 0.7
    limit: int = 20


class SnapshotCreateIn(CamelModel):
    name: str
    description: str | None = None
    snapshot_type: str = "full"
    compute_diff: bool = True
    node_types: list[str] | None = None
