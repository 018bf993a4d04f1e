"""
Insight Fabric graph engine.

Typed nodes and edges, traversal, weighted path discovery, merging,
analytics, snapshots with structural diffs, and semantic search.
"""

from .models import Direction, Edge, EdgeType, GraphPath, Node, NodeType, Snapshot, SnapshotStatus
from .service import GraphService, build_service

__all__ = [
    "Direction",
    "Edge",
    "EdgeType",
    "GraphPath",
    "GraphService",
    "Node",
    "NodeType",
    "Snapshot",
    "SnapshotStatus",
    "build_service",
]
