from __future__ import annotations

from typing import Any


class GraphError(Exception):
    """Base class for graph engine errors.

    `error_code` and `status_code` feed the HTTP error envelope.
    """

    error_code = "GRAPH_ERROR"
    status_code = 500

    def __init__(self, message: str, *, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(GraphError):
    error_code = "VALIDATION_ERROR"
    status_code = 400


class NotFoundError(GraphError):
    error_code = "NOT_FOUND"
    status_code = 404

    def __init__(self, kind: str, item_id: str):
        super().__init__(f"{kind} not found: {item_id}", details={"kind": kind, "id": item_id})
        self.kind = kind
        self.item_id = item_id


class ConflictError(GraphError):
    """Optimistic-concurrency version mismatch or an operation already in flight."""

    error_code = "CONFLICT"
    status_code = 409


class DependencyError(GraphError):
    """A collaborator (storage, embedder, reasoning provider) is unavailable."""

    error_code = "DEPENDENCY_UNAVAILABLE"
    status_code = 503
