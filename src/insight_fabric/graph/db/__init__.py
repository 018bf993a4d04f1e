"""Storage backends for the intelligence graph."""

from __future__ import annotations

from .base import GraphStore
from .memory import InMemoryGraphStore
from .sqlite import SQLiteGraphStore


def build_store(kind: str, *, sqlite_path: str | None = None) -> GraphStore:
    """Create a store by name (`memory` or `sqlite`)."""
    kind = (kind or "memory").lower()
    if kind == "memory":
        return InMemoryGraphStore()
    if kind == "sqlite":
        if not sqlite_path:
            raise ValueError("sqlite store requires a path")
        return SQLiteGraphStore(sqlite_path)
    raise ValueError(f"Unknown store backend: {kind}")


__all__ = ["GraphStore", "InMemoryGraphStore", "SQLiteGraphStore", "build_store"]
