from __future__ import annotations

from collections.abc import Iterator

import pytest

from insight_fabric.embeddings import StubEmbedder
from insight_fabric.graph.db import InMemoryGraphStore
from insight_fabric.graph.service import GraphService


@pytest.fixture
def service() -> Iterator[GraphService]:
    svc = GraphService(InMemoryGraphStore(), embedder=StubEmbedder(dim=64), snapshot_workers=1)
    try:
        yield svc
    finally:
        svc.close()


@pytest.fixture
def bare_service() -> Iterator[GraphService]:
    """No embedder and no reasoning provider."""
    svc = GraphService(InMemoryGraphStore(), snapshot_workers=1)
    try:
        yield svc
    finally:
        svc.close()
