import pytest

from insight_fabric.embeddings import StubEmbedder, build_embedder


def test_stub_embedder_is_deterministic_and_normalised() -> None:
    emb = StubEmbedder(dim=32)
    a, b, empty = emb.embed(["AI regulation", "ai REGULATION", ""])
    assert a == b
    assert sum(x * x for x in a) == pytest.approx(1.0)
    assert empty == [0.0] * 32


def test_disjoint_tokens_are_orthogonal_or_close() -> None:
    emb = StubEmbedder(dim=4096)
    a, b = emb.embed(["alpha beta", "gamma delta"])
    assert sum(x * y for x, y in zip(a, b)) < 0.6
    assert min(a + b) >= 0.0


def test_build_embedder_defaults_to_stub() -> None:
    emb = build_embedder(st_model=None, dim=16)
    assert isinstance(emb, StubEmbedder)
    assert emb.dim == 16
    with pytest.raises(ValueError):
        StubEmbedder(dim=0)
