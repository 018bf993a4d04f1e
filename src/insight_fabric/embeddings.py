"""
Text embedders used by semantic search.

`build_embedder` returns a sentence-transformers model when one is configured
and otherwise a hashing embedder that needs no model download.
"""

from __future__ import annotations

import hashlib
import logging
import re
from typing import Protocol

import numpy as np

logger = logging.getLogger(__name__)

_TOKEN = re.compile(r"[\w']+", re.UNICODE)


class Embedder(Protocol):
    dim: int

    def embed(self, texts: list[str]) -> list[list[float]]: ...


class StubEmbedder:
    """Feature-hashed bag of lowercase tokens, L2 normalised.

    Identical texts map to identical vectors and texts with no shared tokens
    are orthogonal. All components are non-negative, so cosine scores stay in
    [0, 1].
    """

    def __init__(self, dim: int = 384):
        if dim < 1:
            raise ValueError("dim must be positive")
        self.dim = dim

    def _bucket(self, token: str) -> int:
        digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
        return int.from_bytes(digest, "big") % self.dim

    def embed(self, texts: list[str]) -> list[list[float]]:
        out = np.zeros((len(texts), self.dim), dtype=np.float64)
        for row, text in enumerate(texts):
            for token in _TOKEN.findall(text.lower()):
                out[row, self._bucket(token)] += 1.0
        norms = np.linalg.norm(out, axis=1, keepdims=True)
        np.divide(out, norms, out=out, where=norms > 0)
        return out.tolist()


class SentenceTransformersEmbedder:
    def __init__(self, model_name: str):
        # optional dependency, installed with the `st` extra
        from sentence_transformers import SentenceTransformer

        self.model_name = model_name
        self._model = SentenceTransformer(model_name)
        self.dim = int(self._model.get_sentence_embedding_dimension())

    def embed(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        return self._model.encode(texts, normalize_embeddings=True).tolist()


def build_embedder(*, st_model: str | None, dim: int) -> Embedder:
    if st_model:
        logger.info("Loading sentence-transformers model %s", st_model)
        return SentenceTransformersEmbedder(st_model)
    logger.debug("Using hashing embedder (dim=%d)", dim)
    return StubEmbedder(dim=dim)
