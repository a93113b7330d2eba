"""
Companion core test fixtures.

The fake embedding client gives each text a deterministic pseudo-random unit
vector (unrelated texts are close to orthogonal) unless a vector has been
pinned for it, so tests control exactly which texts count as near-duplicates.
"""

from __future__ import annotations

import zlib

import numpy as np
import pytest

from companion_core.config import CompanionConfig
from companion_core.engine import CompanionEngine
from companion_core.storage.in_memory import InMemoryStore

DIM = 64


def unit(*components: float) -> list[float]:
    """A DIM-length vector starting with ``components``, zero-padded."""
    vector = list(components) + [0.0] * (DIM - len(components))
    return vector[:DIM]


class FakeEmbeddingClient:
    def __init__(self, vectors: dict[str, list[float]] | None = None):
        self.vectors = dict(vectors or {})
        self.calls: list[str] = []

    def pin(self, text: str, vector: list[float]) -> None:
        self.vectors[text] = vector

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if text in self.vectors:
            return list(self.vectors[text])
        rng = np.random.default_rng(zlib.crc32(text.encode("utf-8")))
        vector = rng.normal(size=DIM)
        return (vector / np.linalg.norm(vector)).tolist()


class FailingEmbeddingClient:
    def __init__(self, error: Exception | None = None):
        self.error = error or ConnectionError("embedding service down")
        self.calls = 0

    async def embed(self, text: str) -> list[float]:
        self.calls += 1
        raise self.error


def fast_config(**overrides) -> CompanionConfig:
    """Config with no retry backoff so failing paths stay fast."""
    data = {"embedding": {"backoff_seconds": 0.0, "timeout_seconds": 2.0}}
    data.update(overrides)
    return CompanionConfig.model_validate(data)


@pytest.fixture
def embedder():
    return FakeEmbeddingClient()


@pytest.fixture
def memory_store():
    return InMemoryStore()


@pytest.fixture
async def engine(memory_store, embedder):
    e = CompanionEngine(
        relationship_store=memory_store,
        memory_store=memory_store,
        embedding_client=embedder,
        config=fast_config(),
    )
    await e.initialize()
    yield e
    await e.close()
