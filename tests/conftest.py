"""Shared fixtures: a fresh SQLite-backed engine per test."""

import dataclasses
from datetime import timedelta
from typing import List, Sequence

import pytest

from aimemory.services.memory_management import MemoryEngine
from aimemory.utils.config import config as default_config
from aimemory.utils.embedding_provider import EmbeddingProviderError
from aimemory.utils.timestamp_utils import to_storage_str, utc_now


@pytest.fixture
def app_config(tmp_path):
    """Default config pointed at a temporary database, dense embeddings off."""
    return dataclasses.replace(default_config,
                               storage=dataclasses.replace(default_config.storage, db_path=str(tmp_path / 'memories.db')),
                               index=dataclasses.replace(default_config.index, dedup_threshold=0.7, min_score=0.05, default_limit=10),
                               bedrock_embed=dataclasses.replace(default_config.bedrock_embed, enabled=False))


@pytest.fixture
def engine(app_config):
    engine = MemoryEngine(config=app_config)
    yield engine
    engine.close()


class FakeProvider:
    """Deterministic bag-of-letters embedder; can be told to fail."""

    name = 'fake'
    dimension = 26

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls: List[str] = []

    def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        if self.fail:
            raise EmbeddingProviderError('provider unreachable')
        vector = [0.0] * self.dimension
        for ch in text.lower():
            if 'a' <= ch <= 'z':
                vector[ord(ch) - ord('a')] += 1.0
        return vector

    def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        return [self.embed(text) for text in texts]


@pytest.fixture
def fake_provider():
    return FakeProvider()


@pytest.fixture
def dense_engine(app_config, fake_provider):
    engine = MemoryEngine(config=app_config, dense_provider=fake_provider)
    yield engine
    engine.close()


@pytest.fixture
def age_memory():
    """Return a helper that pretends a memory was last read some days ago."""

    def _age(engine: MemoryEngine, memory_id: int, days: float) -> None:
        stamp = to_storage_str(utc_now() - timedelta(days=days))
        with engine.storage.transaction() as conn:
            conn.execute("UPDATE memories SET last_accessed = ? WHERE id = ?", (stamp, memory_id))

    return _age
