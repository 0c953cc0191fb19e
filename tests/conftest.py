"""Shared pytest fixtures."""

from __future__ import annotations

import hashlib
import re
import threading
from collections.abc import Sequence

import pytest

from hybridrag.db.connection import Database
from hybridrag.db.schema import initialize
from hybridrag.db.store import DocumentStore

FAKE_MODEL = "test/fake-embedding"
FAKE_DIMS = 16


class FakeEmbeddingProvider:
    """Deterministic bag-of-words embeddings; no network.

    Each word is hashed into one of ``dimensions - 1`` buckets; the last
    component is a constant so no vector is all zeros.
    """

    def __init__(self, model: str = FAKE_MODEL, dimensions: int = FAKE_DIMS) -> None:
        self.model = model
        self.dimensions = dimensions
        self.calls: list[list[str]] = []
        self._lock = threading.Lock()

    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        texts = list(texts)
        with self._lock:
            self.calls.append(texts)
        return [self.vector(t) for t in texts]

    def vector(self, text: str) -> list[float]:
        vec = [0.0] * self.dimensions
        vec[-1] = 1.0
        for word in re.findall(r"\w+", text.lower()):
            bucket = int(hashlib.md5(word.encode()).hexdigest(), 16) % (self.dimensions - 1)
            vec[bucket] += 1.0
        return vec


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / ".hybridrag.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def database(tmp_path):
    return Database(tmp_path / ".hybridrag.db")


@pytest.fixture
def fake_provider():
    return FakeEmbeddingProvider()


@pytest.fixture
def store(database, fake_provider):
    """DocumentStore whose vec table matches the fake provider."""
    return DocumentStore(database, fake_provider.model, fake_provider.dimensions)
