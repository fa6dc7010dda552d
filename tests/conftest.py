import math
import os
import sqlite3
from dataclasses import replace

os.environ.setdefault("STORAGE_DRIVER", "sqlite")
os.environ.setdefault("EMBEDDING_DIM", "8")
os.environ.setdefault("RATE_LIMIT_PER_MINUTE", "0")

import pytest

from core.errors import EmbeddingProviderError, NotFoundError
from core.models import FilterSet, MemoryType, utcnow
from core.services.memory_service import MemoryService
from core.storage.base import effective_limit
from core.validators import validate_embedding

TEST_DIMENSIONS = 8


class FakeEmbedder:
    """Deterministic embedder that records every call."""

    def __init__(self, dimensions: int = TEST_DIMENSIONS, vectors=None, fail: bool = False):
        self.dimensions = dimensions
        self.vectors = dict(vectors or {})
        self.fail = fail
        self.calls = []
        self.closed = False

    def _vector(self, text: str) -> list[float]:
        if self.fail:
            raise EmbeddingProviderError("embedding provider unavailable: connection refused")
        if text in self.vectors:
            return list(self.vectors[text])
        values = [1.0] * self.dimensions
        for ch in text:
            values[ord(ch) % self.dimensions] += 1.0
        return values

    def embed_for_storage(self, text: str) -> list[float]:
        self.calls.append(("storage", text))
        return self._vector(text)

    def embed_for_query(self, text: str) -> list[float]:
        self.calls.append(("query", text))
        return self._vector(text)

    def close(self) -> None:
        self.closed = True


def unit_vector(index: int, dimensions: int = TEST_DIMENSIONS) -> list[float]:
    values = [0.01] * dimensions
    values[index] = 1.0
    return values


def _cosine_distance(left, right) -> float:
    dot = sum(a * b for a, b in zip(left, right))
    norm = math.sqrt(sum(a * a for a in left)) * math.sqrt(sum(b * b for b in right))
    return 1.0 - dot / norm if norm else 1.0


class InMemoryStore:
    """Dict-backed store honoring the storage contract, for HTTP-layer tests."""

    def __init__(self, dimensions: int = TEST_DIMENSIONS):
        self.dimensions = dimensions
        self.memories = {}
        self.vectors = {}
        self.invalidations = []
        self._next_id = 0
        self.closed = False

    def _matches(self, memory, opts) -> bool:
        filters = FilterSet.from_options(opts)
        if filters.memory_type and memory.type.value != filters.memory_type:
            return False
        if filters.area and memory.area != filters.area:
            return False
        if filters.project_scope and memory.project_scope != filters.project_scope:
            return False
        return True

    def add(self, memory, embedding):
        memory_type = MemoryType.parse(memory.type)
        vector = validate_embedding(embedding, self.dimensions)
        self._next_id += 1
        stored = memory.stored(self._next_id, utcnow())
        stored.type = memory_type
        stored.rationale = memory.rationale or None
        self.memories[stored.id] = stored
        self.vectors[stored.id] = vector
        return replace(stored)

    def search(self, query_embedding, opts):
        vector = validate_embedding(query_embedding, self.dimensions)
        candidates = [
            memory for memory in self.memories.values()
            if memory.is_valid and self._matches(memory, opts)
        ]
        candidates.sort(key=lambda memory: (_cosine_distance(self.vectors[memory.id], vector), -memory.id))
        return [replace(memory) for memory in candidates[:effective_limit(opts.limit, 5)]]

    def list(self, opts):
        candidates = [
            memory for memory in self.memories.values()
            if (opts.include_invalid or memory.is_valid) and self._matches(memory, opts)
        ]
        candidates.sort(key=lambda memory: (memory.created_at, memory.id), reverse=True)
        offset = max(0, opts.offset or 0)
        return [replace(memory) for memory in candidates[offset:offset + effective_limit(opts.limit, 10)]]

    def invalidate(self, memory_id, superseded_by=None):
        memory = self.memories.get(memory_id)
        if memory is None:
            raise NotFoundError(memory_id)
        if memory.is_valid:
            memory.is_valid = False
            memory.superseded_by = superseded_by
            self.invalidations.append((memory_id, superseded_by))

    def close(self):
        self.closed = True


@pytest.fixture
def sqlite_store(tmp_path):
    pytest.importorskip("sqlite_vec")
    if not hasattr(sqlite3.Connection, "enable_load_extension"):
        pytest.skip("sqlite3 built without extension loading")
    from core.storage.sqlite_store import SQLiteMemoryStore

    store = SQLiteMemoryStore(str(tmp_path / "memory.db"), dimensions=TEST_DIMENSIONS)
    yield store
    store.close()


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def memory_service(sqlite_store, embedder):
    return MemoryService(sqlite_store, embedder)


@pytest.fixture
def memory_store():
    return InMemoryStore()


@pytest.fixture
def inmemory_service(memory_store, embedder):
    return MemoryService(memory_store, embedder)
