"""
Storage contract shared by every Engram backend.
"""

from __future__ import annotations

from typing import Optional, Protocol, Sequence, runtime_checkable

from core.models import ListOptions, Memory, SearchOptions


@runtime_checkable
class MemoryStore(Protocol):
    """Persistence for memories and their embeddings.

    Implementations validate the memory type and the embedding length before
    touching the database, assign ``id`` and ``created_at`` on insert, and
    never physically delete rows. ``invalidate`` raises ``NotFoundError`` for
    an unknown id and leaves an already invalid memory unchanged.
    """

    dimensions: int

    def add(self, memory: Memory, embedding: Sequence[float]) -> Memory:
        ...

    def search(self, query_embedding: Sequence[float], opts: SearchOptions) -> list[Memory]:
        ...

    def list(self, opts: ListOptions) -> list[Memory]:
        ...

    def invalidate(self, memory_id: int, superseded_by: Optional[int] = None) -> None:
        ...

    def close(self) -> None:
        ...


def effective_limit(limit: int, default: int) -> int:
    return limit if limit and limit > 0 else default


__all__ = ["MemoryStore", "effective_limit"]
