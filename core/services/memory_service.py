"""
Memory lifecycle service: add, search, list and invalidate.
"""

from __future__ import annotations

from typing import Optional, List

import core.config as config
from core.models import ListOptions, Memory, MemoryType, SearchOptions
from core.services.embeddings import Embedder
from core.storage.base import MemoryStore
from core.validators import (
    validate_optional_text as _validate_optional_text,
    validate_required_text as _validate_required_text,
)

logger = config.logger

MAX_TEXT_LENGTH = config.MAX_TEXT_LENGTH
MAX_AREA_LENGTH = config.MAX_AREA_LENGTH
MAX_QUERY_LENGTH = config.MAX_QUERY_LENGTH


def embedding_text(area: str, content: str, rationale: Optional[str] = None) -> str:
    """Text embedded for a memory: area and content, plus rationale if any."""
    value = f"{area}: {content}"
    if rationale:
        value += f" {rationale}"
    return value


def _optional_type(memory_type) -> Optional[MemoryType]:
    if memory_type is None or memory_type == "":
        return None
    return MemoryType.parse(memory_type)


class MemoryService:
    """Coordinates the embedder and a store.

    Embedding always happens before the store is touched, so a provider
    failure never leaves a partial write.
    """

    def __init__(self, store: MemoryStore, embedder: Embedder):
        self.store = store
        self.embedder = embedder

    def add(
        self,
        memory_type,
        area: str,
        content: str,
        rationale: Optional[str] = None,
        *,
        author_name: str = "",
        author_email: str = "",
        project_scope: str = "",
    ) -> Memory:
        parsed_type = MemoryType.parse(memory_type)
        _validate_required_text(area, "area", MAX_AREA_LENGTH)
        _validate_required_text(content, "content", MAX_TEXT_LENGTH)
        _validate_optional_text(rationale, "rationale", MAX_TEXT_LENGTH)

        vector = self.embedder.embed_for_storage(embedding_text(area, content, rationale))
        memory = Memory(
            type=parsed_type,
            area=area,
            content=content,
            rationale=rationale or None,
            author_name=author_name or "",
            author_email=author_email or "",
            project_scope=project_scope or "",
        )
        stored = self.store.add(memory, vector)
        logger.info(
            "memory_added",
            extra={"memory_id": stored.id, "type": parsed_type.value, "area": area},
        )
        return stored

    def search(
        self,
        query: str,
        limit: int = config.DEFAULT_SEARCH_LIMIT,
        memory_type=None,
        area: Optional[str] = None,
    ) -> List[Memory]:
        return self.search_scoped(query, limit, memory_type, area, project_scope=None)

    def search_scoped(
        self,
        query: str,
        limit: int = config.DEFAULT_SEARCH_LIMIT,
        memory_type=None,
        area: Optional[str] = None,
        project_scope: Optional[str] = None,
    ) -> List[Memory]:
        _validate_required_text(query, "query", MAX_QUERY_LENGTH)
        opts = SearchOptions(
            limit=limit if limit and limit > 0 else config.DEFAULT_SEARCH_LIMIT,
            memory_type=_optional_type(memory_type),
            area=area or None,
            project_scope=project_scope or None,
        )
        vector = self.embedder.embed_for_query(query)
        return self.store.search(vector, opts)

    def list(
        self,
        limit: int = config.DEFAULT_LIST_LIMIT,
        memory_type=None,
        area: Optional[str] = None,
        include_invalid: bool = False,
        offset: int = 0,
    ) -> List[Memory]:
        return self.list_scoped(limit, memory_type, area, include_invalid, offset, project_scope=None)

    def list_scoped(
        self,
        limit: int = config.DEFAULT_LIST_LIMIT,
        memory_type=None,
        area: Optional[str] = None,
        include_invalid: bool = False,
        offset: int = 0,
        project_scope: Optional[str] = None,
    ) -> List[Memory]:
        opts = ListOptions(
            limit=limit if limit and limit > 0 else config.DEFAULT_LIST_LIMIT,
            offset=max(0, offset or 0),
            memory_type=_optional_type(memory_type),
            area=area or None,
            project_scope=project_scope or None,
            include_invalid=bool(include_invalid),
        )
        return self.store.list(opts)

    def invalidate(self, memory_id: int, superseded_by: Optional[int] = None) -> None:
        self.store.invalidate(memory_id, superseded_by)
        logger.info(
            "memory_invalidated",
            extra={"memory_id": memory_id, "superseded_by": superseded_by},
        )

    def health_check(self) -> None:
        """Round-trip the store; raises if the backend is unreachable."""
        self.store.list(ListOptions(limit=1))

    def close(self) -> None:
        self.store.close()
        close_embedder = getattr(self.embedder, "close", None)
        if close_embedder is not None:
            close_embedder()


def invalidation_message(memory_id: int, superseded_by: Optional[int] = None) -> str:
    message = f"Memory {memory_id} has been invalidated."
    if superseded_by is not None:
        message += f" Superseded by memory {superseded_by}."
    return message


__all__ = ["MemoryService", "embedding_text", "invalidation_message"]
