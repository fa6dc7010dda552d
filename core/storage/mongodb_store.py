"""
MongoDB backend using an Atlas-style $vectorSearch index.
"""

from __future__ import annotations

from typing import Optional, Sequence

from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument
from pymongo.errors import OperationFailure, PyMongoError

import core.config as config
from core.errors import NotFoundError, StorageError, StorageUnavailableError
from core.models import (
    FilterSet,
    ListOptions,
    Memory,
    MemoryType,
    SearchOptions,
    ensure_utc,
    utcnow,
)
from core.storage.base import effective_limit
from core.validators import validate_embedding

MEMORY_ID_COUNTER = "memory_id"
NUM_CANDIDATES_FACTOR = 10

_INDEXED_FIELDS = ("type", "area", "is_valid", "project_scope", "author.email", "created_at")


def build_match_filter(filters: FilterSet, include_invalid: bool = False) -> dict:
    query: dict = {}
    if not include_invalid:
        query["is_valid"] = True
    if filters.memory_type:
        query["type"] = filters.memory_type
    if filters.area:
        query["area"] = filters.area
    if filters.project_scope:
        query["project_scope"] = filters.project_scope
    return query


def _document_to_memory(doc: dict) -> Memory:
    author = doc.get("author") or {}
    created_at = doc.get("created_at")
    return Memory(
        id=int(doc["_id"]),
        type=MemoryType.parse(doc["type"]),
        area=doc.get("area", ""),
        content=doc.get("content", ""),
        rationale=doc.get("rationale") or None,
        is_valid=bool(doc.get("is_valid", True)),
        superseded_by=doc.get("superseded_by"),
        created_at=ensure_utc(created_at) if created_at else None,
        author_name=author.get("name") or "",
        author_email=author.get("email") or "",
        project_scope=doc.get("project_scope") or "",
    )


class MongoMemoryStore:
    """Document store for team deployments.

    Ids come from an atomic counter document in the ``counters`` collection.
    The counter advance and the insert are separate writes, so a failed
    insert leaves a gap in the id sequence.
    """

    def __init__(
        self,
        uri: Optional[str] = None,
        database_name: Optional[str] = None,
        dimensions: Optional[int] = None,
        vector_index: Optional[str] = None,
        database=None,
    ):
        self.dimensions = dimensions or config.EMBEDDING_DIM
        self.vector_index = vector_index or config.MONGODB_VECTOR_INDEX
        self._client = None
        if database is None:
            target = uri or config.MONGODB_URI
            if not target:
                raise StorageUnavailableError("MONGODB_URI is required for the mongodb backend")
            self._client = MongoClient(target, serverSelectionTimeoutMS=10000, tz_aware=True)
            try:
                self._client.admin.command("ping")
            except PyMongoError as exc:
                self._client.close()
                raise StorageUnavailableError(f"failed to connect to mongodb: {exc}") from exc
            database = self._client[database_name or config.MONGODB_DATABASE]
        self._db = database
        self.memories = database["memories"]
        self.counters = database["counters"]
        try:
            self._ensure_indexes()
        except PyMongoError as exc:
            self.close()
            raise StorageUnavailableError(f"failed to create mongodb indexes: {exc}") from exc
        config.logger.info("mongodb_store_ready", extra={"vector_index": self.vector_index})

    def _ensure_indexes(self) -> None:
        for field_name in _INDEXED_FIELDS:
            self.memories.create_index([(field_name, ASCENDING)])

    def _next_id(self) -> int:
        doc = self.counters.find_one_and_update(
            {"_id": MEMORY_ID_COUNTER},
            {"$inc": {"value": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return int(doc["value"])

    def add(self, memory: Memory, embedding: Sequence[float]) -> Memory:
        memory_type = MemoryType.parse(memory.type)
        vector = validate_embedding(embedding, self.dimensions)
        created_at = utcnow()
        rationale = memory.rationale or None

        try:
            memory_id = self._next_id()
            self.memories.insert_one({
                "_id": memory_id,
                "type": memory_type.value,
                "area": memory.area,
                "content": memory.content,
                "rationale": rationale,
                "is_valid": True,
                "superseded_by": None,
                "created_at": created_at,
                "author": {
                    "name": memory.author_name or "",
                    "email": memory.author_email or "",
                },
                "project_scope": memory.project_scope or "",
                "embedding": vector,
            })
        except PyMongoError as exc:
            raise StorageError(f"failed to insert memory: {exc}") from exc

        stored = memory.stored(memory_id, created_at)
        stored.type = memory_type
        stored.rationale = rationale
        return stored

    def search_pipeline(self, vector: list[float], opts: SearchOptions) -> list[dict]:
        limit = effective_limit(opts.limit, config.DEFAULT_SEARCH_LIMIT)
        return [
            {
                "$vectorSearch": {
                    "index": self.vector_index,
                    "path": "embedding",
                    "queryVector": vector,
                    "numCandidates": limit * NUM_CANDIDATES_FACTOR,
                    "limit": limit,
                    "filter": build_match_filter(FilterSet.from_options(opts)),
                }
            },
            {"$project": {"embedding": 0}},
        ]

    def search(self, query_embedding: Sequence[float], opts: SearchOptions) -> list[Memory]:
        vector = validate_embedding(query_embedding, self.dimensions)
        pipeline = self.search_pipeline(vector, opts)
        try:
            docs = list(self.memories.aggregate(pipeline))
        except OperationFailure as exc:
            config.logger.warning(
                "vector_search_unavailable",
                extra={"index": self.vector_index, "detail": str(exc)},
            )
            return self.list(ListOptions(
                limit=effective_limit(opts.limit, config.DEFAULT_SEARCH_LIMIT),
                memory_type=opts.memory_type,
                area=opts.area,
                project_scope=opts.project_scope,
            ))
        except PyMongoError as exc:
            raise StorageError(f"failed to search memories: {exc}") from exc
        return [_document_to_memory(doc) for doc in docs]

    def list(self, opts: ListOptions) -> list[Memory]:
        query = build_match_filter(FilterSet.from_options(opts), include_invalid=opts.include_invalid)
        try:
            cursor = (
                self.memories.find(query, projection={"embedding": 0})
                .sort([("created_at", DESCENDING), ("_id", DESCENDING)])
                .skip(max(0, opts.offset or 0))
                .limit(effective_limit(opts.limit, config.DEFAULT_LIST_LIMIT))
            )
            docs = [doc for doc in cursor]
        except PyMongoError as exc:
            raise StorageError(f"failed to list memories: {exc}") from exc
        return [_document_to_memory(doc) for doc in docs]

    def invalidate(self, memory_id: int, superseded_by: Optional[int] = None) -> None:
        try:
            result = self.memories.update_one(
                {"_id": memory_id, "is_valid": True},
                {"$set": {"is_valid": False, "superseded_by": superseded_by}},
            )
            if result.matched_count:
                return
            exists = self.memories.count_documents({"_id": memory_id}, limit=1)
        except PyMongoError as exc:
            raise StorageError(f"failed to invalidate memory {memory_id}: {exc}") from exc
        if not exists:
            raise NotFoundError(memory_id)

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None


__all__ = ["MongoMemoryStore", "build_match_filter"]
