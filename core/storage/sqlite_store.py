"""
Embedded SQLite backend with sqlite-vec for vector search.
"""

from __future__ import annotations

import os
from datetime import datetime
from typing import Optional, Sequence

import sqlite_vec
from sqlalchemy import create_engine, event, text
from sqlalchemy.exc import SQLAlchemyError

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

# Fixed width so lexical order of the stored text matches time order.
_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%f+00:00"

_SELECT_COLUMNS = """
    m.id, m.type, m.area, m.content, m.rationale, m.is_valid, m.superseded_by,
    m.created_at, a.author_name, a.author_email, a.project_scope
"""


def _format_timestamp(value: datetime) -> str:
    return ensure_utc(value).strftime(_TIMESTAMP_FORMAT)


def _load_sqlite_vec(dbapi_connection, connection_record) -> None:
    dbapi_connection.enable_load_extension(True)
    sqlite_vec.load(dbapi_connection)
    dbapi_connection.enable_load_extension(False)
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _filter_clauses(filters: FilterSet, params: dict) -> list[str]:
    clauses = []
    if filters.memory_type:
        clauses.append("m.type = :memory_type")
        params["memory_type"] = filters.memory_type
    if filters.area:
        clauses.append("m.area = :area")
        params["area"] = filters.area
    if filters.project_scope:
        clauses.append("COALESCE(a.project_scope, '') = :project_scope")
        params["project_scope"] = filters.project_scope
    return clauses


def _row_to_memory(row) -> Memory:
    return Memory(
        id=int(row["id"]),
        type=MemoryType.parse(row["type"]),
        area=row["area"],
        content=row["content"],
        rationale=row["rationale"] or None,
        is_valid=bool(row["is_valid"]),
        superseded_by=row["superseded_by"],
        created_at=ensure_utc(datetime.fromisoformat(row["created_at"])),
        author_name=row["author_name"] or "",
        author_email=row["author_email"] or "",
        project_scope=row["project_scope"] or "",
    )


class SQLiteMemoryStore:
    """Single-file store for one developer.

    Rows live in ``memories``, attribution in ``memory_attribution`` and
    vectors in the ``memory_embeddings`` vec0 table. SQLite serializes writers;
    the busy timeout makes concurrent callers wait for the lock.
    """

    def __init__(
        self,
        path: Optional[str] = None,
        dimensions: Optional[int] = None,
        busy_timeout_seconds: Optional[float] = None,
    ):
        self.path = path or config.SQLITE_PATH
        self.dimensions = dimensions or config.EMBEDDING_DIM
        timeout = busy_timeout_seconds or config.SQLITE_BUSY_TIMEOUT_SECONDS

        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)

        self._engine = create_engine(
            f"sqlite:///{self.path}",
            connect_args={"check_same_thread": False, "timeout": timeout},
        )
        event.listen(self._engine, "connect", _load_sqlite_vec)
        try:
            self._create_schema()
        except SQLAlchemyError as exc:
            self._engine.dispose()
            raise StorageUnavailableError(f"failed to open sqlite database at {self.path}: {exc}") from exc
        config.logger.info("sqlite_store_ready", extra={"path": self.path, "dimensions": self.dimensions})

    def _create_schema(self) -> None:
        types_sql = ", ".join(f"'{value}'" for value in (m.value for m in MemoryType))
        with self._engine.begin() as conn:
            conn.execute(text(f"""
                CREATE TABLE IF NOT EXISTS memories (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    type TEXT NOT NULL CHECK (type IN ({types_sql})),
                    area TEXT NOT NULL,
                    content TEXT NOT NULL,
                    rationale TEXT,
                    is_valid INTEGER NOT NULL DEFAULT 1,
                    superseded_by INTEGER,
                    created_at TEXT NOT NULL
                )
            """))
            conn.execute(text("CREATE INDEX IF NOT EXISTS ix_memories_created_at ON memories (created_at)"))
            conn.execute(text("CREATE INDEX IF NOT EXISTS ix_memories_type ON memories (type)"))
            conn.execute(text("CREATE INDEX IF NOT EXISTS ix_memories_area ON memories (area)"))
            conn.execute(text("""
                CREATE TABLE IF NOT EXISTS memory_attribution (
                    memory_id INTEGER PRIMARY KEY REFERENCES memories(id),
                    author_name TEXT NOT NULL DEFAULT '',
                    author_email TEXT NOT NULL DEFAULT '',
                    project_scope TEXT NOT NULL DEFAULT ''
                )
            """))
            conn.execute(text(
                "CREATE INDEX IF NOT EXISTS ix_memory_attribution_scope ON memory_attribution (project_scope)"
            ))
            conn.execute(text(f"""
                CREATE VIRTUAL TABLE IF NOT EXISTS memory_embeddings USING vec0(
                    memory_id INTEGER PRIMARY KEY,
                    embedding FLOAT[{int(self.dimensions)}]
                )
            """))

    def add(self, memory: Memory, embedding: Sequence[float]) -> Memory:
        memory_type = MemoryType.parse(memory.type)
        vector = validate_embedding(embedding, self.dimensions)
        created_at = utcnow()
        rationale = memory.rationale or None

        try:
            with self._engine.begin() as conn:
                result = conn.execute(
                    text("""
                        INSERT INTO memories (type, area, content, rationale, is_valid, created_at)
                        VALUES (:type, :area, :content, :rationale, 1, :created_at)
                    """),
                    {
                        "type": memory_type.value,
                        "area": memory.area,
                        "content": memory.content,
                        "rationale": rationale,
                        "created_at": _format_timestamp(created_at),
                    },
                )
                memory_id = int(result.lastrowid)
                conn.execute(
                    text("""
                        INSERT INTO memory_attribution (memory_id, author_name, author_email, project_scope)
                        VALUES (:memory_id, :author_name, :author_email, :project_scope)
                    """),
                    {
                        "memory_id": memory_id,
                        "author_name": memory.author_name or "",
                        "author_email": memory.author_email or "",
                        "project_scope": memory.project_scope or "",
                    },
                )
                conn.execute(
                    text("INSERT INTO memory_embeddings (memory_id, embedding) VALUES (:memory_id, :embedding)"),
                    {"memory_id": memory_id, "embedding": sqlite_vec.serialize_float32(vector)},
                )
        except SQLAlchemyError as exc:
            raise StorageError(f"failed to insert memory: {exc}") from exc

        stored = memory.stored(memory_id, created_at)
        stored.type = memory_type
        stored.rationale = rationale
        return stored

    def search(self, query_embedding: Sequence[float], opts: SearchOptions) -> list[Memory]:
        vector = validate_embedding(query_embedding, self.dimensions)
        filters = FilterSet.from_options(opts)
        params = {
            "query": sqlite_vec.serialize_float32(vector),
            "limit": effective_limit(opts.limit, config.DEFAULT_SEARCH_LIMIT),
        }
        clauses = ["m.is_valid = 1"] + _filter_clauses(filters, params)
        sql = f"""
            SELECT {_SELECT_COLUMNS},
                   vec_distance_cosine(e.embedding, :query) AS distance
            FROM memories m
            JOIN memory_embeddings e ON e.memory_id = m.id
            LEFT JOIN memory_attribution a ON a.memory_id = m.id
            WHERE {" AND ".join(clauses)}
            ORDER BY distance ASC, m.id DESC
            LIMIT :limit
        """
        try:
            with self._engine.connect() as conn:
                rows = conn.execute(text(sql), params).mappings().all()
        except SQLAlchemyError as exc:
            raise StorageError(f"failed to search memories: {exc}") from exc
        return [_row_to_memory(row) for row in rows]

    def list(self, opts: ListOptions) -> list[Memory]:
        filters = FilterSet.from_options(opts)
        params = {
            "limit": effective_limit(opts.limit, config.DEFAULT_LIST_LIMIT),
            "offset": max(0, opts.offset or 0),
        }
        clauses = _filter_clauses(filters, params)
        if not opts.include_invalid:
            clauses.insert(0, "m.is_valid = 1")
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        sql = f"""
            SELECT {_SELECT_COLUMNS}
            FROM memories m
            LEFT JOIN memory_attribution a ON a.memory_id = m.id
            {where}
            ORDER BY m.created_at DESC, m.id DESC
            LIMIT :limit OFFSET :offset
        """
        try:
            with self._engine.connect() as conn:
                rows = conn.execute(text(sql), params).mappings().all()
        except SQLAlchemyError as exc:
            raise StorageError(f"failed to list memories: {exc}") from exc
        return [_row_to_memory(row) for row in rows]

    def invalidate(self, memory_id: int, superseded_by: Optional[int] = None) -> None:
        try:
            with self._engine.begin() as conn:
                result = conn.execute(
                    text("""
                        UPDATE memories SET is_valid = 0, superseded_by = :superseded_by
                        WHERE id = :id AND is_valid = 1
                    """),
                    {"id": memory_id, "superseded_by": superseded_by},
                )
                if result.rowcount:
                    return
                exists = conn.execute(
                    text("SELECT 1 FROM memories WHERE id = :id"),
                    {"id": memory_id},
                ).first()
        except SQLAlchemyError as exc:
            raise StorageError(f"failed to invalidate memory {memory_id}: {exc}") from exc
        if exists is None:
            raise NotFoundError(memory_id)

    def close(self) -> None:
        self._engine.dispose()


__all__ = ["SQLiteMemoryStore"]
