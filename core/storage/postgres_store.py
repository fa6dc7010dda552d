"""
PostgreSQL backend using pgvector for similarity search.
"""

from __future__ import annotations

from typing import Optional, Sequence

from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    insert,
    select,
    text,
    true,
    update,
)
from sqlalchemy.exc import OperationalError, SQLAlchemyError

import core.config as config
from core.errors import NotFoundError, StorageError, StorageUnavailableError
from core.models import (
    MEMORY_TYPES,
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


def build_tables(metadata: MetaData, dimensions: int) -> tuple[Table, Table]:
    types_sql = ", ".join(f"'{value}'" for value in MEMORY_TYPES)
    memories = Table(
        "memories",
        metadata,
        Column("id", BigInteger, primary_key=True, autoincrement=True),
        Column("type", String(20), nullable=False),
        Column("area", String(255), nullable=False),
        Column("content", Text, nullable=False),
        Column("rationale", Text, nullable=True),
        Column("is_valid", Boolean, nullable=False, server_default=true()),
        Column("superseded_by", BigInteger, nullable=True),
        Column("created_at", DateTime(timezone=True), nullable=False),
        Column("author_name", String(255), nullable=False, server_default=""),
        Column("author_email", String(255), nullable=False, server_default=""),
        Column("project_scope", String(255), nullable=False, server_default=""),
        CheckConstraint(f"type IN ({types_sql})", name="ck_memories_type"),
        Index("ix_memories_type", "type"),
        Index("ix_memories_area", "area"),
        Index("ix_memories_is_valid", "is_valid"),
        Index("ix_memories_created_at", "created_at"),
        Index("ix_memories_project_scope", "project_scope"),
        Index("ix_memories_author_email", "author_email"),
    )
    embeddings = Table(
        "memory_embeddings",
        metadata,
        Column(
            "memory_id",
            BigInteger,
            ForeignKey("memories.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        Column("embedding", Vector(dimensions), nullable=False),
        Index(
            "ix_memory_embeddings_hnsw",
            "embedding",
            postgresql_using="hnsw",
            postgresql_ops={"embedding": "vector_cosine_ops"},
        ),
    )
    return memories, embeddings


def build_filter_clauses(memories: Table, filters: FilterSet, include_invalid: bool = False) -> list:
    """Translate the fixed filter set into bound SQLAlchemy expressions."""
    clauses = []
    if not include_invalid:
        clauses.append(memories.c.is_valid.is_(True))
    if filters.memory_type:
        clauses.append(memories.c.type == filters.memory_type)
    if filters.area:
        clauses.append(memories.c.area == filters.area)
    if filters.project_scope:
        clauses.append(memories.c.project_scope == filters.project_scope)
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
        created_at=ensure_utc(row["created_at"]),
        author_name=row["author_name"] or "",
        author_email=row["author_email"] or "",
        project_scope=row["project_scope"] or "",
    )


class PostgresMemoryStore:
    """Pooled store shared by every gateway worker."""

    def __init__(
        self,
        database_url: Optional[str] = None,
        dimensions: Optional[int] = None,
        pool_size: Optional[int] = None,
        max_overflow: Optional[int] = None,
        engine=None,
    ):
        self.dimensions = dimensions or config.EMBEDDING_DIM
        if engine is None:
            url = database_url or config.DATABASE_URL
            if not url:
                raise StorageUnavailableError("DATABASE_URL is required for the postgres backend")
            engine = create_engine(
                url,
                pool_pre_ping=True,
                pool_size=pool_size or config.DB_POOL_SIZE,
                max_overflow=max_overflow if max_overflow is not None else config.DB_MAX_OVERFLOW,
            )
        self._engine = engine
        self._metadata = MetaData()
        self.memories, self.embeddings = build_tables(self._metadata, self.dimensions)
        try:
            self._initialize()
        except OperationalError as exc:
            self._engine.dispose()
            raise StorageUnavailableError(f"failed to connect to postgres: {exc}") from exc
        config.logger.info("postgres_store_ready", extra={"dimensions": self.dimensions})

    def _initialize(self) -> None:
        config.logger.info("Ensuring pgvector extension...")
        with self._engine.begin() as conn:
            conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
        self._metadata.create_all(self._engine)

    def add(self, memory: Memory, embedding: Sequence[float]) -> Memory:
        memory_type = MemoryType.parse(memory.type)
        vector = validate_embedding(embedding, self.dimensions)
        created_at = utcnow()
        rationale = memory.rationale or None

        try:
            with self._engine.begin() as conn:
                memory_id = conn.execute(
                    insert(self.memories)
                    .values(
                        type=memory_type.value,
                        area=memory.area,
                        content=memory.content,
                        rationale=rationale,
                        is_valid=True,
                        created_at=created_at,
                        author_name=memory.author_name or "",
                        author_email=memory.author_email or "",
                        project_scope=memory.project_scope or "",
                    )
                    .returning(self.memories.c.id)
                ).scalar_one()
                conn.execute(
                    insert(self.embeddings).values(memory_id=memory_id, embedding=vector)
                )
        except SQLAlchemyError as exc:
            raise StorageError(f"failed to insert memory: {exc}") from exc

        stored = memory.stored(int(memory_id), created_at)
        stored.type = memory_type
        stored.rationale = rationale
        return stored

    def search_statement(self, query_embedding: Sequence[float], opts: SearchOptions):
        vector = validate_embedding(query_embedding, self.dimensions)
        clauses = build_filter_clauses(self.memories, FilterSet.from_options(opts))
        distance = self.embeddings.c.embedding.cosine_distance(vector)
        return (
            select(self.memories)
            .join(self.embeddings, self.embeddings.c.memory_id == self.memories.c.id)
            .where(*clauses)
            .order_by(distance.asc(), self.memories.c.id.desc())
            .limit(effective_limit(opts.limit, config.DEFAULT_SEARCH_LIMIT))
        )

    def list_statement(self, opts: ListOptions):
        clauses = build_filter_clauses(
            self.memories,
            FilterSet.from_options(opts),
            include_invalid=opts.include_invalid,
        )
        return (
            select(self.memories)
            .where(*clauses)
            .order_by(self.memories.c.created_at.desc(), self.memories.c.id.desc())
            .limit(effective_limit(opts.limit, config.DEFAULT_LIST_LIMIT))
            .offset(max(0, opts.offset or 0))
        )

    def search(self, query_embedding: Sequence[float], opts: SearchOptions) -> list[Memory]:
        stmt = self.search_statement(query_embedding, opts)
        try:
            with self._engine.connect() as conn:
                rows = conn.execute(stmt).mappings().all()
        except SQLAlchemyError as exc:
            raise StorageError(f"failed to search memories: {exc}") from exc
        return [_row_to_memory(row) for row in rows]

    def list(self, opts: ListOptions) -> list[Memory]:
        stmt = self.list_statement(opts)
        try:
            with self._engine.connect() as conn:
                rows = conn.execute(stmt).mappings().all()
        except SQLAlchemyError as exc:
            raise StorageError(f"failed to list memories: {exc}") from exc
        return [_row_to_memory(row) for row in rows]

    def invalidate(self, memory_id: int, superseded_by: Optional[int] = None) -> None:
        memories = self.memories
        try:
            with self._engine.begin() as conn:
                result = conn.execute(
                    update(memories)
                    .where(memories.c.id == memory_id, memories.c.is_valid.is_(True))
                    .values(is_valid=False, superseded_by=superseded_by)
                )
                if result.rowcount:
                    return
                exists = conn.execute(
                    select(memories.c.id).where(memories.c.id == memory_id)
                ).first()
        except SQLAlchemyError as exc:
            raise StorageError(f"failed to invalidate memory {memory_id}: {exc}") from exc
        if exists is None:
            raise NotFoundError(memory_id)

    def close(self) -> None:
        self._engine.dispose()


__all__ = ["PostgresMemoryStore", "build_tables", "build_filter_clauses"]
