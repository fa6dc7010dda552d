"""
Backend selection from configuration.
"""

from __future__ import annotations

from typing import Optional

import core.config as config
from core.storage.base import MemoryStore


def create_store(driver: Optional[str] = None) -> MemoryStore:
    """Open the configured backend.

    Raises ``StorageUnavailableError`` when the backend cannot be reached.
    Backend modules are imported lazily so a deployment only needs the
    driver it actually uses.
    """
    driver = (driver or config.STORAGE_DRIVER).strip().lower()
    config.logger.info("Opening storage backend...", extra={"driver": driver})

    if driver == "sqlite":
        from core.storage.sqlite_store import SQLiteMemoryStore

        return SQLiteMemoryStore(config.SQLITE_PATH)
    if driver == "postgres":
        from core.storage.postgres_store import PostgresMemoryStore

        return PostgresMemoryStore(config.DATABASE_URL)
    if driver == "mongodb":
        from core.storage.mongodb_store import MongoMemoryStore

        return MongoMemoryStore(config.MONGODB_URI, config.MONGODB_DATABASE)
    raise ValueError(f"unsupported storage driver: {driver!r}")


__all__ = ["create_store"]
