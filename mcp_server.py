"""
Engram local mode - stdio MCP server backed by the configured store.
"""

import sys

import core.config as config
from core.errors import StorageUnavailableError
from core.mcp import create_mcp_server
from core.services.embeddings import OllamaEmbedder
from core.services.memory_service import MemoryService
from core.storage.factory import create_store

logger = config.logger


def build_local_service() -> MemoryService:
    config.validate_and_prepare_config()
    store = create_store()
    return MemoryService(store, OllamaEmbedder())


def main() -> None:
    try:
        service = build_local_service()
    except (RuntimeError, StorageUnavailableError) as exc:
        logger.error("local_server_startup_failed", extra={"detail": str(exc)})
        sys.exit(1)

    logger.info("local_server_started", extra={"driver": config.STORAGE_DRIVER})
    try:
        create_mcp_server(service).run(transport="stdio")
    finally:
        service.close()
        logger.info("local_server_stopped")


if __name__ == "__main__":
    main()
