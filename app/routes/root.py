"""
Root endpoint with service metadata.
"""

from __future__ import annotations

from fastapi import APIRouter

import core.config as config


router = APIRouter()


@router.get("/")
async def root():
    """Root endpoint with service info."""
    return {
        "service": config.SERVICE_NAME,
        "version": config.SERVICE_VERSION,
        "description": "Shared semantic memory for engineering teams",
        "storage_driver": config.STORAGE_DRIVER,
        "embedding_model": config.EMBEDDING_MODEL,
        "endpoints": {
            "health": "/health",
            "memories": "/v1/memories",
            "search": "/v1/memories/search",
            "invalidate": "/v1/memories/{id}/invalidate",
        },
    }
