"""
Dependency helpers for the Engram gateway.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from core.context import IdentityContext, current_identity
from core.services.memory_service import MemoryService


def get_memory_service(request: Request) -> MemoryService:
    service = getattr(request.app.state, "service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="service not initialized")
    return service


def get_identity(request: Request) -> IdentityContext:
    identity = request.scope.get("state", {}).get("identity")
    if identity is not None:
        return identity
    return current_identity()
