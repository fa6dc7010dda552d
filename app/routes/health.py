"""
Health endpoint backed by a storage round trip.
"""

from __future__ import annotations

import asyncio

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

import core.config as config


router = APIRouter()


async def check_service_health(service, timeout_seconds: float) -> dict:
    if service is None:
        return {"ok": False, "error": "service_not_initialized"}
    try:
        await asyncio.wait_for(asyncio.to_thread(service.health_check), timeout=timeout_seconds)
    except asyncio.TimeoutError:
        return {"ok": False, "error": "timeout"}
    except Exception as exc:
        return {"ok": False, "error": str(exc)}
    return {"ok": True}


@router.get("/health")
async def health(request: Request):
    """Health check endpoint."""
    service = getattr(request.app.state, "service", None)
    result = await check_service_health(service, config.HEALTH_CHECK_TIMEOUT_SECONDS)
    if not result["ok"]:
        config.logger.warning(
            "health_check_failed",
            extra={
                "detail": result.get("error"),
                "request_id": request.scope.get("state", {}).get("request_id"),
            },
        )
        return JSONResponse(status_code=503, content={"status": "unhealthy"})
    return {"status": "ok"}
