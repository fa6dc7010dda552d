"""
FastAPI app wiring for the Engram gateway.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

import core.config as config
from core.errors import (
    EmbeddingDimensionError,
    EmbeddingProviderError,
    NotFoundError,
    StorageError,
    ValidationIssue,
)
from core.services.embeddings import OllamaEmbedder
from core.services.memory_service import MemoryService
from core.storage.factory import create_store
from app.middleware import configure_middleware
from app.routes.health import router as health_router
from app.routes.memories import router as memories_router
from app.routes.root import router as root_router
from rate_limiter import RateLimitConfig, load_rate_limit_config_from_env
from security_middleware import RequestSizeLimitConfig


def _request_id(request: Request) -> Optional[str]:
    return request.scope.get("state", {}).get("request_id")


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _validation_message(exc: RequestValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ()) if item != "body")
        message = error.get("msg", "invalid value")
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts) or "invalid request"


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return _error(400, _validation_message(exc))

    @app.exception_handler(ValidationIssue)
    async def validation_issue_handler(request: Request, exc: ValidationIssue):
        config.logger.info(
            "request_validation_error",
            extra={"field": exc.field, "error_type": exc.error_type, "request_id": _request_id(request)},
        )
        return _error(400, str(exc))

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return _error(404, "memory not found")

    @app.exception_handler(EmbeddingProviderError)
    async def embedding_provider_handler(request: Request, exc: EmbeddingProviderError):
        config.logger.warning(
            "embedding_provider_error",
            extra={"detail": str(exc), "request_id": _request_id(request)},
        )
        return _error(503, "embedding provider unavailable")

    @app.exception_handler(EmbeddingDimensionError)
    async def embedding_dimension_handler(request: Request, exc: EmbeddingDimensionError):
        config.logger.error(
            "embedding_dimension_error",
            extra={"expected": exc.expected, "actual": exc.actual, "request_id": _request_id(request)},
        )
        return _error(500, "embedding dimension mismatch")

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError):
        config.logger.error(
            "storage_error",
            extra={"detail": str(exc), "request_id": _request_id(request)},
        )
        return _error(500, "storage failure")

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        detail = exc.detail if isinstance(exc.detail, str) else "request failed"
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": detail},
            headers=getattr(exc, "headers", None),
        )


def build_service_from_config() -> MemoryService:
    """Open the configured backend and embedder; fails fast when unreachable."""
    config.validate_and_prepare_config(gateway=True)
    store = create_store()
    return MemoryService(store, OllamaEmbedder())


def create_app(
    service: Optional[MemoryService] = None,
    rate_limit_config: Optional[RateLimitConfig] = None,
    request_size_config: Optional[RequestSizeLimitConfig] = None,
    cors_origins: Optional[list[str]] = None,
) -> FastAPI:
    """Build the gateway app.

    When ``service`` is omitted the lifespan builds one from configuration
    and closes it on shutdown; a supplied service is left open.
    """
    rate_limit_config = rate_limit_config or load_rate_limit_config_from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Initialize on startup, cleanup on shutdown."""
        owns_service = app.state.service is None
        if owns_service:
            app.state.service = await asyncio.to_thread(build_service_from_config)
        limiter = app.state.rate_limiter
        sweeper_task = None
        if rate_limit_config.enabled:
            sweeper_task = asyncio.create_task(
                limiter.run_sweeper(rate_limit_config.global_ip.window_seconds)
            )
        config.logger.info("gateway_started", extra={"driver": config.STORAGE_DRIVER})
        try:
            yield
        finally:
            await limiter.close()
            if sweeper_task:
                sweeper_task.cancel()
                try:
                    await sweeper_task
                except asyncio.CancelledError:
                    pass
            if owns_service and app.state.service is not None:
                app.state.service.close()
                app.state.service = None
            config.logger.info("gateway_stopped")

    app = FastAPI(
        title="Engram",
        version=config.SERVICE_VERSION,
        redirect_slashes=False,
        lifespan=lifespan,
    )
    app.state.service = service
    app.state.rate_limiter = configure_middleware(
        app,
        rate_limit_config=rate_limit_config,
        request_size_config=request_size_config,
        cors_origins=cors_origins,
    )
    register_exception_handlers(app)

    app.include_router(health_router)
    app.include_router(root_router)
    app.include_router(memories_router, prefix="/v1")
    app.include_router(memories_router, include_in_schema=False)
    return app
