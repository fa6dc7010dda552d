"""
Middleware configuration for the Engram gateway.
"""

from __future__ import annotations

from typing import Optional

from fastapi.middleware.cors import CORSMiddleware
from starlette.datastructures import Headers
from starlette.types import ASGIApp, Receive, Scope, Send

import core.config as config
from core.context import (
    IdentityContext,
    RequestContext,
    reset_current_request_context,
    set_current_request_context,
)
from rate_limiter import (
    InMemoryRateLimiter,
    RateLimitConfig,
    RateLimitMiddleware,
    build_rate_limiter_from_env,
    load_rate_limit_config_from_env,
)
from security_middleware import (
    RequestIDMiddleware,
    RequestSizeLimitConfig,
    RequestSizeLimitMiddleware,
    load_request_id_config_from_env,
    load_request_size_limit_config_from_env,
)

CORS_ALLOWED_METHODS = ["GET", "POST", "PUT", "DELETE", "OPTIONS"]
CORS_ALLOWED_HEADERS = [
    "Content-Type",
    config.AUTHOR_NAME_HEADER,
    config.AUTHOR_EMAIL_HEADER,
    config.PROJECT_SCOPE_HEADER,
    config.REQUEST_ID_HEADER,
]


class IdentityContextMiddleware:
    """Attach the caller's identity headers to the request context."""

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        identity = IdentityContext.from_headers(Headers(scope=scope))
        state = scope.setdefault("state", {})
        state["identity"] = identity
        context = RequestContext(
            identity=identity,
            request_id=state.get("request_id"),
            source="http",
        )
        token = set_current_request_context(context)
        try:
            await self.app(scope, receive, send)
        finally:
            reset_current_request_context(token)


def configure_middleware(
    app,
    rate_limit_config: Optional[RateLimitConfig] = None,
    request_size_config: Optional[RequestSizeLimitConfig] = None,
    cors_origins: Optional[list[str]] = None,
) -> InMemoryRateLimiter:
    """Install the gateway pipeline and return the rate limiter it uses.

    Starlette wraps middleware in reverse order of registration, so the
    last one added here sees the request first: request ID, size cap,
    rate limit, CORS, identity.
    """
    rate_limit_config = rate_limit_config or load_rate_limit_config_from_env()
    rate_limiter = build_rate_limiter_from_env(rate_limit_config)
    request_size_config = request_size_config or load_request_size_limit_config_from_env()
    if cors_origins is None:
        cors_origins = list(config.CORS_ALLOWED_ORIGINS)

    app.add_middleware(IdentityContextMiddleware)

    if cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins,
            allow_methods=CORS_ALLOWED_METHODS,
            allow_headers=CORS_ALLOWED_HEADERS,
            expose_headers=[config.REQUEST_ID_HEADER],
            max_age=86400,
        )

    app.add_middleware(
        RateLimitMiddleware,
        limiter=rate_limiter,
        config=rate_limit_config,
    )

    app.add_middleware(
        RequestSizeLimitMiddleware,
        config=request_size_config,
    )

    app.add_middleware(
        RequestIDMiddleware,
        config=load_request_id_config_from_env(),
    )

    return rate_limiter
