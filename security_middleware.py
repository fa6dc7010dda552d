"""
Request hygiene middleware: request IDs and body-size caps.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass

from starlette.datastructures import MutableHeaders
from starlette.exceptions import HTTPException
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

import core.config as config


@dataclass(frozen=True)
class RequestSizeLimitConfig:
    enabled: bool
    max_body_bytes: int


@dataclass(frozen=True)
class RequestIDConfig:
    header_name: str = "X-Request-ID"
    max_length: int = 128


class _BodyTooLarge(HTTPException):
    def __init__(self):
        super().__init__(status_code=413, detail="request_too_large")


def _too_large_response() -> JSONResponse:
    return JSONResponse({"error": "request_too_large"}, status_code=413)


class RequestSizeLimitMiddleware:
    """Rejects bodies above ``max_body_bytes`` with 413.

    A declared Content-Length is checked up front; chunked bodies are counted
    as they stream in.
    """

    def __init__(self, app: ASGIApp, config: RequestSizeLimitConfig):
        self.app = app
        self.config = config

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or not self.config.enabled:
            await self.app(scope, receive, send)
            return

        limit = self.config.max_body_bytes
        for key, value in scope.get("headers") or []:
            if key.lower() == b"content-length":
                try:
                    declared = int(value)
                except ValueError:
                    declared = 0
                if declared > limit:
                    await _too_large_response()(scope, receive, send)
                    return
                break

        received = 0
        response_started = False

        async def limited_receive() -> Message:
            nonlocal received
            message = await receive()
            if message["type"] == "http.request":
                received += len(message.get("body", b""))
                if received > limit:
                    raise _BodyTooLarge()
            return message

        async def tracking_send(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            await self.app(scope, limited_receive, tracking_send)
        except _BodyTooLarge:
            if response_started:
                raise
            await _too_large_response()(scope, receive, send)


class RequestIDMiddleware:
    """Echoes a caller-supplied request ID or generates one.

    The ID is stored on ``scope["state"]["request_id"]`` and returned in the
    response header.
    """

    def __init__(self, app: ASGIApp, config: RequestIDConfig = RequestIDConfig()):
        self.app = app
        self.config = config

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        header_key = self.config.header_name.lower().encode("latin-1")
        request_id = None
        for key, value in scope.get("headers") or []:
            if key.lower() == header_key:
                request_id = value.decode("latin-1").strip()[: self.config.max_length]
                break
        if not request_id:
            request_id = str(uuid.uuid4())
        scope.setdefault("state", {})["request_id"] = request_id

        async def send_with_request_id(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = MutableHeaders(scope=message)
                headers[self.config.header_name] = request_id
            await send(message)

        await self.app(scope, receive, send_with_request_id)


def load_request_size_limit_config_from_env() -> RequestSizeLimitConfig:
    return RequestSizeLimitConfig(
        enabled=config.MAX_REQUEST_BODY_BYTES > 0,
        max_body_bytes=config.MAX_REQUEST_BODY_BYTES,
    )


def load_request_id_config_from_env() -> RequestIDConfig:
    return RequestIDConfig(header_name=config.REQUEST_ID_HEADER)


__all__ = [
    "RequestSizeLimitConfig",
    "RequestSizeLimitMiddleware",
    "RequestIDConfig",
    "RequestIDMiddleware",
    "load_request_size_limit_config_from_env",
    "load_request_id_config_from_env",
]
