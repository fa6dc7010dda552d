"""
Per-client request rate limiting for the Engram gateway.
"""

from __future__ import annotations

import asyncio
import math
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Optional

from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Receive, Scope, Send

import core.config as config

logger = config.logger


@dataclass(frozen=True)
class RateLimitRule:
    limit: int
    window_seconds: float


@dataclass(frozen=True)
class RateLimitConfig:
    enabled: bool
    global_ip: RateLimitRule
    max_cache_entries: int = 10000
    trusted_proxy_count: int = 0
    trusted_proxy_ips: tuple[str, ...] = ()


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    retry_after_seconds: int


class _Window:
    __slots__ = ("started_at", "count")

    def __init__(self, started_at: float):
        self.started_at = started_at
        self.count = 0


class InMemoryRateLimiter:
    """Fixed-window counters keyed by client.

    All counter access goes through one lock, so the limiter is safe to share
    between the event loop and threadpool workers. Entries beyond
    ``max_entries`` are evicted least-recently-used first.
    """

    def __init__(self, max_entries: int = 10000, clock: Callable[[], float] = time.monotonic):
        self._max_entries = max(1, max_entries)
        self._clock = clock
        self._lock = threading.Lock()
        self._windows: "OrderedDict[str, _Window]" = OrderedDict()
        self._closed = False
        self._stop_event: Optional[asyncio.Event] = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._windows)

    def hit(self, key: str, rule: RateLimitRule) -> RateLimitDecision:
        now = self._clock()
        with self._lock:
            window = self._windows.get(key)
            if window is None or now - window.started_at >= rule.window_seconds:
                window = _Window(now)
                self._windows[key] = window
            self._windows.move_to_end(key)
            while len(self._windows) > self._max_entries:
                self._windows.popitem(last=False)

            if window.count >= rule.limit:
                retry_after = math.ceil(window.started_at + rule.window_seconds - now)
                return RateLimitDecision(
                    allowed=False,
                    limit=rule.limit,
                    remaining=0,
                    retry_after_seconds=max(1, retry_after),
                )
            window.count += 1
            return RateLimitDecision(
                allowed=True,
                limit=rule.limit,
                remaining=rule.limit - window.count,
                retry_after_seconds=0,
            )

    def sweep(self, window_seconds: float) -> int:
        """Drop counters whose window has passed; returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [
                key for key, window in self._windows.items()
                if now - window.started_at >= window_seconds
            ]
            for key in expired:
                del self._windows[key]
        return len(expired)

    async def run_sweeper(self, window_seconds: float) -> None:
        """Sweep every window until ``close`` is called."""
        if self._closed:
            return
        if self._stop_event is None:
            self._stop_event = asyncio.Event()
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=window_seconds)
            except asyncio.TimeoutError:
                removed = self.sweep(window_seconds)
                if removed:
                    logger.debug("rate_limit_sweep", extra={"removed": removed})

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._stop_event is not None:
            self._stop_event.set()
        with self._lock:
            self._windows.clear()


def _header(scope: Scope, name: bytes) -> Optional[str]:
    for key, value in scope.get("headers") or []:
        if key.lower() == name:
            return value.decode("latin-1")
    return None


def client_key(scope: Scope, rate_config: RateLimitConfig) -> str:
    """Identify the caller, honoring X-Forwarded-For only behind trusted proxies."""
    client = scope.get("client")
    peer = client[0] if client else "unknown"

    trusted = rate_config.trusted_proxy_count > 0 or (
        rate_config.trusted_proxy_ips and peer in rate_config.trusted_proxy_ips
    )
    if not trusted:
        return peer

    forwarded = _header(scope, b"x-forwarded-for")
    if not forwarded:
        return peer
    hops = [hop.strip() for hop in forwarded.split(",") if hop.strip()]
    if not hops:
        return peer
    proxies = max(1, rate_config.trusted_proxy_count)
    index = len(hops) - proxies - 1
    return hops[max(0, index)]


class RateLimitMiddleware:
    def __init__(self, app: ASGIApp, limiter: InMemoryRateLimiter, config: RateLimitConfig):
        self.app = app
        self.limiter = limiter
        self.config = config

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or not self.config.enabled or self.config.global_ip.limit <= 0:
            await self.app(scope, receive, send)
            return

        key = client_key(scope, self.config)
        decision = self.limiter.hit(key, self.config.global_ip)
        if not decision.allowed:
            logger.warning(
                "rate_limit_exceeded",
                extra={"client": key, "path": scope.get("path"), "limit": decision.limit},
            )
            response = JSONResponse(
                {"error": "rate_limit_exceeded"},
                status_code=429,
                headers={
                    "Retry-After": str(decision.retry_after_seconds),
                    "X-RateLimit-Limit": str(decision.limit),
                    "X-RateLimit-Remaining": "0",
                },
            )
            await response(scope, receive, send)
            return

        await self.app(scope, receive, send)


def load_rate_limit_config_from_env() -> RateLimitConfig:
    return RateLimitConfig(
        enabled=config.RATE_LIMIT_PER_MINUTE > 0,
        global_ip=RateLimitRule(
            limit=config.RATE_LIMIT_PER_MINUTE,
            window_seconds=config.RATE_LIMIT_WINDOW_SECONDS,
        ),
        max_cache_entries=config.RATE_LIMIT_MAX_ENTRIES,
        trusted_proxy_count=config.TRUSTED_PROXY_COUNT,
        trusted_proxy_ips=config.TRUSTED_PROXY_IPS,
    )


def build_rate_limiter_from_env(rate_config: RateLimitConfig) -> InMemoryRateLimiter:
    return InMemoryRateLimiter(max_entries=rate_config.max_cache_entries)


__all__ = [
    "RateLimitRule",
    "RateLimitConfig",
    "RateLimitDecision",
    "InMemoryRateLimiter",
    "RateLimitMiddleware",
    "client_key",
    "load_rate_limit_config_from_env",
    "build_rate_limiter_from_env",
]
