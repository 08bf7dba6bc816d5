"""
API Middleware

- Request logging with a request id bound into structlog's contextvars
- Sliding-window rate limiting of the event endpoint
- Security headers
"""

import asyncio
from collections import defaultdict, deque
import time
from typing import Callable, Deque, Dict, Iterable
import uuid

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
import structlog

logger = structlog.get_logger(__name__)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One log line per request; every log emitted while serving it carries request_id"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = round((time.perf_counter() - start) * 1000, 2)

        log = logger.error if response.status_code >= 500 else logger.info
        log(
            "Request completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=duration_ms,
        )

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{duration_ms}ms"
        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    In-memory sliding-window limit per client address.

    Only paths under the given prefixes count; trending reads, health
    checks and the scheduler trigger are never throttled. State is per
    process, so with several gunicorn workers the limit is per worker.
    X-Forwarded-For is read only when the peer is a trusted proxy.
    """

    def __init__(
        self,
        app,
        max_requests: int = 100,
        window_seconds: int = 60,
        path_prefixes: Iterable[str] = ("/api/v1/popularity/gear/",),
        trusted_proxies: Iterable[str] = (),
    ):
        super().__init__(app)
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.path_prefixes = tuple(path_prefixes)
        self.trusted_proxies = frozenset(trusted_proxies)
        self._hits: Dict[str, Deque[float]] = defaultdict(deque)
        self._lock = asyncio.Lock()

    def client_address(self, request: Request) -> str:
        peer = request.client.host if request.client else "unknown"
        if peer not in self.trusted_proxies:
            return peer
        # Each proxy appends its peer; the nearest untrusted hop is the client
        hops = [h.strip() for h in request.headers.get("X-Forwarded-For", "").split(",") if h.strip()]
        for hop in reversed(hops):
            if hop not in self.trusted_proxies:
                return hop
        return peer

    def _evict_idle(self, now: float) -> None:
        idle = [c for c, h in self._hits.items() if not h or now - h[-1] >= self.window_seconds]
        for client in idle:
            del self._hits[client]

    async def _admit(self, client: str) -> int:
        """Remaining requests after admitting this one, or -1 when over the limit"""
        now = time.monotonic()
        async with self._lock:
            self._evict_idle(now)
            hits = self._hits[client]
            while hits and now - hits[0] >= self.window_seconds:
                hits.popleft()
            if len(hits) >= self.max_requests:
                return -1
            hits.append(now)
            return self.max_requests - len(hits)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if not request.url.path.startswith(self.path_prefixes):
            return await call_next(request)

        client = self.client_address(request)
        remaining = await self._admit(client)
        if remaining < 0:
            logger.warning("Rate limit exceeded", client=client, path=request.url.path)
            return JSONResponse(
                {"ok": False, "error": "Rate limit exceeded"},
                status_code=429,
                headers={
                    "Retry-After": str(self.window_seconds),
                    "X-RateLimit-Limit": str(self.max_requests),
                    "X-RateLimit-Remaining": "0",
                },
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(self.max_requests)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)
        response.headers.update({
            "X-Content-Type-Options": "nosniff",
            "X-Frame-Options": "DENY",
            "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
            "Referrer-Policy": "strict-origin-when-cross-origin",
        })
        return response
