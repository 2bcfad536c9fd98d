"""Request hygiene middleware.

Provides:
- Request ID middleware (X-Request-ID header)
- Security headers middleware
- Rate limiting middleware (in-memory, per client IP)
"""

from __future__ import annotations

import logging
import time
import uuid
from collections import defaultdict
from dataclasses import dataclass

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from carealert.api.version import API_VERSION

logger = logging.getLogger(__name__)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Tag every request and response with an X-Request-ID.

    A client-supplied id is preserved; otherwise a UUID4 is generated.
    Error handlers echo it back as ``request_id``.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add standard security headers and the API version to every response."""

    def __init__(self, app: ASGIApp, hsts: bool = False) -> None:
        super().__init__(app)
        self.hsts = hsts

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Cache-Control"] = "no-store"
        response.headers["X-API-Version"] = API_VERSION
        if self.hsts:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response


@dataclass
class _RateLimitEntry:
    count: int = 0
    window_start: float = 0.0


# Upper bound on tracked client IPs before stale entries are pruned.
_MAX_TRACKED_CLIENTS = 50_000
_PRUNE_INTERVAL = 1000


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Fixed-window per-IP rate limiter.

    Per-process only; with several workers the effective limit is
    ``workers * max_requests``. Device gateways ingesting in bursts should
    be given a generous ``max_requests``.
    """

    def __init__(self, app: ASGIApp, max_requests: int = 600, window_seconds: int = 60) -> None:
        super().__init__(app)
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clients: dict[str, _RateLimitEntry] = defaultdict(_RateLimitEntry)
        self._request_counter = 0

    def _prune_stale(self, now: float) -> None:
        stale = [ip for ip, entry in self._clients.items() if now - entry.window_start >= self.window_seconds]
        for ip in stale:
            del self._clients[ip]

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        client_ip = request.client.host if request.client else "unknown"
        now = time.monotonic()

        self._request_counter += 1
        if self._request_counter >= _PRUNE_INTERVAL or len(self._clients) > _MAX_TRACKED_CLIENTS:
            self._prune_stale(now)
            self._request_counter = 0

        entry = self._clients[client_ip]
        if now - entry.window_start >= self.window_seconds:
            entry.count = 0
            entry.window_start = now
        entry.count += 1

        if entry.count > self.max_requests:
            retry_after = int(self.window_seconds - (now - entry.window_start))
            logger.warning("Rate limit exceeded for %s", client_ip)
            return Response(
                content='{"error":"RATE_LIMITED","detail":"Rate limit exceeded"}',
                status_code=429,
                media_type="application/json",
                headers={"Retry-After": str(max(retry_after, 1))},
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(self.max_requests)
        response.headers["X-RateLimit-Remaining"] = str(max(0, self.max_requests - entry.count))
        return response
