"""Middleware for rate limiting and Prometheus metrics."""

import re
import time
import logging
from collections import deque
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from fanout.metrics import HTTP_REQUESTS_TOTAL, HTTP_REQUEST_DURATION, RATE_LIMIT_HITS_TOTAL

logger = logging.getLogger(__name__)

_ID_SEGMENT = re.compile(r"/(\d+|[0-9a-fA-F-]{36})(?=/|$)")


def client_ip(request: Request) -> str:
    """Originating address, preferring proxy headers over the socket peer."""
    forwarded = request.headers.get("cf-connecting-ip") or request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def _route_path(request: Request) -> str:
    """Route template (e.g. /config/endpoints/{endpoint_id}) to keep label cardinality low."""
    route = request.scope.get("route")
    if route and hasattr(route, "path"):
        return route.path
    return _ID_SEGMENT.sub("/{id}", request.url.path)


class MetricsMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start

        path = _route_path(request)
        HTTP_REQUESTS_TOTAL.labels(
            method=request.method, path=path, status=str(response.status_code)
        ).inc()
        HTTP_REQUEST_DURATION.labels(method=request.method, path=path).observe(elapsed)
        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Sliding one-minute window per client address.

    A limit of 0 disables the limiter. Requests to ``exempt_paths`` are never
    counted or refused; the inbound receiver lives there so every webhook
    reaches storage. Addresses with no hits left in the window are dropped on
    a periodic sweep.
    """

    window_seconds = 60.0

    def __init__(self, app, requests_per_minute: int = 60, exempt_paths=()):
        super().__init__(app)
        self.rpm = requests_per_minute
        self.exempt_paths = frozenset(exempt_paths)
        self.hits: dict[str, deque] = {}
        self._last_sweep = time.monotonic()

    def sweep(self, now: float) -> None:
        cutoff = now - self.window_seconds
        stale = [key for key, hits in self.hits.items() if not hits or hits[-1] <= cutoff]
        for key in stale:
            del self.hits[key]
        self._last_sweep = now

    def allow(self, key: str, now: float) -> bool:
        if now - self._last_sweep >= self.window_seconds:
            self.sweep(now)

        hits = self.hits.setdefault(key, deque())
        cutoff = now - self.window_seconds
        while hits and hits[0] <= cutoff:
            hits.popleft()

        if len(hits) >= self.rpm:
            return False
        hits.append(now)
        return True

    async def dispatch(self, request: Request, call_next):
        if self.rpm <= 0 or request.url.path in self.exempt_paths:
            return await call_next(request)

        key = client_ip(request)
        if not self.allow(key, time.monotonic()):
            RATE_LIMIT_HITS_TOTAL.inc()
            logger.warning("Rate limit exceeded", extra={"client_ip": key})
            return JSONResponse(
                status_code=429,
                content={"detail": "Rate limit exceeded. Try again later."},
            )
        return await call_next(request)
