"""Fan-out engine: relays one request to every target endpoint.

Features:
- Concurrent dispatch bounded by ``max_concurrent_dispatches``
- Per-endpoint failure isolation: a transport error becomes a result with
  status_code 0, never an exception
- One outgoing delivery log entry per target, written even when the dispatch
  failed; a failed log write is logged and skipped
- Custom endpoint headers override incoming ones; hop-by-hop headers are stripped
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from fanout.config import settings
from fanout.metrics import DELIVERIES_TOTAL, DELIVERY_DURATION, DELIVERY_LOG_WRITE_FAILURES_TOTAL
from fanout.models.schema import Direction, Endpoint
from fanout.services import delivery_log
from fanout.validation import load_headers

logger = logging.getLogger(__name__)

HOP_BY_HOP_HEADERS = frozenset({
    "host",
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
})

# httpx computes the length of the relayed body itself
STRIPPED_REQUEST_HEADERS = HOP_BY_HOP_HEADERS | {"content-length"}

BODYLESS_METHODS = frozenset({"GET", "HEAD"})


@dataclass(frozen=True)
class EndpointTarget:
    """Detached copy of an endpoint, safe to use across session rollbacks."""

    id: int
    url: str
    is_primary: bool
    headers: dict = field(default_factory=dict)

    @classmethod
    def from_endpoint(cls, endpoint: Endpoint) -> "EndpointTarget":
        return cls(
            id=endpoint.id,
            url=endpoint.url,
            is_primary=bool(endpoint.is_primary),
            headers=load_headers(endpoint.headers),
        )


@dataclass
class DeliveryResult:
    endpoint_id: int
    endpoint_url: str
    is_primary: bool
    success: bool
    status_code: int
    response_body: str
    response_headers: list[tuple[bytes, bytes]] = field(default_factory=list)
    response_time: int = 0
    content: bytes = b""
    error: str | None = None


# ---------------------------------------------------------------------------
# Request preparation
# ---------------------------------------------------------------------------

def merge_headers(incoming: dict | None, custom: dict | None) -> dict[str, str]:
    """Overlay custom headers on incoming ones, then strip hop-by-hop headers.

    Names are compared lower-cased, so ``X-Token`` from the endpoint replaces an
    incoming ``x-token``.
    """
    merged: dict[str, str] = {}
    for source in (incoming or {}, custom or {}):
        for name, value in source.items():
            merged[name.lower()] = str(value)
    return {
        name: value for name, value in merged.items()
        if name not in STRIPPED_REQUEST_HEADERS
    }


def _body_text(body: str | bytes | None) -> str | None:
    if isinstance(body, bytes):
        return body.decode("utf-8", errors="replace")
    return body


def build_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=settings.dispatch_timeout_seconds)


# ---------------------------------------------------------------------------
# Single dispatch
# ---------------------------------------------------------------------------

async def _dispatch(
    client: httpx.AsyncClient,
    target: EndpointTarget,
    method: str,
    headers: dict[str, str],
    body: str | bytes | None,
) -> DeliveryResult:
    content = None if method.upper() in BODYLESS_METHODS else body
    start = time.monotonic()
    try:
        response = await client.request(method, target.url, headers=headers, content=content)
    except Exception as exc:
        error = f"{type(exc).__name__}: {exc}" if str(exc) else type(exc).__name__
        return DeliveryResult(
            endpoint_id=target.id,
            endpoint_url=target.url,
            is_primary=target.is_primary,
            success=False,
            status_code=0,
            response_body=f"Error: {error}",
            response_time=0,
            error=error,
        )

    response_time = int((time.monotonic() - start) * 1000)
    return DeliveryResult(
        endpoint_id=target.id,
        endpoint_url=target.url,
        is_primary=target.is_primary,
        success=200 <= response.status_code < 300,
        status_code=response.status_code,
        response_body=response.text,
        response_headers=list(response.headers.raw),
        response_time=response_time,
        content=response.content,
    )


def _observe(result: DeliveryResult, webhook_id: str) -> None:
    DELIVERIES_TOTAL.labels(
        success=str(result.success).lower(), primary=str(result.is_primary).lower()
    ).inc()
    if result.status_code:
        DELIVERY_DURATION.observe(result.response_time / 1000)

    extra = {"webhook_id": webhook_id, "endpoint_url": result.endpoint_url}
    if result.success:
        logger.info(
            "Delivery OK: webhook=%s -> %s (%d) %dms",
            webhook_id, result.endpoint_url, result.status_code, result.response_time,
            extra=extra,
        )
    elif result.status_code:
        logger.warning(
            "Delivery FAIL: webhook=%s -> %s status=%d",
            webhook_id, result.endpoint_url, result.status_code,
            extra=extra,
        )
    else:
        logger.warning(
            "Delivery FAIL: webhook=%s -> %s err=%s",
            webhook_id, result.endpoint_url, result.error,
            extra=extra,
        )


# ---------------------------------------------------------------------------
# Fan-out
# ---------------------------------------------------------------------------

async def fan_out(
    db: AsyncSession,
    webhook_id: str,
    method: str,
    headers: dict | None,
    body: str | bytes | None,
    targets: list[Endpoint | EndpointTarget],
    tenant_id: str | None = None,
    client: httpx.AsyncClient | None = None,
) -> list[DeliveryResult]:
    """Deliver the request to every target and return one result per target.

    Returns only after every dispatch has completed or failed. Callers pass a
    non-empty target list.
    """
    snapshot = [
        t if isinstance(t, EndpointTarget) else EndpointTarget.from_endpoint(t)
        for t in targets
    ]
    body_text = _body_text(body)
    write_lock = asyncio.Lock()  # the session is not safe for concurrent use
    limit = asyncio.Semaphore(max(1, settings.max_concurrent_dispatches))

    async def deliver(target: EndpointTarget) -> DeliveryResult:
        request_headers = merge_headers(headers, target.headers)
        async with limit:
            result = await _dispatch(http, target, method, request_headers, body)
        _observe(result, webhook_id)

        entry = delivery_log.build_entry(
            webhook_id=webhook_id,
            direction=Direction.outgoing,
            method=method,
            headers=request_headers,
            body=body_text,
            endpoint_url=target.url,
            status_code=result.status_code,
            response_body=result.response_body,
            response_time=result.response_time,
            tenant_id=tenant_id,
        )
        async with write_lock:
            if not await delivery_log.record(db, entry):
                DELIVERY_LOG_WRITE_FAILURES_TOTAL.inc()
        return result

    http = client or build_client()
    try:
        results = await asyncio.gather(*(deliver(t) for t in snapshot))
    finally:
        if client is None:
            await http.aclose()

    return list(results)
