"""Inbound receiver: persists a webhook, fans it out, answers the original caller."""

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass

import httpx
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.responses import JSONResponse, Response

from fanout.config import settings
from fanout.metrics import INBOUND_WEBHOOKS_TOTAL
from fanout.models.schema import InboundWebhook, ProcessingStatus
from fanout.services import delivery_log, registry
from fanout.services.fanout import (
    HOP_BY_HOP_HEADERS,
    DeliveryResult,
    EndpointTarget,
    fan_out,
)

logger = logging.getLogger(__name__)

NO_ENDPOINTS_MESSAGE = "No active endpoints configured"

# Recomputed by the ASGI server for the relayed body
_STRIPPED_RESPONSE_HEADERS = HOP_BY_HOP_HEADERS | {"content-length", "content-encoding"}

# Strong references to background fan-outs so they are not garbage collected
_background_tasks: set[asyncio.Task] = set()


@dataclass
class Summary:
    status: ProcessingStatus
    result: DeliveryResult | None

    @property
    def response_status(self) -> int | None:
        return self.result.status_code if self.result else None

    @property
    def response_body(self) -> str | None:
        return self.result.response_body if self.result else None


def summarize(results: list[DeliveryResult]) -> Summary:
    """Pick the result that decides an inbound record's final status.

    A successful primary wins; otherwise the first successful endpoint. With no
    success at all the record fails and keeps the primary's (or first) result.
    """
    primary = next((r for r in results if r.is_primary), None)
    if primary and primary.success:
        return Summary(ProcessingStatus.completed, primary)

    first_ok = next((r for r in results if r.success), None)
    if first_ok:
        return Summary(ProcessingStatus.completed, first_ok)

    fallback = primary or (results[0] if results else None)
    return Summary(ProcessingStatus.failed, fallback)


async def finalize(
    db: AsyncSession,
    webhook_id: str,
    status: ProcessingStatus,
    response_status: int | None = None,
    response_body: str | None = None,
) -> None:
    """Move an inbound record from pending to its terminal state."""
    await db.execute(
        update(InboundWebhook)
        .where(InboundWebhook.id == webhook_id)
        .values(
            processing_status=status.value,
            response_status=response_status,
            response_body=response_body,
        )
    )
    await db.commit()


async def mark_failed(db: AsyncSession, webhook_id: str, reason: str) -> None:
    """Best-effort failure marking after an unexpected error."""
    try:
        await db.rollback()
        await finalize(db, webhook_id, ProcessingStatus.failed, None, reason)
    except Exception:
        logger.exception("Could not mark webhook %s failed", webhook_id, extra={"webhook_id": webhook_id})


def mirror_response(result: DeliveryResult) -> Response:
    response = Response(content=result.content, status_code=result.status_code)
    # Raw pairs keep repeated headers such as Set-Cookie as separate lines
    response.raw_headers.extend(
        (name.lower(), value) for name, value in result.response_headers
        if name.lower().decode("latin-1") not in _STRIPPED_RESPONSE_HEADERS
    )
    return response


# ---------------------------------------------------------------------------
# Background secondary delivery
# ---------------------------------------------------------------------------

async def _background_fan_out(
    webhook_id: str,
    method: str,
    headers: dict,
    body: bytes | str | None,
    targets: list[EndpointTarget],
    tenant_id: str | None,
) -> None:
    """Creates its own DB session so it can run outside the request lifecycle."""
    from fanout.db import async_session

    try:
        async with async_session() as db:
            await fan_out(db, webhook_id, method, headers, body, targets, tenant_id=tenant_id)
    except Exception:
        logger.exception(
            "Background fan-out failed for webhook %s", webhook_id,
            extra={"webhook_id": webhook_id},
        )


def fire_and_forget(
    webhook_id: str,
    method: str,
    headers: dict,
    body: bytes | str | None,
    targets: list[EndpointTarget],
    tenant_id: str | None = None,
) -> asyncio.Task:
    """Schedule secondary deliveries as an asyncio background task (non-blocking)."""
    task = asyncio.create_task(
        _background_fan_out(webhook_id, method, headers, body, targets, tenant_id)
    )
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


# ---------------------------------------------------------------------------
# Receive
# ---------------------------------------------------------------------------

async def receive_webhook(
    db: AsyncSession,
    method: str,
    headers: dict,
    body: bytes | str | None,
    source_ip: str | None,
    user_agent: str | None,
    tenant_id: str | None = None,
    client: httpx.AsyncClient | None = None,
) -> Response:
    """Handle one inbound webhook end to end and build the caller's response."""
    webhook_id = str(uuid.uuid4())
    body_text = body.decode("utf-8", errors="replace") if isinstance(body, bytes) else body

    inbound = InboundWebhook(
        id=webhook_id,
        method=method,
        headers=json.dumps(headers),
        body=body_text or None,
        tenant_id=tenant_id,
        source_ip=source_ip,
        user_agent=user_agent,
        processing_status=ProcessingStatus.pending.value,
    )
    db.add(inbound)
    await db.commit()
    await delivery_log.record_incoming(db, inbound)

    log_extra = {"webhook_id": webhook_id}
    logger.info("Webhook received: %s %s from %s", webhook_id, method, source_ip, extra=log_extra)

    try:
        endpoints = await registry.active_endpoints(db)
        if not endpoints:
            await finalize(db, webhook_id, ProcessingStatus.failed, None, NO_ENDPOINTS_MESSAGE)
            INBOUND_WEBHOOKS_TOTAL.labels(status=ProcessingStatus.failed.value).inc()
            logger.warning("Webhook %s dropped: %s", webhook_id, NO_ENDPOINTS_MESSAGE, extra=log_extra)
            return JSONResponse({"error": NO_ENDPOINTS_MESSAGE}, status_code=500)

        targets = [EndpointTarget.from_endpoint(e) for e in endpoints]
        primary = next((t for t in targets if t.is_primary), None)

        if primary and not settings.await_secondary_deliveries and len(targets) > 1:
            results = await fan_out(
                db, webhook_id, method, headers, body, [primary],
                tenant_id=tenant_id, client=client,
            )
            fire_and_forget(
                webhook_id, method, headers, body,
                [t for t in targets if t is not primary], tenant_id,
            )
        else:
            results = await fan_out(
                db, webhook_id, method, headers, body, targets,
                tenant_id=tenant_id, client=client,
            )

        summary = summarize(results)
        await finalize(db, webhook_id, summary.status, summary.response_status, summary.response_body)
    except Exception:
        logger.exception("Webhook processing error: %s", webhook_id, extra=log_extra)
        await mark_failed(db, webhook_id, "Internal server error")
        INBOUND_WEBHOOKS_TOTAL.labels(status=ProcessingStatus.failed.value).inc()
        return JSONResponse({"error": "Internal server error"}, status_code=500)

    INBOUND_WEBHOOKS_TOTAL.labels(status=summary.status.value).inc()
    logger.info(
        "Webhook processed: %s status=%s deliveries=%d",
        webhook_id, summary.status.value, len(results), extra=log_extra,
    )

    primary_result = next((r for r in results if r.is_primary), None)
    if primary_result and primary_result.success:
        return mirror_response(primary_result)

    return JSONResponse(
        {"message": "Webhook processed successfully", "webhook_id": webhook_id},
        status_code=200,
    )
