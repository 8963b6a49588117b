"""Delivery log: append-only audit of inbound receipts and outbound attempts."""

import json
import logging

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from fanout.models.schema import DeliveryLog, Direction, Endpoint, InboundWebhook

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 500


def serialize_log(entry: DeliveryLog) -> dict:
    return {
        "id": entry.id,
        "webhook_id": entry.webhook_id,
        "direction": entry.direction,
        "endpoint_url": entry.endpoint_url,
        "method": entry.method,
        "headers": entry.headers,
        "body": entry.body,
        "status_code": entry.status_code,
        "response_body": entry.response_body,
        "response_time": entry.response_time,
        "tenant_id": entry.tenant_id,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }


def build_entry(
    webhook_id: str,
    direction: Direction,
    method: str,
    headers: dict | None,
    body: str | None,
    endpoint_url: str | None = None,
    status_code: int | None = None,
    response_body: str | None = None,
    response_time: int | None = None,
    tenant_id: str | None = None,
) -> DeliveryLog:
    return DeliveryLog(
        webhook_id=webhook_id,
        direction=direction.value,
        endpoint_url=endpoint_url,
        method=method,
        headers=json.dumps(headers or {}),
        body=body,
        status_code=status_code,
        response_body=response_body,
        response_time=response_time,
        tenant_id=tenant_id,
    )


async def record(db: AsyncSession, entry: DeliveryLog) -> bool:
    """Persist one entry. Failures are logged and reported as False, never raised."""
    try:
        db.add(entry)
        await db.commit()
        return True
    except Exception:
        logger.exception(
            "Failed to write %s delivery log entry", entry.direction,
            extra={"webhook_id": entry.webhook_id, "endpoint_url": entry.endpoint_url},
        )
        await db.rollback()
        return False


async def record_incoming(db: AsyncSession, inbound: InboundWebhook) -> bool:
    """Audit copy of an inbound (or replayed) request."""
    return await record(db, DeliveryLog(
        webhook_id=inbound.id,
        direction=Direction.incoming.value,
        endpoint_url=None,
        method=inbound.method,
        headers=inbound.headers,
        body=inbound.body,
        tenant_id=inbound.tenant_id,
    ))


async def list_logs(
    db: AsyncSession,
    limit: int = DEFAULT_PAGE_SIZE,
    skip: int = 0,
    endpoint_url: str | None = None,
    endpoint_id: int | None = None,
    webhook_id: str | None = None,
    direction: str | None = None,
    tenant_id: str | None = None,
) -> list[DeliveryLog]:
    """Newest first. endpoint_id filters by the endpoint's current URL."""
    if endpoint_id is not None:
        endpoint = await db.get(Endpoint, endpoint_id)
        if not endpoint:
            return []
        endpoint_url = endpoint.url

    query = (
        select(DeliveryLog)
        .order_by(DeliveryLog.created_at.desc(), DeliveryLog.id.desc())
        .limit(min(limit, MAX_PAGE_SIZE))
        .offset(skip)
    )
    if endpoint_url:
        query = query.where(DeliveryLog.endpoint_url == endpoint_url)
    if webhook_id:
        query = query.where(DeliveryLog.webhook_id == webhook_id)
    if direction:
        query = query.where(DeliveryLog.direction == direction)
    if tenant_id:
        query = query.where(DeliveryLog.tenant_id == tenant_id)

    result = await db.execute(query)
    return list(result.scalars().all())


async def clear_logs(db: AsyncSession) -> int:
    result = await db.execute(delete(DeliveryLog))
    await db.commit()
    logger.info("Delivery log cleared: %d entries", result.rowcount, extra={"event": "logs.cleared"})
    return result.rowcount


def _webhook_filters(query, start=None, end=None, status: str | None = None, tenant_id: str | None = None):
    if start is not None:
        query = query.where(InboundWebhook.created_at >= start)
    if end is not None:
        query = query.where(InboundWebhook.created_at <= end)
    if status:
        query = query.where(InboundWebhook.processing_status == status)
    if tenant_id:
        query = query.where(InboundWebhook.tenant_id == tenant_id)
    return query


async def list_webhooks(
    db: AsyncSession,
    limit: int = DEFAULT_PAGE_SIZE,
    skip: int = 0,
    start=None,
    end=None,
    status: str | None = None,
    tenant_id: str | None = None,
) -> list[InboundWebhook]:
    query = _webhook_filters(select(InboundWebhook), start, end, status, tenant_id)
    query = (
        query.order_by(InboundWebhook.created_at.desc())
        .limit(min(limit, MAX_PAGE_SIZE))
        .offset(skip)
    )
    result = await db.execute(query)
    return list(result.scalars().all())


async def count_webhooks(
    db: AsyncSession,
    start=None,
    end=None,
    status: str | None = None,
    tenant_id: str | None = None,
) -> int:
    """Number of inbound records matching the same filters as list_webhooks."""
    query = _webhook_filters(
        select(func.count()).select_from(InboundWebhook), start, end, status, tenant_id
    )
    return (await db.execute(query)).scalar_one()


async def clear_webhooks(db: AsyncSession) -> int:
    result = await db.execute(delete(InboundWebhook))
    await db.commit()
    logger.info("Inbound webhooks cleared: %d records", result.rowcount, extra={"event": "webhooks.cleared"})
    return result.rowcount


def serialize_webhook(webhook: InboundWebhook) -> dict:
    return {
        "id": webhook.id,
        "method": webhook.method,
        "headers": webhook.headers,
        "body": webhook.body,
        "source_ip": webhook.source_ip,
        "user_agent": webhook.user_agent,
        "processing_status": webhook.processing_status,
        "response_status": webhook.response_status,
        "response_body": webhook.response_body,
        "replay_of": webhook.replay_of,
        "tenant_id": webhook.tenant_id,
        "created_at": webhook.created_at.isoformat() if webhook.created_at else None,
    }
