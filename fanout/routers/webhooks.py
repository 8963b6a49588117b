"""Inbound webhook record endpoints."""

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from fanout.auth import require_management_token
from fanout.db import get_db
from fanout.models.schema import InboundWebhook
from fanout.services import delivery_log
from fanout.validation import to_naive_utc

router = APIRouter(
    prefix="/webhooks",
    tags=["webhooks"],
    dependencies=[Depends(require_management_token)],
)


@router.get("")
async def list_webhooks(
    limit: int = Query(default=delivery_log.DEFAULT_PAGE_SIZE, ge=1, le=delivery_log.MAX_PAGE_SIZE),
    skip: int = Query(default=0, ge=0),
    start: datetime | None = Query(default=None),
    end: datetime | None = Query(default=None),
    status: str | None = Query(default=None, pattern="^(pending|completed|failed)$"),
    tenant_id: str | None = Query(default=None),
    db: AsyncSession = Depends(get_db),
):
    """List received webhooks, newest first."""
    filters = {
        "start": to_naive_utc(start) if start else None,
        "end": to_naive_utc(end) if end else None,
        "status": status,
        "tenant_id": tenant_id,
    }
    webhooks = await delivery_log.list_webhooks(db, limit=limit, skip=skip, **filters)
    total = await delivery_log.count_webhooks(db, **filters)
    return {
        "webhooks": [delivery_log.serialize_webhook(w) for w in webhooks],
        "total": total,
        "limit": limit,
        "skip": skip,
    }


@router.get("/{webhook_id}")
async def get_webhook(webhook_id: str, db: AsyncSession = Depends(get_db)):
    """One inbound record with every delivery log entry it produced."""
    webhook = await db.get(InboundWebhook, webhook_id)
    if not webhook:
        raise HTTPException(404, "Webhook not found")

    entries = await delivery_log.list_logs(
        db, limit=delivery_log.MAX_PAGE_SIZE, webhook_id=webhook_id
    )
    return {
        "webhook": delivery_log.serialize_webhook(webhook),
        "logs": [delivery_log.serialize_log(e) for e in entries],
    }


@router.delete("")
async def clear_webhooks(db: AsyncSession = Depends(get_db)):
    deleted = await delivery_log.clear_webhooks(db)
    return {"message": "Inbound webhooks cleared", "deleted": deleted}
