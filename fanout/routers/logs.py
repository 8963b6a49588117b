"""Delivery log endpoints."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from fanout.auth import require_management_token
from fanout.db import get_db
from fanout.services import delivery_log

router = APIRouter(
    prefix="/logs",
    tags=["logs"],
    dependencies=[Depends(require_management_token)],
)


@router.get("")
async def list_logs(
    limit: int = Query(default=delivery_log.DEFAULT_PAGE_SIZE, ge=1, le=delivery_log.MAX_PAGE_SIZE),
    skip: int = Query(default=0, ge=0),
    endpoint: str | None = Query(default=None),
    endpoint_id: int | None = Query(default=None, alias="endpointId"),
    webhook_id: str | None = Query(default=None, alias="webhookId"),
    direction: str | None = Query(default=None, pattern="^(incoming|outgoing)$"),
    tenant_id: str | None = Query(default=None),
    db: AsyncSession = Depends(get_db),
):
    """List delivery log entries, newest first.

    ``endpoint`` filters by URL, ``endpointId`` by the configured endpoint's URL.
    """
    entries = await delivery_log.list_logs(
        db,
        limit=limit,
        skip=skip,
        endpoint_url=endpoint,
        endpoint_id=endpoint_id,
        webhook_id=webhook_id,
        direction=direction,
        tenant_id=tenant_id,
    )
    return {
        "logs": [delivery_log.serialize_log(e) for e in entries],
        "limit": limit,
        "skip": skip,
    }


@router.delete("")
async def clear_logs(db: AsyncSession = Depends(get_db)):
    deleted = await delivery_log.clear_logs(db)
    return {"message": "Delivery logs cleared", "deleted": deleted}
