"""Endpoint registry: CRUD over downstream endpoints, single-primary invariant."""

import logging

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from fanout.errors import NotFoundError
from fanout.models.schema import Endpoint, utcnow
from fanout.validation import dump_headers, load_headers, validate_headers, validate_url

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = {"url", "is_primary", "is_active", "headers", "tenant_id"}


def serialize_endpoint(endpoint: Endpoint) -> dict:
    return {
        "id": endpoint.id,
        "url": endpoint.url,
        "is_primary": endpoint.is_primary,
        "is_active": endpoint.is_active,
        "headers": load_headers(endpoint.headers),
        "tenant_id": endpoint.tenant_id,
        "created_at": endpoint.created_at.isoformat() if endpoint.created_at else None,
        "updated_at": endpoint.updated_at.isoformat() if endpoint.updated_at else None,
    }


async def _clear_primary(db: AsyncSession, except_id: int | None = None) -> None:
    # Flushed with the caller's insert/update in a single commit
    stmt = update(Endpoint).where(Endpoint.is_primary.is_(True))
    if except_id is not None:
        stmt = stmt.where(Endpoint.id != except_id)
    await db.execute(stmt.values(is_primary=False))


async def list_endpoints(db: AsyncSession, tenant_id: str | None = None) -> list[Endpoint]:
    """All endpoints, primary first, then in insertion order."""
    query = select(Endpoint).order_by(Endpoint.is_primary.desc(), Endpoint.id.asc())
    if tenant_id:
        query = query.where(Endpoint.tenant_id == tenant_id)
    result = await db.execute(query)
    return list(result.scalars().all())


async def active_endpoints(db: AsyncSession) -> list[Endpoint]:
    """Endpoints targeted by live inbound traffic."""
    result = await db.execute(
        select(Endpoint)
        .where(Endpoint.is_active.is_(True))
        .order_by(Endpoint.is_primary.desc(), Endpoint.id.asc())
    )
    return list(result.scalars().all())


async def get_endpoint(db: AsyncSession, endpoint_id: int) -> Endpoint:
    endpoint = await db.get(Endpoint, endpoint_id)
    if not endpoint:
        raise NotFoundError(f"Endpoint {endpoint_id} not found")
    return endpoint


async def create_endpoint(
    db: AsyncSession,
    url: str | None,
    headers: dict | None = None,
    is_primary: bool = False,
    is_active: bool = True,
    tenant_id: str | None = None,
) -> Endpoint:
    url = validate_url(url)
    headers = validate_headers(headers)

    if is_primary:
        await _clear_primary(db)

    now = utcnow()
    endpoint = Endpoint(
        url=url,
        is_primary=bool(is_primary),
        is_active=bool(is_active),
        headers=dump_headers(headers),
        tenant_id=tenant_id,
        created_at=now,
        updated_at=now,
    )
    db.add(endpoint)
    await db.commit()
    await db.refresh(endpoint)

    logger.info(
        "Endpoint created: id=%d primary=%s -> %s", endpoint.id, endpoint.is_primary, endpoint.url,
        extra={"event": "endpoint.created", "endpoint_id": endpoint.id},
    )
    return endpoint


async def update_endpoint(db: AsyncSession, endpoint_id: int, changes: dict) -> Endpoint:
    """Apply only the provided fields; unset fields keep their prior value."""
    endpoint = await get_endpoint(db, endpoint_id)

    changes = {k: v for k, v in changes.items() if k in UPDATABLE_FIELDS}
    if "url" in changes:
        changes["url"] = validate_url(changes["url"])
    if "headers" in changes:
        changes["headers"] = dump_headers(validate_headers(changes["headers"]))

    if changes.get("is_primary"):
        await _clear_primary(db, except_id=endpoint.id)

    for field, value in changes.items():
        if field in ("is_primary", "is_active"):
            value = bool(value)
        setattr(endpoint, field, value)
    endpoint.updated_at = utcnow()

    await db.commit()
    await db.refresh(endpoint)

    logger.info(
        "Endpoint updated: id=%d fields=%s", endpoint.id, sorted(changes),
        extra={"event": "endpoint.updated", "endpoint_id": endpoint.id},
    )
    return endpoint


async def delete_endpoint(db: AsyncSession, endpoint_id: int) -> None:
    """Remove an endpoint. Delivery logs keep their copy of its URL."""
    endpoint = await get_endpoint(db, endpoint_id)
    await db.delete(endpoint)
    await db.commit()

    logger.info(
        "Endpoint deleted: id=%d", endpoint_id,
        extra={"event": "endpoint.deleted", "endpoint_id": endpoint_id},
    )
