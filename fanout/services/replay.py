"""Replay engine: re-runs stored inbound webhooks through the fan-out path.

A replay never touches the original record. Each replay inserts a fresh inbound
record (tagged via source_ip / user_agent / replay_of) and fans out against the
current endpoint configuration.
"""

import json
import logging
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fanout.config import settings
from fanout.errors import ConfigurationError, InactiveEndpointError, NotFoundError
from fanout.metrics import REPLAYS_TOTAL
from fanout.models.schema import InboundWebhook, ProcessingStatus
from fanout.services import delivery_log, registry
from fanout.services.fanout import EndpointTarget, build_client, fan_out
from fanout.services.receiver import finalize, mark_failed, summarize
from fanout.validation import validate_date_range

logger = logging.getLogger(__name__)


@dataclass
class ReplayOutcome:
    original_webhook_id: str
    method: str
    original_created_at: str | None
    status: str  # "completed" | "failed" | "error"
    new_webhook_id: str | None = None
    response_status: int | None = None
    deliveries: int = 0
    error: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


async def resolve_targets(
    db: AsyncSession, target_endpoint_id: int | None = None
) -> list[EndpointTarget]:
    """Current replay targets: one named active endpoint, or every active one."""
    if target_endpoint_id is not None:
        endpoint = await registry.get_endpoint(db, target_endpoint_id)
        if not endpoint.is_active:
            raise InactiveEndpointError(f"Endpoint {target_endpoint_id} is not active")
        return [EndpointTarget.from_endpoint(endpoint)]

    endpoints = await registry.active_endpoints(db)
    if not endpoints:
        raise ConfigurationError("No active endpoints configured")
    return [EndpointTarget.from_endpoint(e) for e in endpoints]


async def _replay_one(
    db: AsyncSession,
    source: dict,
    targets: list[EndpointTarget],
    client: httpx.AsyncClient | None = None,
) -> ReplayOutcome:
    """Replay a serialized inbound record. Unexpected errors propagate."""
    new_id = str(uuid.uuid4())
    replay = InboundWebhook(
        id=new_id,
        method=source["method"],
        headers=source["headers"],
        body=source["body"],
        tenant_id=source["tenant_id"],
        source_ip=settings.replay_source_ip,
        user_agent=f"{source['user_agent'] or 'unknown'}{settings.replay_user_agent_suffix}",
        processing_status=ProcessingStatus.pending.value,
        replay_of=source["id"],
    )
    db.add(replay)
    await db.commit()
    await delivery_log.record_incoming(db, replay)

    try:
        headers = json.loads(source["headers"]) if source["headers"] else {}
        results = await fan_out(
            db, new_id, source["method"], headers, source["body"], targets,
            tenant_id=source["tenant_id"], client=client,
        )
        summary = summarize(results)
        await finalize(db, new_id, summary.status, summary.response_status, summary.response_body)
    except Exception as exc:
        await mark_failed(db, new_id, f"Replay error: {exc}")
        raise

    REPLAYS_TOTAL.labels(status=summary.status.value).inc()
    logger.info(
        "Replayed webhook %s as %s status=%s deliveries=%d",
        source["id"], new_id, summary.status.value, len(results),
        extra={"webhook_id": new_id, "replay_of": source["id"]},
    )
    return ReplayOutcome(
        original_webhook_id=source["id"],
        method=source["method"],
        original_created_at=source["created_at"],
        status=summary.status.value,
        new_webhook_id=new_id,
        response_status=summary.response_status,
        deliveries=len(results),
    )


async def replay_by_id(
    db: AsyncSession,
    webhook_id: str,
    target_endpoint_id: int | None = None,
    client: httpx.AsyncClient | None = None,
) -> ReplayOutcome:
    original = await db.get(InboundWebhook, webhook_id)
    if not original:
        raise NotFoundError(f"Webhook {webhook_id} not found")
    source = delivery_log.serialize_webhook(original)

    # Resolved before any record is written, so a bad target leaves nothing pending
    targets = await resolve_targets(db, target_endpoint_id)
    return await _replay_one(db, source, targets, client)


async def replay_by_range(
    db: AsyncSession,
    start: datetime | None,
    end: datetime | None,
    target_endpoint_id: int | None = None,
    client: httpx.AsyncClient | None = None,
) -> list[ReplayOutcome]:
    """Replay every webhook created within [start, end], oldest first.

    One webhook's failure is captured in its outcome and does not stop the batch.
    """
    start, end = validate_date_range(start, end)

    result = await db.execute(
        select(InboundWebhook)
        .where(InboundWebhook.created_at >= start, InboundWebhook.created_at <= end)
        .order_by(InboundWebhook.created_at.asc())
    )
    # Detach before replaying: a rollback inside the loop would expire ORM rows
    sources = [delivery_log.serialize_webhook(w) for w in result.scalars().all()]
    if not sources:
        return []

    targets = await resolve_targets(db, target_endpoint_id)

    http = client or build_client()
    outcomes: list[ReplayOutcome] = []
    try:
        for source in sources:
            try:
                outcome = await _replay_one(db, source, targets, http)
            except Exception as exc:
                logger.exception(
                    "Replay of webhook %s failed", source["id"],
                    extra={"replay_of": source["id"]},
                )
                REPLAYS_TOTAL.labels(status="error").inc()
                outcome = ReplayOutcome(
                    original_webhook_id=source["id"],
                    method=source["method"],
                    original_created_at=source["created_at"],
                    status="error",
                    error=str(exc),
                )
            outcomes.append(outcome)
    finally:
        if client is None:
            await http.aclose()

    return outcomes
