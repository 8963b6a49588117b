"""Replay endpoints: re-run stored webhooks against current endpoint configuration."""

from datetime import datetime

from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from fanout.auth import require_management_token
from fanout.db import get_db
from fanout.errors import ConfigurationError, NotFoundError, ValidationError
from fanout.services.replay import replay_by_id, replay_by_range

router = APIRouter(
    prefix="/replay",
    tags=["replay"],
    dependencies=[Depends(require_management_token)],
)


class TargetedReplayRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    endpoint_id: int | None = Field(default=None, alias="endpointId")


class RangeReplayRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    start_date: datetime | None = Field(default=None, alias="startDate")
    end_date: datetime | None = Field(default=None, alias="endDate")
    endpoint_id: int | None = Field(default=None, alias="endpointId")
    webhook_id: str | None = Field(default=None, alias="webhookId")


async def _replay_single(db: AsyncSession, webhook_id: str, endpoint_id: int | None) -> dict:
    try:
        outcome = await replay_by_id(db, webhook_id, target_endpoint_id=endpoint_id)
    except NotFoundError as e:
        raise HTTPException(404, str(e))
    except ConfigurationError as e:
        raise HTTPException(500, str(e))
    return {
        "message": f"Replayed webhook {webhook_id}",
        "replayed": 1,
        "result": outcome.to_dict(),
    }


@router.post("/{webhook_id}")
async def replay_webhook(
    webhook_id: str,
    req: TargetedReplayRequest | None = Body(default=None),
    db: AsyncSession = Depends(get_db),
):
    """Replay one webhook, optionally to a single endpoint."""
    return await _replay_single(db, webhook_id, req.endpoint_id if req else None)


@router.post("")
async def replay_range(req: RangeReplayRequest, db: AsyncSession = Depends(get_db)):
    """Replay every webhook received in [startDate, endDate], oldest first."""
    if req.webhook_id:
        return await _replay_single(db, req.webhook_id, req.endpoint_id)

    try:
        outcomes = await replay_by_range(
            db, req.start_date, req.end_date, target_endpoint_id=req.endpoint_id
        )
    except ValidationError as e:
        raise HTTPException(400, str(e))
    except NotFoundError as e:
        raise HTTPException(404, str(e))
    except ConfigurationError as e:
        raise HTTPException(500, str(e))

    if not outcomes:
        return {"message": "No webhooks found to replay", "replayed": 0, "results": []}

    completed = sum(1 for o in outcomes if o.status == "completed")
    return {
        "message": f"Replayed {len(outcomes)} webhooks",
        "replayed": len(outcomes),
        "completed": completed,
        "failed": len(outcomes) - completed,
        "results": [o.to_dict() for o in outcomes],
    }
