"""Endpoint configuration endpoints."""

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from fanout.auth import require_management_token
from fanout.db import get_db
from fanout.errors import NotFoundError, ValidationError
from fanout.services import registry

router = APIRouter(
    prefix="/config/endpoints",
    tags=["endpoints"],
    dependencies=[Depends(require_management_token)],
)


class CreateEndpointRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    url: str | None = None
    is_primary: bool = Field(default=False, alias="isPrimary")
    is_active: bool = Field(default=True, alias="isActive")
    headers: dict[str, str] | None = None
    tenant_id: str | None = Field(default=None, alias="tenantId")


class UpdateEndpointRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    url: str | None = None
    is_primary: bool | None = Field(default=None, alias="isPrimary")
    is_active: bool | None = Field(default=None, alias="isActive")
    headers: dict[str, str] | None = None
    tenant_id: str | None = Field(default=None, alias="tenantId")


@router.get("")
async def list_endpoints(
    tenant_id: str | None = Query(default=None),
    db: AsyncSession = Depends(get_db),
):
    """List endpoints, primary first."""
    endpoints = await registry.list_endpoints(db, tenant_id=tenant_id)
    return {"endpoints": [registry.serialize_endpoint(e) for e in endpoints]}


@router.post("", status_code=201)
async def create_endpoint(req: CreateEndpointRequest, db: AsyncSession = Depends(get_db)):
    """Register a destination endpoint. Setting is_primary demotes any other primary."""
    try:
        endpoint = await registry.create_endpoint(
            db,
            url=req.url,
            headers=req.headers,
            is_primary=req.is_primary,
            is_active=req.is_active,
            tenant_id=req.tenant_id,
        )
    except ValidationError as e:
        raise HTTPException(400, str(e))
    return {"endpoint": registry.serialize_endpoint(endpoint)}


@router.patch("/{endpoint_id}")
async def update_endpoint(
    endpoint_id: int, req: UpdateEndpointRequest, db: AsyncSession = Depends(get_db)
):
    """Partial update; only the fields present in the body change."""
    try:
        endpoint = await registry.update_endpoint(
            db, endpoint_id, req.model_dump(exclude_unset=True)
        )
    except NotFoundError as e:
        raise HTTPException(404, str(e))
    except ValidationError as e:
        raise HTTPException(400, str(e))
    return {"endpoint": registry.serialize_endpoint(endpoint)}


@router.delete("/{endpoint_id}")
async def delete_endpoint(endpoint_id: int, db: AsyncSession = Depends(get_db)):
    try:
        await registry.delete_endpoint(db, endpoint_id)
    except NotFoundError as e:
        raise HTTPException(404, str(e))
    return {"message": "Endpoint deleted", "id": endpoint_id}
