"""API key management endpoints (admin only)."""

from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from commissionly.auth.context import RequestContext
from commissionly.auth.dependencies import require_admin
from commissionly.db import get_db
from commissionly.schemas.api_key import ApiKeyCreate, ApiKeyCreatedResponse, ApiKeyResponse
from commissionly.services import api_keys as api_key_service

router = APIRouter(prefix="/api-keys", tags=["API keys"])


@router.get("", response_model=List[ApiKeyResponse])
async def list_api_keys(
    db: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(require_admin),
):
    keys = await api_key_service.list_api_keys(db, ctx)
    return [ApiKeyResponse.model_validate(key) for key in keys]


@router.post("", response_model=ApiKeyCreatedResponse, status_code=status.HTTP_201_CREATED)
async def create_api_key(
    data: ApiKeyCreate,
    db: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(require_admin),
):
    """Issue a key. The plaintext is shown in this response only."""
    issued = await api_key_service.create_api_key(db, ctx, data.name, data.role)
    return ApiKeyCreatedResponse(
        **ApiKeyResponse.model_validate(issued.api_key).model_dump(),
        key=issued.plaintext,
    )


@router.delete("/{key_id}", response_model=ApiKeyResponse)
async def revoke_api_key(
    key_id: int,
    db: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(require_admin),
):
    api_key = await api_key_service.revoke_api_key(db, ctx, key_id)
    return ApiKeyResponse.model_validate(api_key)
