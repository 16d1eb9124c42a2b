"""
FastAPI dependencies for authentication.
"""

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from commissionly.auth.context import RequestContext
from commissionly.auth.jwt import get_bearer_token, verify_token
from commissionly.db import get_db
from commissionly.models import User
from commissionly.services.api_keys import authenticate_api_key
from commissionly.utils.audit import get_client_ip

API_KEY_HEADER = "X-API-Key"


async def get_request_context(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> RequestContext:
    """
    Build the caller context from a bearer session token or an API key.

    Raises 401 if neither is present or valid, 403 for disabled users.
    """
    ip_address = get_client_ip(request)

    token = get_bearer_token(request)
    if token:
        payload = verify_token(token)
        if not payload:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid or expired token",
            )

        user = await db.scalar(
            select(User).where(
                User.id == payload["user_id"],
                User.organization_id == payload["organization_id"],
            )
        )
        if not user:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="User not found",
            )
        if not user.is_active:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="User account is disabled",
            )

        return RequestContext(
            organization_id=user.organization_id,
            user_id=user.id,
            role=user.role,
            ip_address=ip_address,
        )

    raw_key = request.headers.get(API_KEY_HEADER)
    if raw_key:
        api_key = await authenticate_api_key(db, raw_key)
        if not api_key:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid API key",
            )
        return RequestContext(
            organization_id=api_key.organization_id,
            user_id=api_key.created_by_id,
            role=api_key.role,
            ip_address=ip_address,
            via_api_key=True,
        )

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Not authenticated",
    )


async def require_manager(
    ctx: RequestContext = Depends(get_request_context),
) -> RequestContext:
    """
    Require an admin or manager.

    Raises 403 for salespeople.
    """
    if not ctx.can_manage:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Manager access required",
        )
    return ctx


async def require_admin(
    ctx: RequestContext = Depends(get_request_context),
) -> RequestContext:
    """
    Require an organization admin.

    Raises 403 otherwise.
    """
    if not ctx.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return ctx
