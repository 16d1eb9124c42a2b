"""
Organization-scoped API keys.

Key format: ``ck_<prefix>_<secret>``. The prefix is stored in clear to find
the row; the whole key is stored only as a bcrypt hash.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from commissionly.auth.context import RequestContext
from commissionly.models import ApiKey, AuditAction, UserRole
from commissionly.services.errors import InvalidRequest, ResourceNotFound
from commissionly.utils.audit import log_action
from commissionly.utils.hashing import hash_secret, verify_secret

logger = logging.getLogger(__name__)

KEY_SCHEME = "ck"


@dataclass(frozen=True)
class IssuedApiKey:
    api_key: ApiKey
    plaintext: str


def generate_api_key() -> tuple[str, str]:
    """Return (plaintext key, lookup prefix)."""
    prefix = secrets.token_hex(6)
    secret = secrets.token_urlsafe(32)
    return f"{KEY_SCHEME}_{prefix}_{secret}", prefix


def parse_prefix(plaintext: str) -> Optional[str]:
    parts = plaintext.split("_", 2)
    if len(parts) != 3 or parts[0] != KEY_SCHEME or not parts[1] or not parts[2]:
        return None
    return parts[1]


async def create_api_key(
    db: AsyncSession,
    ctx: RequestContext,
    name: str,
    role: UserRole = UserRole.MANAGER,
) -> IssuedApiKey:
    """
    Issue a key; the plaintext is returned once and never stored.

    A key acts as the admin who issued it, so only ADMIN and MANAGER keys
    exist: a SALESPERSON key would see the issuer's own records.

    Raises:
        InvalidRequest: role is SALESPERSON
    """
    if role == UserRole.SALESPERSON:
        raise InvalidRequest("API keys carry the ADMIN or MANAGER role")

    plaintext, prefix = generate_api_key()
    api_key = ApiKey(
        organization_id=ctx.organization_id,
        name=name,
        prefix=prefix,
        key_hash=hash_secret(plaintext),
        role=role,
        created_by_id=ctx.user_id,
    )
    db.add(api_key)
    await db.flush()

    await log_action(
        db, ctx, AuditAction.CREATE_API_KEY,
        target_type="api_key", target_id=api_key.id,
        action_metadata={"name": name, "role": role.value},
    )
    logger.info(f"API key {prefix} issued for organization {ctx.organization_id}")
    return IssuedApiKey(api_key=api_key, plaintext=plaintext)


async def list_api_keys(db: AsyncSession, ctx: RequestContext) -> list[ApiKey]:
    result = await db.execute(
        select(ApiKey)
        .where(ApiKey.organization_id == ctx.organization_id)
        .order_by(ApiKey.created_at.desc())
    )
    return list(result.scalars().all())


async def revoke_api_key(db: AsyncSession, ctx: RequestContext, key_id: int) -> ApiKey:
    api_key = await db.scalar(
        select(ApiKey).where(
            ApiKey.id == key_id,
            ApiKey.organization_id == ctx.organization_id,
        )
    )
    if api_key is None:
        raise ResourceNotFound("API key", key_id)

    if api_key.revoked_at is None:
        api_key.revoked_at = datetime.now(timezone.utc)
        await log_action(
            db, ctx, AuditAction.REVOKE_API_KEY,
            target_type="api_key", target_id=api_key.id,
        )
    return api_key


async def authenticate_api_key(db: AsyncSession, plaintext: str) -> Optional[ApiKey]:
    """Return the active key matching `plaintext`, or None."""
    prefix = parse_prefix(plaintext)
    if prefix is None:
        return None

    api_key = await db.scalar(select(ApiKey).where(ApiKey.prefix == prefix))
    if api_key is None or not api_key.is_active:
        return None

    if not verify_secret(plaintext, api_key.key_hash):
        logger.warning(f"API key {prefix}: secret mismatch")
        return None

    api_key.last_used_at = datetime.now(timezone.utc)
    return api_key
