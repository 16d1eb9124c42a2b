"""
Session token verification.

Tokens are issued by the identity provider and carry the user id (`sub`),
the organization id (`org_id`) and the user's role.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Request
from jose import JWTError, jwt

from commissionly.config import settings

TOKEN_TYPE = "access"


def create_access_token(
    user_id: int,
    organization_id: int,
    role: str,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create a signed session token.

    Used by tests and local tooling; in production the identity provider
    mints tokens with the same claims.
    """
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(hours=settings.jwt_expire_hours)

    payload = {
        "sub": str(user_id),
        "org_id": str(organization_id),
        "role": role,
        "exp": expire,
        "type": TOKEN_TYPE,
        "iat": datetime.now(timezone.utc),
    }
    if settings.jwt_audience:
        payload["aud"] = settings.jwt_audience

    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


def verify_token(token: str) -> Optional[dict]:
    """
    Verify and decode a session token.

    Returns:
        Dict with int 'user_id', int 'organization_id' and 'role',
        or None if the token is invalid/expired
    """
    options = {"verify_aud": bool(settings.jwt_audience)}
    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            options=options,
        )
    except JWTError:
        return None

    try:
        return {
            "user_id": int(payload["sub"]),
            "organization_id": int(payload["org_id"]),
            "role": payload["role"],
        }
    except (KeyError, TypeError, ValueError):
        return None


def get_bearer_token(request: Request) -> Optional[str]:
    """Extract the token from an `Authorization: Bearer ...` header."""
    header = request.headers.get("Authorization")
    if not header:
        return None
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token.strip()
