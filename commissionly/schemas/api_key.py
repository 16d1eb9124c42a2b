"""
API key schemas.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from commissionly.models.user import UserRole


class ApiKeyCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    role: UserRole = UserRole.MANAGER


class ApiKeyResponse(BaseModel):
    id: int
    name: str
    prefix: str
    role: UserRole
    created_by_id: Optional[int]
    created_at: datetime
    last_used_at: Optional[datetime]
    revoked_at: Optional[datetime]
    is_active: bool

    model_config = {"from_attributes": True}


class ApiKeyCreatedResponse(ApiKeyResponse):
    """Returned once at creation; the plaintext key is not retrievable later."""

    key: str
