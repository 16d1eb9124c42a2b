"""
API key model for machine access to the REST API.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Enum as SQLAlchemyEnum, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from commissionly.models.base import BaseModel, OrganizationScopedMixin
from commissionly.models.user import UserRole


class ApiKey(BaseModel, OrganizationScopedMixin):
    """
    Organization-scoped API key.

    Only a bcrypt hash of the secret is stored; `prefix` is the public part
    of the key used to find the row before verifying the hash.
    """

    __tablename__ = "api_keys"

    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    prefix: Mapped[str] = mapped_column(
        String(32),
        unique=True,
        nullable=False,
        index=True,
    )
    key_hash: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
    )
    role: Mapped[UserRole] = mapped_column(
        SQLAlchemyEnum(
            UserRole,
            values_callable=lambda x: [e.value for e in x],
        ),
        default=UserRole.MANAGER,
        nullable=False,
    )
    created_by_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id"),
        nullable=True,
    )
    last_used_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    revoked_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    @property
    def is_active(self) -> bool:
        return self.revoked_at is None

    def __repr__(self) -> str:
        return f"<ApiKey(id={self.id}, prefix='{self.prefix}', role={self.role})>"
