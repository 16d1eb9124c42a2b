"""
Territory model.
"""

from typing import Optional

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from commissionly.models.base import BaseModel, OrganizationScopedMixin


class Territory(BaseModel, OrganizationScopedMixin):
    """Sales territory. Transactions resolve their territory through the client."""

    __tablename__ = "territories"

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    description: Mapped[Optional[str]] = mapped_column(
        String(500),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<Territory(id={self.id}, name='{self.name}')>"
