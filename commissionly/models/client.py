"""
Client (customer) model.
"""

from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Enum as SQLAlchemyEnum, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from commissionly.models.base import BaseModel, OrganizationScopedMixin

if TYPE_CHECKING:
    from commissionly.models.project import Project
    from commissionly.models.territory import Territory


class CustomerTier(str, Enum):
    """Commercial tier of a client, usable as a rule scope."""
    STANDARD = "STANDARD"
    VIP = "VIP"
    NEW = "NEW"
    ENTERPRISE = "ENTERPRISE"


class Client(BaseModel, OrganizationScopedMixin):
    """A customer buying from the organization."""

    __tablename__ = "clients"

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
    )
    tier: Mapped[CustomerTier] = mapped_column(
        SQLAlchemyEnum(
            CustomerTier,
            values_callable=lambda x: [e.value for e in x],
        ),
        default=CustomerTier.STANDARD,
        nullable=False,
    )
    territory_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("territories.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    # Relationships
    territory: Mapped[Optional["Territory"]] = relationship("Territory")
    projects: Mapped[list["Project"]] = relationship(
        "Project",
        back_populates="client",
    )

    def __repr__(self) -> str:
        return f"<Client(id={self.id}, name='{self.name}', tier={self.tier})>"
