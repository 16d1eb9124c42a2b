"""
Organization (tenant) model.
"""

from typing import TYPE_CHECKING

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from commissionly.models.base import BaseModel

if TYPE_CHECKING:
    from commissionly.models.commission_plan import CommissionPlan
    from commissionly.models.user import User


class Organization(BaseModel):
    """
    A tenant. Every other business row carries an organization_id and all
    queries are filtered by the caller's organization.
    """

    __tablename__ = "organizations"

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    slug: Mapped[str] = mapped_column(
        String(100),
        unique=True,
        nullable=False,
        index=True,
    )
    require_projects: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
        comment="Reject sales transactions without a project",
    )

    # Relationships
    users: Mapped[list["User"]] = relationship(
        "User",
        back_populates="organization",
    )
    commission_plans: Mapped[list["CommissionPlan"]] = relationship(
        "CommissionPlan",
        back_populates="organization",
    )

    def __repr__(self) -> str:
        return f"<Organization(id={self.id}, slug='{self.slug}')>"
