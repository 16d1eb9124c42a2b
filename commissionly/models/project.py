"""
Project and product category models.
"""

from typing import TYPE_CHECKING, Optional

from sqlalchemy import Boolean, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from commissionly.models.base import BaseModel, OrganizationScopedMixin

if TYPE_CHECKING:
    from commissionly.models.client import Client
    from commissionly.models.commission_plan import CommissionPlan


class Project(BaseModel, OrganizationScopedMixin):
    """A client engagement; sales booked against it inherit its client."""

    __tablename__ = "projects"

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
    )
    client_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("clients.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )

    # Relationships
    client: Mapped[Optional["Client"]] = relationship(
        "Client",
        back_populates="projects",
    )
    commission_plans: Mapped[list["CommissionPlan"]] = relationship(
        "CommissionPlan",
        back_populates="project",
    )

    def __repr__(self) -> str:
        return f"<Project(id={self.id}, name='{self.name}')>"


class ProductCategory(BaseModel, OrganizationScopedMixin):
    """Product grouping used to scope commission rules."""

    __tablename__ = "product_categories"

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<ProductCategory(id={self.id}, name='{self.name}')>"
