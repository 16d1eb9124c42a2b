"""
Commission plan and rule models.
"""

from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Boolean, Enum as SQLAlchemyEnum, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from commissionly.models.base import BaseModel, OrganizationScopedMixin
from commissionly.models.client import CustomerTier

if TYPE_CHECKING:
    from commissionly.models.organization import Organization
    from commissionly.models.project import Project


class CommissionBasis(str, Enum):
    """Which transaction amount a plan's rules are applied to."""
    GROSS_REVENUE = "GROSS_REVENUE"
    NET_SALES = "NET_SALES"          # gross minus linked returns/credits


class RuleType(str, Enum):
    """Commission formula of a rule."""
    PERCENTAGE = "PERCENTAGE"
    FLAT_AMOUNT = "FLAT_AMOUNT"
    TIERED = "TIERED"


class CommissionPlan(BaseModel, OrganizationScopedMixin):
    """
    Named container of commission rules.

    A plan tied to a project is preferred for that project's sales; plans
    without a project are organization-wide fallbacks.
    """

    __tablename__ = "commission_plans"

    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    description: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )
    project_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("projects.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    commission_basis: Mapped[CommissionBasis] = mapped_column(
        SQLAlchemyEnum(
            CommissionBasis,
            values_callable=lambda x: [e.value for e in x],
        ),
        default=CommissionBasis.GROSS_REVENUE,
        nullable=False,
    )
    base_rate: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(5, 2),
        nullable=True,
        comment="Percentage applied below a tiered rule's threshold",
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
        index=True,
    )

    # Relationships
    organization: Mapped["Organization"] = relationship(
        "Organization",
        back_populates="commission_plans",
    )
    project: Mapped[Optional["Project"]] = relationship(
        "Project",
        back_populates="commission_plans",
    )
    rules: Mapped[list["CommissionRule"]] = relationship(
        "CommissionRule",
        back_populates="plan",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="CommissionRule.id",
    )

    def __repr__(self) -> str:
        return f"<CommissionPlan(id={self.id}, name='{self.name}', active={self.is_active})>"


class CommissionRule(BaseModel):
    """
    A single commission formula with an optional scope.

    Unset scope columns mean "any value"; a rule with no scope column set is
    the plan's organization-wide default. `priority` is derived from the
    scope by the precedence validator and is never written by callers.
    """

    __tablename__ = "commission_rules"

    commission_plan_id: Mapped[int] = mapped_column(
        ForeignKey("commission_plans.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    rule_type: Mapped[RuleType] = mapped_column(
        SQLAlchemyEnum(
            RuleType,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
    )
    description: Mapped[Optional[str]] = mapped_column(
        String(500),
        nullable=True,
    )

    # Formula values
    percentage: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(5, 2),
        nullable=True,
        comment="PERCENTAGE rate, or base rate below a TIERED threshold",
    )
    flat_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(12, 2),
        nullable=True,
    )
    tier_threshold: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(12, 2),
        nullable=True,
    )
    tier_percentage: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(5, 2),
        nullable=True,
    )

    # Commission caps
    min_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(12, 2),
        nullable=True,
    )
    max_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(12, 2),
        nullable=True,
    )

    # Sale amount band the rule applies to
    min_sale_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(12, 2),
        nullable=True,
    )
    max_sale_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(12, 2),
        nullable=True,
    )

    # Scope
    project_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=True,
    )
    client_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("clients.id", ondelete="CASCADE"),
        nullable=True,
    )
    territory_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("territories.id", ondelete="CASCADE"),
        nullable=True,
    )
    product_category_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("product_categories.id", ondelete="CASCADE"),
        nullable=True,
    )
    customer_tier: Mapped[Optional[CustomerTier]] = mapped_column(
        SQLAlchemyEnum(
            CustomerTier,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=True,
    )

    priority: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
        index=True,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )

    # Relationships
    plan: Mapped["CommissionPlan"] = relationship(
        "CommissionPlan",
        back_populates="rules",
    )

    def __repr__(self) -> str:
        return (
            f"<CommissionRule(id={self.id}, type={self.rule_type}, "
            f"priority={self.priority})>"
        )
