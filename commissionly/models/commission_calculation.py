"""
Commission calculation and adjustment models.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import JSON, DateTime, Enum as SQLAlchemyEnum, ForeignKey, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from commissionly.models.base import BaseModel, OrganizationScopedMixin

if TYPE_CHECKING:
    from commissionly.models.commission_plan import CommissionPlan
    from commissionly.models.sales_transaction import SalesTransaction
    from commissionly.models.user import User


class CalculationStatus(str, Enum):
    """Lifecycle of a commission calculation."""
    PENDING = "PENDING"              # transaction not calculated yet
    CALCULATED = "CALCULATED"
    APPROVED = "APPROVED"
    PAID = "PAID"
    REJECTED = "REJECTED"


class AdjustmentType(str, Enum):
    """Post-calculation corrections to a commission."""
    RETURN = "RETURN"
    CLAWBACK = "CLAWBACK"
    OVERRIDE = "OVERRIDE"
    SPLIT_CREDIT = "SPLIT_CREDIT"


class CommissionCalculation(BaseModel, OrganizationScopedMixin):
    """
    Calculator output for one sales transaction.

    At most one row per transaction (unique sales_transaction_id). The
    `trace` column holds the rule trace; it is the only audit record of how
    the amount was derived.
    """

    __tablename__ = "commission_calculations"

    sales_transaction_id: Mapped[int] = mapped_column(
        ForeignKey("sales_transactions.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id"),
        nullable=False,
        index=True,
    )
    commission_plan_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("commission_plans.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    status: Mapped[CalculationStatus] = mapped_column(
        SQLAlchemyEnum(
            CalculationStatus,
            values_callable=lambda x: [e.value for e in x],
        ),
        default=CalculationStatus.CALCULATED,
        nullable=False,
        index=True,
    )
    amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )
    trace: Mapped[dict] = mapped_column(
        "metadata",
        JSON,
        nullable=False,
        comment="Versioned rule trace written by the calculator",
    )

    calculated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    approved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    paid_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    rejected_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    rejection_reason: Mapped[Optional[str]] = mapped_column(
        String(500),
        nullable=True,
    )

    # Relationships
    sales_transaction: Mapped["SalesTransaction"] = relationship(
        "SalesTransaction",
        back_populates="calculation",
    )
    user: Mapped["User"] = relationship("User")
    commission_plan: Mapped[Optional["CommissionPlan"]] = relationship("CommissionPlan")
    adjustments: Mapped[list["CommissionAdjustment"]] = relationship(
        "CommissionAdjustment",
        back_populates="calculation",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="CommissionAdjustment.id",
    )

    def __repr__(self) -> str:
        return (
            f"<CommissionCalculation(id={self.id}, transaction={self.sales_transaction_id}, "
            f"status={self.status}, amount={self.amount})>"
        )


class CommissionAdjustment(BaseModel, OrganizationScopedMixin):
    """Signed correction applied to a calculation after the fact."""

    __tablename__ = "commission_adjustments"

    commission_calculation_id: Mapped[int] = mapped_column(
        ForeignKey("commission_calculations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    type: Mapped[AdjustmentType] = mapped_column(
        SQLAlchemyEnum(
            AdjustmentType,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        comment="Negative for deductions",
    )
    reason: Mapped[Optional[str]] = mapped_column(
        String(500),
        nullable=True,
    )
    notes: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Admin-only notes",
    )
    related_transaction_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("sales_transactions.id", ondelete="SET NULL"),
        nullable=True,
    )
    applied_by_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id"),
        nullable=True,
    )

    # Relationships
    calculation: Mapped["CommissionCalculation"] = relationship(
        "CommissionCalculation",
        back_populates="adjustments",
    )

    def __repr__(self) -> str:
        return f"<CommissionAdjustment(id={self.id}, type={self.type}, amount={self.amount})>"
