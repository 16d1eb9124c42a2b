"""
Sales transaction model.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import DateTime, Enum as SQLAlchemyEnum, ForeignKey, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from commissionly.models.base import BaseModel, OrganizationScopedMixin

if TYPE_CHECKING:
    from commissionly.models.client import Client
    from commissionly.models.commission_calculation import CommissionCalculation
    from commissionly.models.project import ProductCategory, Project
    from commissionly.models.user import User


class TransactionType(str, Enum):
    """Kind of sales transaction."""
    SALE = "SALE"
    RETURN = "RETURN"                # linked to a parent SALE, reduces its net amount
    ADJUSTMENT = "ADJUSTMENT"        # linked credit, also reduces net amount


class SalesTransaction(BaseModel, OrganizationScopedMixin):
    """
    Calculation input. Only SALE transactions earn commission; RETURN and
    ADJUSTMENT rows hang off their parent through parent_transaction_id.
    """

    __tablename__ = "sales_transactions"

    amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )
    transaction_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )
    transaction_type: Mapped[TransactionType] = mapped_column(
        SQLAlchemyEnum(
            TransactionType,
            values_callable=lambda x: [e.value for e in x],
        ),
        default=TransactionType.SALE,
        nullable=False,
        index=True,
    )
    parent_transaction_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("sales_transactions.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )

    # Associations
    project_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("projects.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    client_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("clients.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    product_category_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("product_categories.id", ondelete="SET NULL"),
        nullable=True,
    )
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id"),
        nullable=False,
        index=True,
        comment="Salesperson credited with the sale",
    )

    invoice_number: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
        index=True,
    )
    description: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )
    calculation_attempted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Last missing-commission sweep that tried this transaction",
    )

    # Relationships
    project: Mapped[Optional["Project"]] = relationship("Project")
    client: Mapped[Optional["Client"]] = relationship("Client")
    product_category: Mapped[Optional["ProductCategory"]] = relationship("ProductCategory")
    user: Mapped["User"] = relationship("User")
    parent: Mapped[Optional["SalesTransaction"]] = relationship(
        "SalesTransaction",
        remote_side="SalesTransaction.id",
        back_populates="returns",
    )
    returns: Mapped[list["SalesTransaction"]] = relationship(
        "SalesTransaction",
        back_populates="parent",
    )
    calculation: Mapped[Optional["CommissionCalculation"]] = relationship(
        "CommissionCalculation",
        back_populates="sales_transaction",
        uselist=False,
    )

    def __repr__(self) -> str:
        return (
            f"<SalesTransaction(id={self.id}, type={self.transaction_type}, "
            f"amount={self.amount})>"
        )
