"""
AuditLog model for tracking user actions.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, func
from sqlalchemy import Enum as SQLAlchemyEnum
from sqlalchemy.orm import Mapped, mapped_column

from commissionly.models.base import Base, OrganizationScopedMixin, utc_now


class AuditAction(str, Enum):
    """Types of auditable actions."""
    CREATE_PLAN = "create_plan"
    UPDATE_PLAN = "update_plan"
    DELETE_PLAN = "delete_plan"
    CREATE_RULE = "create_rule"
    UPDATE_RULE = "update_rule"
    DELETE_RULE = "delete_rule"
    CREATE_TRANSACTION = "create_transaction"
    IMPORT_TRANSACTIONS = "import_transactions"
    CALCULATE_COMMISSION = "calculate_commission"
    RECALCULATE_COMMISSION = "recalculate_commission"
    APPROVE_COMMISSION = "approve_commission"
    REJECT_COMMISSION = "reject_commission"
    PAY_COMMISSION = "pay_commission"
    CREATE_ADJUSTMENT = "create_adjustment"
    DELETE_ADJUSTMENT = "delete_adjustment"
    CREATE_API_KEY = "create_api_key"
    REVOKE_API_KEY = "revoke_api_key"


class AuditLog(Base, OrganizationScopedMixin):
    """
    Audit log for tracking every change to plans, rules and commissions.
    """

    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id"),
        nullable=True,
        index=True,
        comment="Null for system jobs",
    )
    action: Mapped[AuditAction] = mapped_column(
        SQLAlchemyEnum(
            AuditAction,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
        index=True,
    )
    target_type: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
        comment="Type of entity affected (plan, rule, calculation, etc)",
    )
    target_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        comment="ID of the affected entity",
    )
    action_metadata: Mapped[Optional[dict]] = mapped_column(
        JSON,
        nullable=True,
        comment="Additional context about the action",
    )
    ip_address: Mapped[Optional[str]] = mapped_column(
        String(45),
        nullable=True,
        comment="IPv4 or IPv6 address",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        server_default=func.now(),
        nullable=False,
        index=True,
    )

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, user_id={self.user_id}, action={self.action})>"
