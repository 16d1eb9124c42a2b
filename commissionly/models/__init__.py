"""
Database models for Commissionly.

All models are exported here for convenient imports:
    from commissionly.models import CommissionPlan, CommissionRule, etc.
"""

from commissionly.models.api_key import ApiKey
from commissionly.models.audit import AuditAction, AuditLog
from commissionly.models.base import Base, BaseModel, OrganizationScopedMixin, TimestampMixin
from commissionly.models.client import Client, CustomerTier
from commissionly.models.commission_calculation import (
    AdjustmentType,
    CalculationStatus,
    CommissionAdjustment,
    CommissionCalculation,
)
from commissionly.models.commission_plan import (
    CommissionBasis,
    CommissionPlan,
    CommissionRule,
    RuleType,
)
from commissionly.models.organization import Organization
from commissionly.models.project import ProductCategory, Project
from commissionly.models.sales_transaction import SalesTransaction, TransactionType
from commissionly.models.territory import Territory
from commissionly.models.user import User, UserRole

__all__ = [
    # Base
    "Base",
    "BaseModel",
    "OrganizationScopedMixin",
    "TimestampMixin",
    # Tenancy
    "Organization",
    "User",
    "UserRole",
    "ApiKey",
    # Catalog
    "Territory",
    "Client",
    "CustomerTier",
    "Project",
    "ProductCategory",
    # Plans
    "CommissionPlan",
    "CommissionRule",
    "CommissionBasis",
    "RuleType",
    # Sales
    "SalesTransaction",
    "TransactionType",
    # Calculations
    "CommissionCalculation",
    "CalculationStatus",
    "CommissionAdjustment",
    "AdjustmentType",
    # Audit
    "AuditLog",
    "AuditAction",
]
