"""
Commission plan and rule schemas.

Rule value bounds are deliberately not enforced here: the precedence
validator checks them so the caller gets one InvalidRuleConfiguration with
every problem listed.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional

from pydantic import BaseModel, Field

from commissionly.models.client import CustomerTier
from commissionly.models.commission_plan import CommissionBasis, RuleType


class PlanCreate(BaseModel):
    """Request to create a commission plan."""

    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    project_id: Optional[int] = None
    commission_basis: Optional[CommissionBasis] = None
    base_rate: Optional[Decimal] = Field(None, ge=0, le=100)
    is_active: bool = True


class PlanUpdate(BaseModel):
    """Request to update a commission plan. Unset fields are left unchanged."""

    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    project_id: Optional[int] = None
    commission_basis: Optional[CommissionBasis] = None
    base_rate: Optional[Decimal] = Field(None, ge=0, le=100)
    is_active: Optional[bool] = None


class RuleCreate(BaseModel):
    """Request to add a rule to a plan. Priority is derived from the scope."""

    rule_type: RuleType
    description: Optional[str] = Field(None, max_length=500)
    percentage: Optional[Decimal] = None
    flat_amount: Optional[Decimal] = None
    tier_threshold: Optional[Decimal] = None
    tier_percentage: Optional[Decimal] = None
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None
    min_sale_amount: Optional[Decimal] = None
    max_sale_amount: Optional[Decimal] = None

    # Scope
    project_id: Optional[int] = None
    client_id: Optional[int] = None
    territory_id: Optional[int] = None
    product_category_id: Optional[int] = None
    customer_tier: Optional[CustomerTier] = None

    is_active: bool = True


class RuleUpdate(BaseModel):
    """
    Request to edit a rule.

    Only fields present in the payload are applied; send null explicitly to
    clear a value or a scope dimension.
    """

    rule_type: Optional[RuleType] = None
    description: Optional[str] = Field(None, max_length=500)
    percentage: Optional[Decimal] = None
    flat_amount: Optional[Decimal] = None
    tier_threshold: Optional[Decimal] = None
    tier_percentage: Optional[Decimal] = None
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None
    min_sale_amount: Optional[Decimal] = None
    max_sale_amount: Optional[Decimal] = None
    project_id: Optional[int] = None
    client_id: Optional[int] = None
    territory_id: Optional[int] = None
    product_category_id: Optional[int] = None
    customer_tier: Optional[CustomerTier] = None
    is_active: Optional[bool] = None


class RuleResponse(BaseModel):
    id: int
    commission_plan_id: int
    rule_type: RuleType
    description: Optional[str]
    percentage: Optional[Decimal]
    flat_amount: Optional[Decimal]
    tier_threshold: Optional[Decimal]
    tier_percentage: Optional[Decimal]
    min_amount: Optional[Decimal]
    max_amount: Optional[Decimal]
    min_sale_amount: Optional[Decimal]
    max_sale_amount: Optional[Decimal]
    project_id: Optional[int]
    client_id: Optional[int]
    territory_id: Optional[int]
    product_category_id: Optional[int]
    customer_tier: Optional[CustomerTier]
    priority: int
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class PlanResponse(BaseModel):
    id: int
    name: str
    description: Optional[str]
    project_id: Optional[int]
    commission_basis: CommissionBasis
    base_rate: Optional[Decimal]
    is_active: bool
    created_at: datetime
    updated_at: Optional[datetime]
    rules: List[RuleResponse] = []

    model_config = {"from_attributes": True}


class RuleConflictResponse(BaseModel):
    rule_type: RuleType
    scope: dict[str, Any]
    rule_ids: List[int]
    message: str


class PlanHealthResponse(BaseModel):
    """Result of the plan health check."""

    plan_id: int
    rule_count: int
    active_rule_count: int
    has_default_rule: bool
    conflicts: List[RuleConflictResponse]
    healthy: bool


class PreviewRequest(BaseModel):
    """What-if calculation against a plan."""

    amount: Decimal = Field(..., gt=0)
    client_id: Optional[int] = None
    customer_tier: Optional[CustomerTier] = None
    project_id: Optional[int] = None
    territory_id: Optional[int] = None
    product_category_id: Optional[int] = None


class PreviewResponse(BaseModel):
    amount: Decimal
    selected_rule_id: Optional[int]
    metadata: dict[str, Any]
