"""
Commission calculation, payout and explanation schemas.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional

from pydantic import BaseModel, Field

from commissionly.models.commission_calculation import AdjustmentType, CalculationStatus


class CalculationResponse(BaseModel):
    id: int
    sales_transaction_id: int
    user_id: int
    commission_plan_id: Optional[int]
    status: CalculationStatus
    amount: Decimal
    calculated_at: datetime
    approved_at: Optional[datetime]
    paid_at: Optional[datetime]
    rejected_at: Optional[datetime]
    rejection_reason: Optional[str]
    metadata: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_calculation(cls, calculation, include_trace: bool = True) -> "CalculationResponse":
        return cls(
            id=calculation.id,
            sales_transaction_id=calculation.sales_transaction_id,
            user_id=calculation.user_id,
            commission_plan_id=calculation.commission_plan_id,
            status=calculation.status,
            amount=calculation.amount,
            calculated_at=calculation.calculated_at,
            approved_at=calculation.approved_at,
            paid_at=calculation.paid_at,
            rejected_at=calculation.rejected_at,
            rejection_reason=calculation.rejection_reason,
            metadata=calculation.trace if include_trace else {},
        )


class CalculationListResponse(BaseModel):
    items: List[CalculationResponse]
    total: int
    page: int
    per_page: int
    pages: int


class RejectRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class BulkCalculationRequest(BaseModel):
    calculation_ids: List[int] = Field(..., min_length=1)


class SalespersonPayout(BaseModel):
    user_id: int
    name: str
    calculation_count: int
    commission_total: Decimal
    adjustments_total: Decimal
    payable_total: Decimal


class PayoutSummaryResponse(BaseModel):
    calculation_count: int
    commission_total: Decimal
    adjustments_total: Decimal
    payable_total: Decimal
    by_salesperson: List[SalespersonPayout]


class AdjustmentCreate(BaseModel):
    type: AdjustmentType
    amount: Decimal
    reason: Optional[str] = Field(None, max_length=500)
    notes: Optional[str] = None
    related_transaction_id: Optional[int] = None


class AdjustmentResponse(BaseModel):
    id: int
    commission_calculation_id: int
    type: AdjustmentType
    amount: Decimal
    reason: Optional[str]
    notes: Optional[str] = None
    related_transaction_id: Optional[int]
    applied_by_id: Optional[int]
    created_at: datetime

    model_config = {"from_attributes": True}


class NetCommissionResponse(BaseModel):
    calculation_id: int
    commission_amount: Decimal
    adjustments_total: Decimal
    net_amount: Decimal


class ExplanationSummary(BaseModel):
    commission_amount: Decimal
    effective_rate: Decimal
    sale_amount: Decimal
    plan_name: Optional[str]
    calculated_at: datetime
    status: CalculationStatus


class ExplanationTransaction(BaseModel):
    id: Optional[int]
    amount: Decimal
    date: Optional[datetime]
    invoice_number: Optional[str] = None
    client_name: Optional[str] = None
    project_name: Optional[str] = None


class ExplanationCalculation(BaseModel):
    basis: str
    basis_amount: Decimal
    formula: str
    raw_amount: Decimal
    clamp: str
    final_amount: Decimal


class ExplanationRule(BaseModel):
    rule_id: Optional[int]
    description: str
    rule_type: str
    rate: Optional[Decimal] = None
    flat_amount: Optional[Decimal] = None
    calculation: ExplanationCalculation


class ExplanationAdjustment(BaseModel):
    type: AdjustmentType
    amount: Decimal
    reason: Optional[str] = None
    applied_at: datetime


class ExplanationAdminDetails(BaseModel):
    engine_version: str
    schema_version: int
    plan: dict[str, Any]
    input_snapshot: dict[str, Any]
    rule_trace: List[dict[str, Any]]
    warnings: List[dict[str, Any]]
    recalculation: Optional[dict[str, Any]] = None


class ExplanationResponse(BaseModel):
    """Role-appropriate explanation built from the stored trace only."""

    calculation_id: int
    summary: ExplanationSummary
    transaction: ExplanationTransaction
    applied_rule: Optional[ExplanationRule]
    adjustments: List[ExplanationAdjustment]
    net_amount: Decimal
    admin_details: Optional[ExplanationAdminDetails] = None
