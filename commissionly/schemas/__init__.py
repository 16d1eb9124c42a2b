"""Pydantic schemas for request/response validation."""

from commissionly.schemas.commission import (
    AdjustmentCreate,
    AdjustmentResponse,
    BulkCalculationRequest,
    CalculationListResponse,
    CalculationResponse,
    ExplanationResponse,
    NetCommissionResponse,
    PayoutSummaryResponse,
    RejectRequest,
)
from commissionly.schemas.plan import (
    PlanCreate,
    PlanHealthResponse,
    PlanResponse,
    PlanUpdate,
    PreviewRequest,
    PreviewResponse,
    RuleCreate,
    RuleResponse,
    RuleUpdate,
)
from commissionly.schemas.sales import (
    BulkItemResponse,
    BulkResultResponse,
    ImportResponse,
    RecalculateRequest,
    SalesCreateResponse,
    SalesTransactionCreate,
    SalesTransactionListResponse,
    SalesTransactionResponse,
)

__all__ = [
    # Plans
    "PlanCreate",
    "PlanUpdate",
    "PlanResponse",
    "PlanHealthResponse",
    "RuleCreate",
    "RuleUpdate",
    "RuleResponse",
    "PreviewRequest",
    "PreviewResponse",
    # Sales
    "SalesTransactionCreate",
    "SalesTransactionResponse",
    "SalesTransactionListResponse",
    "SalesCreateResponse",
    "RecalculateRequest",
    "BulkItemResponse",
    "BulkResultResponse",
    "ImportResponse",
    # Commissions
    "CalculationResponse",
    "CalculationListResponse",
    "RejectRequest",
    "BulkCalculationRequest",
    "PayoutSummaryResponse",
    "AdjustmentCreate",
    "AdjustmentResponse",
    "NetCommissionResponse",
    "ExplanationResponse",
]
