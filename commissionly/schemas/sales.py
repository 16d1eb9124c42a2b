"""
Sales transaction schemas.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional

from pydantic import BaseModel, Field, model_validator

from commissionly.models.commission_calculation import CalculationStatus
from commissionly.models.sales_transaction import TransactionType


class SalesTransactionCreate(BaseModel):
    """
    Request to record a sales transaction.

    SALE amounts must be positive. RETURN and ADJUSTMENT rows reference the
    SALE they reduce and may carry either sign.
    """

    amount: Decimal
    transaction_date: datetime
    transaction_type: TransactionType = TransactionType.SALE
    parent_transaction_id: Optional[int] = None
    user_id: int
    project_id: Optional[int] = None
    client_id: Optional[int] = None
    product_category_id: Optional[int] = None
    commission_plan_id: Optional[int] = None
    invoice_number: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = Field(None, max_length=2000)

    @model_validator(mode="after")
    def check_amount_and_parent(self) -> "SalesTransactionCreate":
        if self.transaction_type == TransactionType.SALE:
            if self.amount <= 0:
                raise ValueError("Amount must be greater than 0")
            if self.parent_transaction_id is not None:
                raise ValueError("A SALE cannot reference a parent transaction")
        else:
            if self.amount == 0:
                raise ValueError("Amount must not be zero")
            if self.parent_transaction_id is None:
                raise ValueError(f"{self.transaction_type.value} requires parent_transaction_id")
        return self


class SalesTransactionResponse(BaseModel):
    id: int
    amount: Decimal
    transaction_date: datetime
    transaction_type: TransactionType
    parent_transaction_id: Optional[int]
    user_id: int
    project_id: Optional[int]
    client_id: Optional[int]
    product_category_id: Optional[int]
    invoice_number: Optional[str]
    description: Optional[str]
    created_at: datetime
    commission_status: CalculationStatus = CalculationStatus.PENDING
    commission_amount: Optional[Decimal] = None
    calculation_id: Optional[int] = None


class SalesTransactionListResponse(BaseModel):
    items: List[SalesTransactionResponse]
    total: int
    page: int
    per_page: int
    pages: int


class CommissionErrorInfo(BaseModel):
    error: str
    category: str
    detail: str


class SalesCreateResponse(BaseModel):
    """
    Created transaction plus the outcome of its commission calculation.

    When no rule covers the sale the transaction is still stored,
    commission_status stays PENDING and commission_error says why.
    """

    transaction: SalesTransactionResponse
    commission_status: CalculationStatus
    calculation_id: Optional[int] = None
    commission_amount: Optional[Decimal] = None
    commission_error: Optional[CommissionErrorInfo] = None


class RecalculateRequest(BaseModel):
    transaction_ids: List[int] = Field(..., min_length=1)


class BulkItemResponse(BaseModel):
    id: Any
    success: bool
    calculation_id: Optional[int] = None
    amount: Optional[Decimal] = None
    status: Optional[str] = None
    error: Optional[str] = None
    detail: Optional[str] = None


class BulkResultResponse(BaseModel):
    succeeded: int
    failed: int
    items: List[BulkItemResponse]


class ImportResponse(BaseModel):
    created: int
    skipped: int
    failed: int
    rows: List[BulkItemResponse]
