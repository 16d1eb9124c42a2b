"""Sales transaction API endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, File, Query, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from commissionly.auth.context import RequestContext
from commissionly.auth.dependencies import get_request_context, require_manager
from commissionly.config import settings
from commissionly.db import get_db
from commissionly.models import CalculationStatus, CommissionCalculation, SalesTransaction, TransactionType
from commissionly.schemas.commission import AdjustmentResponse, CalculationResponse
from commissionly.schemas.sales import (
    BulkItemResponse,
    BulkResultResponse,
    CommissionErrorInfo,
    ImportResponse,
    RecalculateRequest,
    SalesCreateResponse,
    SalesTransactionCreate,
    SalesTransactionListResponse,
    SalesTransactionResponse,
)
from commissionly.services import commission as commission_service
from commissionly.services import sales as sales_service
from commissionly.services.adjustments import link_return_to_commission
from commissionly.services.commission import BulkResult
from commissionly.services.errors import InvalidRequest

router = APIRouter(prefix="/sales", tags=["Sales"])


def _transaction_response(
    transaction: SalesTransaction,
    calculation: Optional[CommissionCalculation] = None,
) -> SalesTransactionResponse:
    return SalesTransactionResponse(
        id=transaction.id,
        amount=transaction.amount,
        transaction_date=transaction.transaction_date,
        transaction_type=transaction.transaction_type,
        parent_transaction_id=transaction.parent_transaction_id,
        user_id=transaction.user_id,
        project_id=transaction.project_id,
        client_id=transaction.client_id,
        product_category_id=transaction.product_category_id,
        invoice_number=transaction.invoice_number,
        description=transaction.description,
        created_at=transaction.created_at,
        commission_status=calculation.status if calculation else CalculationStatus.PENDING,
        commission_amount=calculation.amount if calculation else None,
        calculation_id=calculation.id if calculation else None,
    )


def _bulk_response(result: BulkResult) -> BulkResultResponse:
    return BulkResultResponse(
        succeeded=result.succeeded,
        failed=result.failed,
        items=[BulkItemResponse(**vars(item)) for item in result.items],
    )


def _check_bulk_size(count: int) -> None:
    if count > settings.bulk_max_items:
        raise InvalidRequest(f"At most {settings.bulk_max_items} items per request")


@router.post("", response_model=SalesCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_transaction(
    data: SalesTransactionCreate,
    db: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
):
    """
    Record a transaction. A SALE is calculated immediately.

    When no rule covers the sale, the transaction is still created with
    commission_status PENDING and commission_error explaining why.
    """
    result = await sales_service.create_transaction(db, ctx, data)
    calculation = result.calculation
    return SalesCreateResponse(
        transaction=_transaction_response(result.transaction, calculation),
        commission_status=result.commission_status,
        calculation_id=calculation.id if calculation else None,
        commission_amount=calculation.amount if calculation else None,
        commission_error=(
            CommissionErrorInfo(
                error=result.error.code,
                category=result.error.category,
                detail=result.error.message,
            )
            if result.error
            else None
        ),
    )


@router.get("", response_model=SalesTransactionListResponse)
async def list_transactions(
    user_id: Optional[int] = Query(None),
    transaction_type: Optional[TransactionType] = Query(None),
    status_filter: Optional[CalculationStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
):
    """List transactions, newest first. Salespeople see only their own."""
    transactions, total = await sales_service.list_transactions(
        db, ctx,
        page=page,
        per_page=per_page,
        user_id=user_id,
        transaction_type=transaction_type,
        status=status_filter,
    )
    return SalesTransactionListResponse(
        items=[_transaction_response(t, t.calculation) for t in transactions],
        total=total,
        page=page,
        per_page=per_page,
        pages=(total + per_page - 1) // per_page if total else 0,
    )


@router.post("/import", response_model=ImportResponse)
async def import_transactions(
    file: UploadFile = File(...),
    db: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(require_manager),
):
    """
    Import SALE rows from a CSV file.

    Columns: amount, date, salesperson_email and optionally project_name,
    client_name, invoice_number, description.
    """
    raw = await file.read()
    try:
        content = raw.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise InvalidRequest("CSV file must be UTF-8 encoded") from e

    result = await sales_service.import_transactions_csv(db, ctx, content)
    return ImportResponse(
        created=result.created,
        skipped=result.skipped,
        failed=result.failed,
        rows=[BulkItemResponse(**vars(row)) for row in result.rows],
    )


@router.post("/recalculate", response_model=BulkResultResponse)
async def bulk_recalculate(
    data: RecalculateRequest,
    db: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(require_manager),
):
    """Recalculate several transactions; each one succeeds or fails on its own."""
    _check_bulk_size(len(data.transaction_ids))
    result = await commission_service.bulk_recalculate(db, ctx, data.transaction_ids)
    return _bulk_response(result)


@router.post("/recalculate-missing", response_model=BulkResultResponse)
async def recalculate_missing(
    limit: int = Query(100, ge=1),
    db: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(require_manager),
):
    """Calculate SALE transactions that are still PENDING."""
    _check_bulk_size(limit)
    result = await commission_service.recalculate_missing(db, ctx, limit=limit)
    return _bulk_response(result)


@router.get("/{transaction_id}", response_model=SalesTransactionResponse)
async def get_transaction(
    transaction_id: int,
    db: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
):
    transaction = await sales_service.get_transaction(db, ctx, transaction_id)
    return _transaction_response(transaction, transaction.calculation)


@router.post("/{transaction_id}/calculate", response_model=CalculationResponse, status_code=status.HTTP_201_CREATED)
async def calculate_transaction(
    transaction_id: int,
    plan_id: Optional[int] = Query(None),
    db: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(require_manager),
):
    """Calculate a PENDING sale. Responds 409 if it already has a calculation."""
    calculation = await commission_service.calculate_for_transaction(db, ctx, transaction_id, plan_id)
    return CalculationResponse.from_calculation(calculation)


@router.post("/{transaction_id}/recalculate", response_model=CalculationResponse)
async def recalculate_transaction(
    transaction_id: int,
    plan_id: Optional[int] = Query(None),
    db: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(require_manager),
):
    """Re-run the calculator; approved, paid and rejected calculations are left alone."""
    calculation = await commission_service.recalculate_transaction(db, ctx, transaction_id, plan_id)
    return CalculationResponse.from_calculation(calculation)


@router.post("/{transaction_id}/link-return", response_model=AdjustmentResponse, status_code=status.HTTP_201_CREATED)
async def link_return(
    transaction_id: int,
    db: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(require_manager),
):
    """Apply a RETURN transaction to its sale's commission as a proportional deduction."""
    adjustment = await link_return_to_commission(db, ctx, transaction_id)
    return AdjustmentResponse.model_validate(adjustment)
