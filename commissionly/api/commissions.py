"""Commission calculation, payout and adjustment API endpoints."""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from commissionly.auth.context import RequestContext
from commissionly.auth.dependencies import get_request_context, require_manager
from commissionly.config import settings
from commissionly.db import get_db
from commissionly.models import CalculationStatus
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
from commissionly.schemas.sales import BulkItemResponse, BulkResultResponse
from commissionly.services import adjustments as adjustment_service
from commissionly.services import payouts as payout_service
from commissionly.services.errors import InvalidRequest
from commissionly.services.explanations import explain_calculation

router = APIRouter(prefix="/commissions", tags=["Commissions"])


def _bulk_response(result) -> BulkResultResponse:
    return BulkResultResponse(
        succeeded=result.succeeded,
        failed=result.failed,
        items=[BulkItemResponse(**vars(item)) for item in result.items],
    )


@router.get("", response_model=CalculationListResponse)
async def list_calculations(
    status_filter: Optional[CalculationStatus] = Query(None, alias="status"),
    user_id: Optional[int] = Query(None),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
):
    """List calculations. Salespeople see only their own, without traces."""
    calculations, total = await payout_service.list_calculations(
        db, ctx,
        page=page,
        per_page=per_page,
        status=status_filter,
        user_id=user_id,
    )
    return CalculationListResponse(
        items=[
            CalculationResponse.from_calculation(c, include_trace=ctx.can_manage)
            for c in calculations
        ],
        total=total,
        page=page,
        per_page=per_page,
        pages=(total + per_page - 1) // per_page if total else 0,
    )


@router.get("/summary", response_model=PayoutSummaryResponse)
async def payout_summary(
    status_filter: CalculationStatus = Query(CalculationStatus.APPROVED, alias="status"),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    db: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
):
    """Payable totals per salesperson."""
    return await payout_service.payout_summary(
        db, ctx, status=status_filter, start_date=start_date, end_date=end_date
    )


@router.post("/bulk-approve", response_model=BulkResultResponse)
async def bulk_approve(
    data: BulkCalculationRequest,
    db: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(require_manager),
):
    if len(data.calculation_ids) > settings.bulk_max_items:
        raise InvalidRequest(f"At most {settings.bulk_max_items} items per request")
    result = await payout_service.bulk_approve(db, ctx, data.calculation_ids)
    return _bulk_response(result)


@router.post("/bulk-pay", response_model=BulkResultResponse)
async def bulk_mark_paid(
    data: BulkCalculationRequest,
    db: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(require_manager),
):
    if len(data.calculation_ids) > settings.bulk_max_items:
        raise InvalidRequest(f"At most {settings.bulk_max_items} items per request")
    result = await payout_service.bulk_mark_paid(db, ctx, data.calculation_ids)
    return _bulk_response(result)


@router.get("/{calculation_id}", response_model=CalculationResponse)
async def get_calculation(
    calculation_id: int,
    db: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
):
    calculation = await payout_service.get_calculation(db, ctx, calculation_id)
    return CalculationResponse.from_calculation(calculation, include_trace=ctx.can_manage)


@router.get("/{calculation_id}/explanation", response_model=ExplanationResponse)
async def get_explanation(
    calculation_id: int,
    db: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
):
    """Explain how the commission was derived, from the stored trace."""
    return await explain_calculation(db, ctx, calculation_id)


# ── Workflow ──────────────────────────────────────────────


@router.post("/{calculation_id}/approve", response_model=CalculationResponse)
async def approve_calculation(
    calculation_id: int,
    db: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(require_manager),
):
    calculation = await payout_service.approve_calculation(db, ctx, calculation_id)
    return CalculationResponse.from_calculation(calculation)


@router.post("/{calculation_id}/reject", response_model=CalculationResponse)
async def reject_calculation(
    calculation_id: int,
    data: RejectRequest,
    db: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(require_manager),
):
    calculation = await payout_service.reject_calculation(db, ctx, calculation_id, data.reason)
    return CalculationResponse.from_calculation(calculation)


@router.post("/{calculation_id}/pay", response_model=CalculationResponse)
async def mark_paid(
    calculation_id: int,
    db: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(require_manager),
):
    calculation = await payout_service.mark_paid(db, ctx, calculation_id)
    return CalculationResponse.from_calculation(calculation)


# ── Adjustments ───────────────────────────────────────────


@router.get("/{calculation_id}/adjustments", response_model=List[AdjustmentResponse])
async def list_adjustments(
    calculation_id: int,
    db: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
):
    adjustments = await adjustment_service.list_adjustments(db, ctx, calculation_id)
    items = [AdjustmentResponse.model_validate(a) for a in adjustments]
    if not ctx.can_manage:
        # Notes are for administrators only
        items = [item.model_copy(update={"notes": None}) for item in items]
    return items


@router.post(
    "/{calculation_id}/adjustments",
    response_model=AdjustmentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_adjustment(
    calculation_id: int,
    data: AdjustmentCreate,
    db: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(require_manager),
):
    adjustment = await adjustment_service.create_adjustment(db, ctx, calculation_id, data)
    return AdjustmentResponse.model_validate(adjustment)


@router.delete("/{calculation_id}/adjustments/{adjustment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_adjustment(
    calculation_id: int,
    adjustment_id: int,
    db: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(require_manager),
):
    await adjustment_service.delete_adjustment(db, ctx, calculation_id, adjustment_id)


@router.get("/{calculation_id}/net", response_model=NetCommissionResponse)
async def get_net_commission(
    calculation_id: int,
    db: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
):
    """Commission amount plus adjustments."""
    calculation = await payout_service.get_calculation(db, ctx, calculation_id)
    net = adjustment_service.net_commission(calculation)
    return NetCommissionResponse(
        calculation_id=net.calculation_id,
        commission_amount=net.commission_amount,
        adjustments_total=net.adjustments_total,
        net_amount=net.net_amount,
    )
