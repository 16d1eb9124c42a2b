"""
Payout workflow of commission calculations.

    CALCULATED -> APPROVED -> PAID
    CALCULATED | APPROVED -> REJECTED
    REJECTED -> APPROVED

PENDING is never stored; it is the state of a SALE without a calculation.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from commissionly.auth.context import RequestContext
from commissionly.models import (
    AuditAction,
    CalculationStatus,
    CommissionAdjustment,
    CommissionCalculation,
    User,
)
from commissionly.models.base import utc_now
from commissionly.schemas.commission import PayoutSummaryResponse, SalespersonPayout
from commissionly.services.commission import BulkResult, run_bulk
from commissionly.services.errors import InvalidStatusTransition, ResourceNotFound
from commissionly.utils.audit import log_action

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

ALLOWED_TRANSITIONS = {
    CalculationStatus.CALCULATED: {CalculationStatus.APPROVED, CalculationStatus.REJECTED},
    CalculationStatus.APPROVED: {CalculationStatus.PAID, CalculationStatus.REJECTED},
    CalculationStatus.REJECTED: {CalculationStatus.APPROVED},
    CalculationStatus.PAID: set(),
}


def can_transition(current: CalculationStatus, target: CalculationStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, set())


async def load_calculation(
    db: AsyncSession,
    organization_id: int,
    calculation_id: int,
) -> Optional[CommissionCalculation]:
    """Load a calculation with its adjustments and salesperson."""
    return await db.scalar(
        select(CommissionCalculation)
        .options(
            selectinload(CommissionCalculation.adjustments),
            selectinload(CommissionCalculation.user),
        )
        .where(
            CommissionCalculation.id == calculation_id,
            CommissionCalculation.organization_id == organization_id,
        )
    )


async def get_calculation(
    db: AsyncSession,
    ctx: RequestContext,
    calculation_id: int,
) -> CommissionCalculation:
    """
    Load a calculation of the caller's organization.

    Salespeople only see their own calculations; others look missing.
    """
    calculation = await load_calculation(db, ctx.organization_id, calculation_id)
    if calculation is None:
        raise ResourceNotFound("Commission calculation", calculation_id)
    if not ctx.can_manage and calculation.user_id != ctx.user_id:
        raise ResourceNotFound("Commission calculation", calculation_id)
    return calculation


async def list_calculations(
    db: AsyncSession,
    ctx: RequestContext,
    page: int = 1,
    per_page: int = 20,
    status: Optional[CalculationStatus] = None,
    user_id: Optional[int] = None,
) -> tuple[list[CommissionCalculation], int]:
    query = select(CommissionCalculation).where(
        CommissionCalculation.organization_id == ctx.organization_id
    )

    if not ctx.can_manage:
        query = query.where(CommissionCalculation.user_id == ctx.user_id)
    elif user_id is not None:
        query = query.where(CommissionCalculation.user_id == user_id)

    if status is not None:
        query = query.where(CommissionCalculation.status == status)

    total = await db.scalar(select(func.count()).select_from(query.subquery()))

    query = query.order_by(CommissionCalculation.calculated_at.desc(), CommissionCalculation.id.desc())
    query = query.offset((page - 1) * per_page).limit(per_page)
    result = await db.execute(query)
    return list(result.scalars().all()), total or 0


async def _transition(
    db: AsyncSession,
    ctx: RequestContext,
    calculation: CommissionCalculation,
    target: CalculationStatus,
    action: AuditAction,
    reason: Optional[str] = None,
) -> CommissionCalculation:
    current = calculation.status
    if not can_transition(current, target):
        raise InvalidStatusTransition(calculation.id, current.value, target.value)

    now = utc_now()
    calculation.status = target
    if target == CalculationStatus.APPROVED:
        calculation.approved_at = now
        calculation.rejected_at = None
        calculation.rejection_reason = None
    elif target == CalculationStatus.PAID:
        calculation.paid_at = now
    elif target == CalculationStatus.REJECTED:
        calculation.rejected_at = now
        calculation.rejection_reason = reason
    await db.flush()

    await log_action(
        db, ctx, action,
        target_type="calculation", target_id=calculation.id,
        action_metadata={"from": current.value, "to": target.value, "reason": reason},
    )
    logger.info(f"Calculation {calculation.id}: {current.value} -> {target.value}")
    return calculation


async def approve_calculation(db: AsyncSession, ctx: RequestContext, calculation_id: int) -> CommissionCalculation:
    calculation = await get_calculation(db, ctx, calculation_id)
    return await _transition(db, ctx, calculation, CalculationStatus.APPROVED, AuditAction.APPROVE_COMMISSION)


async def reject_calculation(
    db: AsyncSession,
    ctx: RequestContext,
    calculation_id: int,
    reason: Optional[str] = None,
) -> CommissionCalculation:
    calculation = await get_calculation(db, ctx, calculation_id)
    return await _transition(
        db, ctx, calculation, CalculationStatus.REJECTED, AuditAction.REJECT_COMMISSION,
        reason=reason,
    )


async def mark_paid(db: AsyncSession, ctx: RequestContext, calculation_id: int) -> CommissionCalculation:
    calculation = await get_calculation(db, ctx, calculation_id)
    return await _transition(db, ctx, calculation, CalculationStatus.PAID, AuditAction.PAY_COMMISSION)


async def bulk_approve(db: AsyncSession, ctx: RequestContext, calculation_ids: Sequence[int]) -> BulkResult:
    async def approve(calculation_id: int) -> CommissionCalculation:
        return await approve_calculation(db, ctx, calculation_id)

    return await run_bulk(db, calculation_ids, approve)


async def bulk_mark_paid(db: AsyncSession, ctx: RequestContext, calculation_ids: Sequence[int]) -> BulkResult:
    async def pay(calculation_id: int) -> CommissionCalculation:
        return await mark_paid(db, ctx, calculation_id)

    return await run_bulk(db, calculation_ids, pay)


async def payout_summary(
    db: AsyncSession,
    ctx: RequestContext,
    status: CalculationStatus = CalculationStatus.APPROVED,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> PayoutSummaryResponse:
    """
    Totals payable per salesperson for calculations in `status`.

    Payable = commission amount + sum of adjustments.
    """
    query = (
        select(CommissionCalculation)
        .options(
            selectinload(CommissionCalculation.adjustments),
            selectinload(CommissionCalculation.user),
        )
        .where(
            CommissionCalculation.organization_id == ctx.organization_id,
            CommissionCalculation.status == status,
        )
    )
    if not ctx.can_manage:
        query = query.where(CommissionCalculation.user_id == ctx.user_id)
    if start_date is not None:
        query = query.where(CommissionCalculation.calculated_at >= start_date)
    if end_date is not None:
        query = query.where(CommissionCalculation.calculated_at <= end_date)

    result = await db.execute(query.order_by(CommissionCalculation.user_id, CommissionCalculation.id))
    calculations = result.scalars().all()

    per_user: dict[int, dict] = {}
    for calculation in calculations:
        user: User = calculation.user
        entry = per_user.setdefault(
            calculation.user_id,
            {
                "name": user.display_name if user else str(calculation.user_id),
                "count": 0,
                "commission": ZERO,
                "adjustments": ZERO,
            },
        )
        entry["count"] += 1
        entry["commission"] += calculation.amount
        entry["adjustments"] += adjustments_total(calculation.adjustments)

    by_salesperson = [
        SalespersonPayout(
            user_id=user_id,
            name=entry["name"],
            calculation_count=entry["count"],
            commission_total=entry["commission"],
            adjustments_total=entry["adjustments"],
            payable_total=entry["commission"] + entry["adjustments"],
        )
        for user_id, entry in per_user.items()
    ]

    commission_total = sum((p.commission_total for p in by_salesperson), ZERO)
    adjustments_sum = sum((p.adjustments_total for p in by_salesperson), ZERO)
    return PayoutSummaryResponse(
        calculation_count=len(calculations),
        commission_total=commission_total,
        adjustments_total=adjustments_sum,
        payable_total=commission_total + adjustments_sum,
        by_salesperson=by_salesperson,
    )


def adjustments_total(adjustments: Sequence[CommissionAdjustment]) -> Decimal:
    return sum((adjustment.amount for adjustment in adjustments), ZERO)
