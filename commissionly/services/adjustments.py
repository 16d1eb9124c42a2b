"""
Post-calculation adjustments: returns, clawbacks, overrides and split credit.

Adjustments never change the calculated amount; the payable amount is the
calculation plus the sum of its adjustments.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from commissionly.auth.context import RequestContext
from commissionly.config import settings
from commissionly.models import (
    AdjustmentType,
    AuditAction,
    CalculationStatus,
    CommissionAdjustment,
    CommissionBasis,
    CommissionCalculation,
    SalesTransaction,
    TransactionType,
)
from commissionly.schemas.commission import AdjustmentCreate
from commissionly.services.commission_calculator import quantize_money
from commissionly.services.commission_trace import CommissionTrace
from commissionly.services.errors import InvalidRequest, ResourceNotFound
from commissionly.services.payouts import adjustments_total, get_calculation
from commissionly.services.rule_precedence import to_decimal
from commissionly.utils.audit import log_action

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


@dataclass(frozen=True)
class NetCommission:
    calculation_id: int
    commission_amount: Decimal
    adjustments_total: Decimal

    @property
    def net_amount(self) -> Decimal:
        return self.commission_amount + self.adjustments_total


def net_commission(calculation: CommissionCalculation) -> NetCommission:
    """Calculation amount plus adjustments; `adjustments` must be loaded."""
    return NetCommission(
        calculation_id=calculation.id,
        commission_amount=calculation.amount,
        adjustments_total=adjustments_total(calculation.adjustments),
    )


async def create_adjustment(
    db: AsyncSession,
    ctx: RequestContext,
    calculation_id: int,
    data: AdjustmentCreate,
) -> CommissionAdjustment:
    calculation = await get_calculation(db, ctx, calculation_id)

    if data.related_transaction_id is not None:
        related = await db.scalar(
            select(SalesTransaction.id).where(
                SalesTransaction.id == data.related_transaction_id,
                SalesTransaction.organization_id == ctx.organization_id,
            )
        )
        if related is None:
            raise ResourceNotFound("Sales transaction", data.related_transaction_id)

    adjustment = CommissionAdjustment(
        organization_id=ctx.organization_id,
        type=data.type,
        amount=quantize_money(data.amount, settings.currency_precision),
        reason=data.reason,
        notes=data.notes,
        related_transaction_id=data.related_transaction_id,
        applied_by_id=ctx.user_id,
    )
    calculation.adjustments.append(adjustment)
    await db.flush()

    await log_action(
        db, ctx, AuditAction.CREATE_ADJUSTMENT,
        target_type="adjustment", target_id=adjustment.id,
        action_metadata={
            "calculation_id": calculation.id,
            "type": adjustment.type.value,
            "amount": str(adjustment.amount),
        },
    )
    logger.info(f"{adjustment.type.value} adjustment {adjustment.amount} on calculation {calculation.id}")
    return adjustment


async def list_adjustments(
    db: AsyncSession,
    ctx: RequestContext,
    calculation_id: int,
) -> list[CommissionAdjustment]:
    calculation = await get_calculation(db, ctx, calculation_id)
    return list(calculation.adjustments)


async def delete_adjustment(
    db: AsyncSession,
    ctx: RequestContext,
    calculation_id: int,
    adjustment_id: int,
) -> None:
    calculation = await get_calculation(db, ctx, calculation_id)
    if calculation.status == CalculationStatus.PAID:
        raise InvalidRequest("Adjustments of a paid commission cannot be removed")

    adjustment = next((a for a in calculation.adjustments if a.id == adjustment_id), None)
    if adjustment is None:
        raise ResourceNotFound("Adjustment", adjustment_id)

    calculation.adjustments.remove(adjustment)
    await log_action(
        db, ctx, AuditAction.DELETE_ADJUSTMENT,
        target_type="adjustment", target_id=adjustment_id,
        action_metadata={"calculation_id": calculation.id, "amount": str(adjustment.amount)},
    )
    await db.flush()


async def link_return_to_commission(
    db: AsyncSession,
    ctx: RequestContext,
    return_transaction_id: int,
) -> CommissionAdjustment:
    """
    Deduct a returned share of the original commission.

    amount = -(|return| / basis) * commission, rounded half-up

    The basis is the amount the calculation was made on: the gross sale, or
    the net amount for a NET_SALES calculation.

    Raises:
        InvalidRequest: not a RETURN, already linked, or already in the net basis
        ResourceNotFound: the parent sale has no calculation
    """
    ret = await db.scalar(
        select(SalesTransaction)
        .options(selectinload(SalesTransaction.parent).selectinload(SalesTransaction.calculation))
        .where(
            SalesTransaction.id == return_transaction_id,
            SalesTransaction.organization_id == ctx.organization_id,
        )
    )
    if ret is None:
        raise ResourceNotFound("Sales transaction", return_transaction_id)
    if ret.transaction_type != TransactionType.RETURN or ret.parent is None:
        raise InvalidRequest(f"Transaction {ret.id} is not a RETURN linked to a sale")

    sale = ret.parent
    if sale.calculation is None:
        raise ResourceNotFound("Commission calculation for transaction", sale.id)

    calculation = await get_calculation(db, ctx, sale.calculation.id)
    already_linked = any(
        adjustment.type == AdjustmentType.RETURN and adjustment.related_transaction_id == ret.id
        for adjustment in calculation.adjustments
    )
    if already_linked:
        raise InvalidRequest(f"Return {ret.id} is already applied to calculation {calculation.id}")

    snapshot = CommissionTrace.from_metadata(calculation.trace).input_snapshot
    if snapshot.basis == CommissionBasis.NET_SALES.value and ret.id in snapshot.return_ids:
        raise InvalidRequest(
            f"Return {ret.id} is already netted into the basis of calculation {calculation.id}"
        )

    basis_amount = to_decimal(snapshot.basis_amount)
    returned = abs(to_decimal(ret.amount))
    if basis_amount > ZERO:
        share = min(returned / basis_amount, Decimal("1"))
    else:
        share = ZERO
    amount = -(share * calculation.amount)

    return await create_adjustment(
        db,
        ctx,
        calculation.id,
        AdjustmentCreate(
            type=AdjustmentType.RETURN,
            amount=amount,
            reason=f"Return of {returned} on invoice {sale.invoice_number or sale.id}",
            related_transaction_id=ret.id,
        ),
    )
