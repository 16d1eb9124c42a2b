"""
Commission calculation orchestration.

Loads a transaction and its plan, hands plain values to the calculator and
persists the result. Every calculation of a SALE happens here, whether it
is triggered by a new transaction, an explicit request or the scheduler.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from commissionly.auth.context import RequestContext
from commissionly.config import settings
from commissionly.models import (
    AdjustmentType,
    AuditAction,
    CalculationStatus,
    Client,
    CommissionBasis,
    CommissionCalculation,
    CommissionPlan,
    Project,
    SalesTransaction,
    TransactionType,
)
from commissionly.models.base import utc_now
from commissionly.services.commission_calculator import (
    CalculationContext,
    CommissionResult,
    calculate_commission,
)
from commissionly.services.commission_trace import (
    CommissionTrace,
    PlanSnapshot,
    RecalculationNote,
    SalespersonSnapshot,
)
from commissionly.services.errors import (
    CalculationAlreadyExists,
    CommissionEngineError,
    InvalidStatusTransition,
    NoMatchingRule,
    ResourceNotFound,
    TransactionNotCalculable,
)
from commissionly.services.net_sales import load_net_sales_amount
from commissionly.services.rule_precedence import RuleDefinition, to_decimal
from commissionly.utils.audit import log_action

logger = logging.getLogger(__name__)


# ── Bulk results ──────────────────────────────────────────


@dataclass
class BulkItemResult:
    """Outcome of one item in a bulk operation."""

    id: Any
    success: bool
    calculation_id: Optional[int] = None
    amount: Optional[Decimal] = None
    status: Optional[str] = None
    error: Optional[str] = None
    detail: Optional[str] = None

    @classmethod
    def ok(cls, item_id: Any, calculation: CommissionCalculation) -> "BulkItemResult":
        return cls(
            id=item_id,
            success=True,
            calculation_id=calculation.id,
            amount=calculation.amount,
            status=calculation.status.value,
        )

    @classmethod
    def failed(cls, item_id: Any, error: CommissionEngineError) -> "BulkItemResult":
        return cls(id=item_id, success=False, error=error.code, detail=error.message)


@dataclass
class BulkResult:
    items: list[BulkItemResult] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for item in self.items if item.success)

    @property
    def failed(self) -> int:
        return sum(1 for item in self.items if not item.success)


# ── Loading ───────────────────────────────────────────────


async def load_transaction(
    db: AsyncSession,
    organization_id: int,
    transaction_id: int,
) -> Optional[SalesTransaction]:
    """Load a transaction with everything the calculator and explanations read."""
    result = await db.execute(
        select(SalesTransaction)
        .options(
            selectinload(SalesTransaction.project)
            .selectinload(Project.client)
            .selectinload(Client.territory),
            selectinload(SalesTransaction.client).selectinload(Client.territory),
            selectinload(SalesTransaction.product_category),
            selectinload(SalesTransaction.user),
            selectinload(SalesTransaction.calculation).selectinload(CommissionCalculation.adjustments),
            selectinload(SalesTransaction.returns),
        )
        .where(
            SalesTransaction.id == transaction_id,
            SalesTransaction.organization_id == organization_id,
        )
    )
    return result.scalar_one_or_none()


def _plan_query(organization_id: int):
    return (
        select(CommissionPlan)
        .options(selectinload(CommissionPlan.rules))
        .where(CommissionPlan.organization_id == organization_id)
    )


async def load_plan_with_rules(
    db: AsyncSession,
    organization_id: int,
    plan_id: int,
) -> Optional[CommissionPlan]:
    result = await db.execute(
        _plan_query(organization_id).where(CommissionPlan.id == plan_id)
    )
    return result.scalar_one_or_none()


def transaction_client(transaction: SalesTransaction) -> Optional[Client]:
    """Direct client of the transaction, else the client of its project."""
    if transaction.client is not None:
        return transaction.client
    if transaction.project is not None:
        return transaction.project.client
    return None


async def resolve_plan(
    db: AsyncSession,
    organization_id: int,
    transaction: SalesTransaction,
    plan_id: Optional[int] = None,
) -> Optional[CommissionPlan]:
    """
    Choose the plan a transaction is calculated against.

    Order: the explicit plan, the project's active plan, an active plan on
    one of the client's projects, the organization-wide active plan.

    Raises:
        ResourceNotFound: an explicit plan id is not in the organization
    """
    if plan_id is not None:
        plan = await load_plan_with_rules(db, organization_id, plan_id)
        if plan is None:
            raise ResourceNotFound("Commission plan", plan_id)
        return plan

    active = _plan_query(organization_id).where(CommissionPlan.is_active.is_(True))

    if transaction.project_id is not None:
        plan = await db.scalar(
            active.where(CommissionPlan.project_id == transaction.project_id)
            .order_by(CommissionPlan.id)
            .limit(1)
        )
        if plan:
            return plan

    client = transaction_client(transaction)
    if client is not None:
        plan = await db.scalar(
            active.join(Project, CommissionPlan.project_id == Project.id)
            .where(Project.client_id == client.id)
            .order_by(CommissionPlan.id)
            .limit(1)
        )
        if plan:
            return plan

    return await db.scalar(
        active.where(CommissionPlan.project_id.is_(None))
        .order_by(CommissionPlan.id)
        .limit(1)
    )


def build_calculation_context(
    transaction: SalesTransaction,
    plan: CommissionPlan,
    net_amount: Decimal,
) -> CalculationContext:
    """Snapshot the transaction and plan into plain calculator input."""
    client = transaction_client(transaction)
    territory = client.territory if client is not None else None
    project = transaction.project
    category = transaction.product_category
    user = transaction.user

    names = {}
    if client is not None:
        names["client"] = client.name
    if project is not None:
        names["project"] = project.name
    if territory is not None:
        names["territory"] = territory.name
    if category is not None:
        names["product_category"] = category.name

    salesperson = None
    if user is not None:
        salesperson = SalespersonSnapshot(id=user.id, name=user.display_name, email=user.email)

    return CalculationContext(
        gross_amount=to_decimal(transaction.amount),
        net_amount=net_amount,
        rules=tuple(RuleDefinition.from_object(rule) for rule in plan.rules),
        return_ids=tuple(sorted(ret.id for ret in transaction.returns)),
        transaction_id=transaction.id,
        transaction_type=transaction.transaction_type,
        transaction_date=transaction.transaction_date,
        invoice_number=transaction.invoice_number,
        client_id=client.id if client is not None else None,
        customer_tier=client.tier if client is not None else None,
        project_id=transaction.project_id,
        product_category_id=transaction.product_category_id,
        territory_id=territory.id if territory is not None else None,
        commission_basis=plan.commission_basis,
        base_rate=to_decimal(plan.base_rate),
        plan=PlanSnapshot(
            id=plan.id,
            name=plan.name,
            commission_basis=plan.commission_basis.value,
            base_rate=to_decimal(plan.base_rate),
        ),
        salesperson=salesperson,
        names=names,
        currency_precision=settings.currency_precision,
    )


async def _run_calculator(
    db: AsyncSession,
    ctx: RequestContext,
    transaction: SalesTransaction,
    plan_id: Optional[int],
) -> tuple[CommissionPlan, CommissionResult]:
    if transaction.transaction_type != TransactionType.SALE:
        raise TransactionNotCalculable(
            f"Transaction {transaction.id} is a {transaction.transaction_type.value}; "
            "only SALE transactions earn commission"
        )

    plan = await resolve_plan(db, ctx.organization_id, transaction, plan_id)
    if plan is None:
        raise NoMatchingRule(transaction.id, reason="no active commission plan applies")

    net_amount = await load_net_sales_amount(db, transaction.id, ctx.organization_id)
    context = build_calculation_context(transaction, plan, net_amount)
    return plan, calculate_commission(context)


# ── Operations ────────────────────────────────────────────


async def calculate_for_transaction(
    db: AsyncSession,
    ctx: RequestContext,
    transaction_id: int,
    plan_id: Optional[int] = None,
) -> CommissionCalculation:
    """
    Calculate and persist the commission of a SALE transaction.

    At most one calculation exists per transaction.

    Raises:
        ResourceNotFound: transaction (or explicit plan) not in the organization
        TransactionNotCalculable: not a SALE
        CalculationAlreadyExists: a calculation row already exists
        NoMatchingRule: no plan or no rule covers the transaction
        NetAmountUnavailable: returns could not be loaded
    """
    transaction = await load_transaction(db, ctx.organization_id, transaction_id)
    if transaction is None:
        raise ResourceNotFound("Sales transaction", transaction_id)

    if transaction.calculation is not None:
        raise CalculationAlreadyExists(transaction.id, transaction.calculation.id)

    plan, result = await _run_calculator(db, ctx, transaction, plan_id)

    calculation = CommissionCalculation(
        organization_id=ctx.organization_id,
        sales_transaction=transaction,
        user_id=transaction.user_id,
        commission_plan_id=plan.id,
        status=result.status,
        amount=result.amount,
        trace=result.metadata,
        calculated_at=utc_now(),
    )
    db.add(calculation)
    try:
        await db.flush()
    except IntegrityError as e:
        # Concurrent calculation won the unique constraint
        raise CalculationAlreadyExists(transaction.id) from e

    await log_action(
        db, ctx, AuditAction.CALCULATE_COMMISSION,
        target_type="calculation", target_id=calculation.id,
        action_metadata={
            "transaction_id": transaction.id,
            "plan_id": plan.id,
            "rule_id": result.selected_rule_id,
            "amount": str(result.amount),
        },
    )

    logger.info(
        f"Commission {result.amount} calculated for transaction {transaction.id} "
        f"(plan {plan.id}, rule {result.selected_rule_id})"
    )
    return calculation


async def recalculate_transaction(
    db: AsyncSession,
    ctx: RequestContext,
    transaction_id: int,
    plan_id: Optional[int] = None,
) -> CommissionCalculation:
    """
    Re-run the calculator for a transaction.

    An uncalculated transaction is calculated for the first time. A
    CALCULATED row gets a fresh trace that records the amount and rule it
    replaced. Approved, paid and rejected calculations are never touched.

    Raises:
        InvalidStatusTransition: the calculation is past CALCULATED
    """
    transaction = await load_transaction(db, ctx.organization_id, transaction_id)
    if transaction is None:
        raise ResourceNotFound("Sales transaction", transaction_id)

    calculation = transaction.calculation
    if calculation is None:
        return await calculate_for_transaction(db, ctx, transaction_id, plan_id)

    if calculation.status != CalculationStatus.CALCULATED:
        raise InvalidStatusTransition(
            calculation.id,
            calculation.status.value,
            CalculationStatus.CALCULATED.value,
        )

    plan, result = await _run_calculator(
        db, ctx, transaction, plan_id or calculation.commission_plan_id
    )

    previous = calculation.trace or {}
    note = RecalculationNote(
        previous_amount=calculation.amount,
        previous_selected_rule_id=(previous.get("output") or {}).get("selected_rule_id"),
        previous_engine_version=previous.get("engine_version"),
        previous_calculated_at=calculation.calculated_at,
    )
    trace: CommissionTrace = result.trace.model_copy(update={"recalculation": note})

    previous_amount = calculation.amount
    calculation.amount = result.amount
    calculation.commission_plan_id = plan.id
    calculation.trace = trace.to_metadata()
    calculation.calculated_at = utc_now()

    # A NET_SALES amount already reflects its returns
    if plan.commission_basis == CommissionBasis.NET_SALES:
        netted = set(trace.input_snapshot.return_ids)
        for adjustment in list(calculation.adjustments):
            if adjustment.type == AdjustmentType.RETURN and adjustment.related_transaction_id in netted:
                calculation.adjustments.remove(adjustment)
                logger.info(
                    f"Return adjustment {adjustment.id} dropped from calculation {calculation.id}: "
                    f"return {adjustment.related_transaction_id} is now in the net basis"
                )
    await db.flush()

    await log_action(
        db, ctx, AuditAction.RECALCULATE_COMMISSION,
        target_type="calculation", target_id=calculation.id,
        action_metadata={
            "transaction_id": transaction.id,
            "previous_amount": str(previous_amount),
            "amount": str(result.amount),
        },
    )

    logger.info(
        f"Commission for transaction {transaction.id} recalculated: "
        f"{previous_amount} -> {result.amount}"
    )
    return calculation


async def run_bulk(
    db: AsyncSession,
    ids: Sequence[int],
    operation,
) -> BulkResult:
    """Apply `operation` to each id in its own transaction."""
    result = BulkResult()
    for item_id in ids:
        try:
            calculation = await operation(item_id)
            item = BulkItemResult.ok(item_id, calculation)
            await db.commit()
        except CommissionEngineError as e:
            await db.rollback()
            logger.warning(f"Bulk item {item_id} skipped: {e.message}")
            item = BulkItemResult.failed(item_id, e)
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"Bulk item {item_id} failed: {e}")
            item = BulkItemResult(id=item_id, success=False, error="database_error", detail=str(e))
        result.items.append(item)

    logger.info(f"Bulk run finished: {result.succeeded} succeeded, {result.failed} failed")
    return result


async def bulk_recalculate(
    db: AsyncSession,
    ctx: RequestContext,
    transaction_ids: Sequence[int],
) -> BulkResult:
    """Recalculate each transaction independently; one failure never blocks the rest."""

    async def recalculate(transaction_id: int) -> CommissionCalculation:
        return await recalculate_transaction(db, ctx, transaction_id)

    return await run_bulk(db, transaction_ids, recalculate)


async def find_uncalculated_transactions(
    db: AsyncSession,
    organization_id: int,
    limit: int = 100,
) -> list[int]:
    """
    Ids of SALE transactions that have no calculation yet.

    Never-attempted transactions come first, then the ones whose last
    sweep attempt is oldest, so transactions that keep failing do not
    starve the rest of the backlog.
    """
    result = await db.execute(
        select(SalesTransaction.id)
        .outerjoin(
            CommissionCalculation,
            CommissionCalculation.sales_transaction_id == SalesTransaction.id,
        )
        .where(
            SalesTransaction.organization_id == organization_id,
            SalesTransaction.transaction_type == TransactionType.SALE,
            CommissionCalculation.id.is_(None),
        )
        .order_by(
            SalesTransaction.calculation_attempted_at.asc().nulls_first(),
            SalesTransaction.id,
        )
        .limit(limit)
    )
    return list(result.scalars().all())


async def recalculate_missing(
    db: AsyncSession,
    ctx: RequestContext,
    limit: int = 100,
) -> BulkResult:
    """Calculate SALE transactions that are still PENDING."""
    transaction_ids = await find_uncalculated_transactions(db, ctx.organization_id, limit)
    if not transaction_ids:
        return BulkResult()

    # Stamped before the run; failed items roll back only their own work
    await db.execute(
        update(SalesTransaction)
        .where(SalesTransaction.id.in_(transaction_ids))
        .values(calculation_attempted_at=utc_now())
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    async def calculate(transaction_id: int) -> CommissionCalculation:
        return await calculate_for_transaction(db, ctx, transaction_id)

    return await run_bulk(db, transaction_ids, calculate)
