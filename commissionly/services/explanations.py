"""
Human-readable explanation of a stored commission calculation.

Explanations are built from the persisted trace and never re-run the
calculator, so they describe the rules as they were when the amount was
computed even if the plan has changed since.
"""

from sqlalchemy.ext.asyncio import AsyncSession

from commissionly.auth.context import RequestContext
from commissionly.schemas.commission import (
    ExplanationAdjustment,
    ExplanationAdminDetails,
    ExplanationCalculation,
    ExplanationResponse,
    ExplanationRule,
    ExplanationSummary,
    ExplanationTransaction,
)
from commissionly.services.adjustments import net_commission
from commissionly.services.commission_trace import CommissionTrace
from commissionly.services.errors import PermissionDenied, ResourceNotFound
from commissionly.services.payouts import load_calculation


def _applied_rule(trace: CommissionTrace) -> ExplanationRule:
    detail = trace.calculation
    selected = next(
        (entry for entry in trace.rule_trace if entry.outcome == "selected"),
        None,
    )
    return ExplanationRule(
        rule_id=detail.rule_id,
        description=selected.description if selected else detail.formula,
        rule_type=detail.rule_type,
        rate=detail.rate if detail.rate is not None else detail.tier_percentage,
        flat_amount=detail.flat_amount,
        calculation=ExplanationCalculation(
            basis=detail.basis,
            basis_amount=detail.basis_amount,
            formula=detail.formula,
            raw_amount=detail.raw_amount,
            clamp=detail.clamp,
            final_amount=detail.final_amount,
        ),
    )


async def explain_calculation(
    db: AsyncSession,
    ctx: RequestContext,
    calculation_id: int,
) -> ExplanationResponse:
    """
    Explain a calculation to the caller.

    Admins and managers also get the full rule trace, the input snapshot and
    any warnings. Salespeople may only explain their own calculations.

    Raises:
        PermissionDenied: a salesperson asking about someone else's commission
    """
    calculation = await load_calculation(db, ctx.organization_id, calculation_id)
    if calculation is None:
        raise ResourceNotFound("Commission calculation", calculation_id)
    if not ctx.can_manage and calculation.user_id != ctx.user_id:
        raise PermissionDenied("You can only view explanations of your own commissions")

    trace = CommissionTrace.from_metadata(calculation.trace)
    snapshot = trace.input_snapshot
    net = net_commission(calculation)

    response = ExplanationResponse(
        calculation_id=calculation.id,
        summary=ExplanationSummary(
            commission_amount=calculation.amount,
            effective_rate=trace.output.effective_rate,
            sale_amount=snapshot.gross_amount,
            plan_name=trace.plan.name,
            calculated_at=calculation.calculated_at,
            status=calculation.status,
        ),
        transaction=ExplanationTransaction(
            id=snapshot.transaction_id,
            amount=snapshot.gross_amount,
            date=snapshot.transaction_date,
            invoice_number=snapshot.invoice_number,
            client_name=snapshot.client_name,
            project_name=snapshot.project_name,
        ),
        applied_rule=_applied_rule(trace),
        adjustments=[
            ExplanationAdjustment(
                type=adjustment.type,
                amount=adjustment.amount,
                reason=adjustment.reason,
                applied_at=adjustment.created_at,
            )
            for adjustment in calculation.adjustments
        ],
        net_amount=net.net_amount,
    )

    if ctx.can_manage:
        response.admin_details = ExplanationAdminDetails(
            engine_version=trace.engine_version,
            schema_version=trace.schema_version,
            plan=trace.plan.model_dump(mode="json"),
            input_snapshot=snapshot.model_dump(mode="json"),
            rule_trace=[entry.model_dump(mode="json") for entry in trace.rule_trace],
            warnings=[warning.model_dump(mode="json") for warning in trace.warnings],
            recalculation=(
                trace.recalculation.model_dump(mode="json") if trace.recalculation else None
            ),
        )

    return response
