"""
Commission calculator.

Selects the single highest-priority rule matching a sales transaction,
applies its formula to the basis amount, clamps to the rule's caps, rounds
half-up to the currency's minor unit and records a trace of the decision.

Everything here is pure: inputs arrive as explicit values, nothing is read
from the database or the request, and identical inputs produce identical
amounts and traces.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Sequence

from commissionly.models.commission_calculation import CalculationStatus
from commissionly.models.client import CustomerTier
from commissionly.models.commission_plan import CommissionBasis, RuleType
from commissionly.models.sales_transaction import TransactionType
from commissionly.services.commission_trace import (
    CalculationDetail,
    CalculationOutput,
    CommissionTrace,
    ConditionCheck,
    InputSnapshot,
    PlanSnapshot,
    RuleEvaluation,
    SalespersonSnapshot,
    TierBand,
    TraceWarning,
)
from commissionly.services.errors import NoMatchingRule
from commissionly.services.rule_precedence import (
    RuleDefinition,
    RuleScope,
    sort_by_precedence,
    to_decimal,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
HUNDRED = Decimal("100")
RATE_QUANTUM = Decimal("0.0001")
DEFAULT_PRECISION = 2


def quantize_money(amount: Decimal, precision: int = DEFAULT_PRECISION) -> Decimal:
    """Round half-up to `precision` decimal places (33.335 -> 33.34)."""
    return amount.quantize(Decimal(1).scaleb(-precision), rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class CalculationContext:
    """
    Everything the calculator needs about one transaction and one plan.

    Scope values are the transaction's actual values; territory_id is derived
    by the caller from the project's client or the direct client.
    """

    gross_amount: Decimal
    net_amount: Decimal
    rules: tuple[RuleDefinition, ...] = ()
    transaction_id: Optional[int] = None
    transaction_type: TransactionType = TransactionType.SALE
    transaction_date: Optional[datetime] = None
    invoice_number: Optional[str] = None
    client_id: Optional[int] = None
    customer_tier: Optional[CustomerTier] = None
    project_id: Optional[int] = None
    product_category_id: Optional[int] = None
    territory_id: Optional[int] = None
    return_ids: tuple[int, ...] = ()
    commission_basis: CommissionBasis = CommissionBasis.GROSS_REVENUE
    base_rate: Optional[Decimal] = None
    plan: Optional[PlanSnapshot] = None
    salesperson: Optional[SalespersonSnapshot] = None
    names: dict = field(default_factory=dict, hash=False, compare=False)
    currency_precision: int = DEFAULT_PRECISION

    @property
    def basis_amount(self) -> Decimal:
        if self.commission_basis == CommissionBasis.NET_SALES:
            return self.net_amount
        return self.gross_amount

    def scope_value(self, dimension: str):
        value = getattr(self, dimension)
        if isinstance(value, CustomerTier):
            return value.value
        return value


@dataclass(frozen=True)
class CommissionResult:
    """Calculator output handed to persistence."""

    amount: Decimal
    selected_rule_id: Optional[int]
    trace: CommissionTrace
    status: CalculationStatus = CalculationStatus.CALCULATED

    @property
    def metadata(self) -> dict:
        return self.trace.to_metadata()

    @property
    def has_warnings(self) -> bool:
        return bool(self.trace.warnings)


# ── Matching ──────────────────────────────────────────────


def _as_condition_value(value):
    if value is None or isinstance(value, int):
        return value
    return str(value)


def _evaluate_conditions(
    rule: RuleDefinition,
    context: CalculationContext,
) -> tuple[list[ConditionCheck], list[ConditionCheck]]:
    """Return (scope checks, sale amount checks) for a rule."""
    scope_checks = []
    for dimension, expected in rule.scope.as_dict().items():
        actual = context.scope_value(dimension)
        scope_checks.append(
            ConditionCheck(
                field=dimension,
                operator="equals",
                expected=_as_condition_value(expected),
                actual=_as_condition_value(actual),
                passed=actual is not None and actual == expected,
            )
        )

    basis_amount = context.basis_amount
    amount_checks = []
    if rule.min_sale_amount is not None:
        amount_checks.append(
            ConditionCheck(
                field="sale_amount",
                operator="gte",
                expected=str(rule.min_sale_amount),
                actual=str(basis_amount),
                passed=basis_amount >= rule.min_sale_amount,
            )
        )
    if rule.max_sale_amount is not None:
        amount_checks.append(
            ConditionCheck(
                field="sale_amount",
                operator="lte",
                expected=str(rule.max_sale_amount),
                actual=str(basis_amount),
                passed=basis_amount <= rule.max_sale_amount,
            )
        )

    return scope_checks, amount_checks


def rule_matches(rule: RuleDefinition, context: CalculationContext) -> bool:
    """True if every populated scope dimension and the sale band match the transaction."""
    if not rule.is_active:
        return False
    scope_checks, amount_checks = _evaluate_conditions(rule, context)
    return all(check.passed for check in scope_checks + amount_checks)


# ── Formula ───────────────────────────────────────────────


def apply_rule(
    rule: RuleDefinition,
    basis_amount: Decimal,
    *,
    basis: CommissionBasis = CommissionBasis.GROSS_REVENUE,
    base_rate: Optional[Decimal] = None,
    precision: int = DEFAULT_PRECISION,
) -> CalculationDetail:
    """
    Apply a rule's formula, caps and rounding to a basis amount.

    TIERED rules are marginal over two bands: the part up to the threshold
    earns the base rate (the rule's own percentage, else the plan's base
    rate, else zero), the part above earns tier_percentage.
    """
    rate = flat_amount = tier_threshold = tier_percentage = band_base_rate = None
    bands: list[TierBand] = []

    if rule.rule_type == RuleType.PERCENTAGE:
        rate = rule.percentage or ZERO
        raw_amount = basis_amount * rate / HUNDRED
        formula = f"{basis_amount} x {rate}%"

    elif rule.rule_type == RuleType.FLAT_AMOUNT:
        flat_amount = rule.flat_amount or ZERO
        raw_amount = flat_amount
        formula = f"flat {flat_amount}"

    elif rule.rule_type == RuleType.TIERED:
        tier_threshold = rule.tier_threshold or ZERO
        tier_percentage = rule.tier_percentage or ZERO
        if rule.percentage is not None:
            band_base_rate = rule.percentage
        else:
            band_base_rate = to_decimal(base_rate) or ZERO

        lower_part = min(basis_amount, tier_threshold)
        upper_part = max(basis_amount - tier_threshold, ZERO)
        lower_commission = lower_part * band_base_rate / HUNDRED
        upper_commission = upper_part * tier_percentage / HUNDRED
        bands = [
            TierBand(
                lower_bound=ZERO,
                upper_bound=tier_threshold,
                amount_in_band=lower_part,
                rate=band_base_rate,
                commission=lower_commission,
            ),
            TierBand(
                lower_bound=tier_threshold,
                upper_bound=None,
                amount_in_band=upper_part,
                rate=tier_percentage,
                commission=upper_commission,
            ),
        ]
        raw_amount = lower_commission + upper_commission
        formula = (
            f"{lower_part} x {band_base_rate}% + {upper_part} x {tier_percentage}%"
        )

    else:
        raise ValueError(f"Unsupported rule type: {rule.rule_type}")

    clamped_amount = raw_amount
    clamp = "none"
    if rule.min_amount is not None and clamped_amount < rule.min_amount:
        clamped_amount = rule.min_amount
        clamp = "min"
    if rule.max_amount is not None and clamped_amount > rule.max_amount:
        clamped_amount = rule.max_amount
        clamp = "max"

    return CalculationDetail(
        rule_id=rule.id,
        rule_type=rule.rule_type.value,
        basis=basis.value,
        basis_amount=basis_amount,
        formula=formula,
        rate=rate,
        flat_amount=flat_amount,
        tier_threshold=tier_threshold,
        tier_percentage=tier_percentage,
        base_rate=band_base_rate,
        bands=bands,
        raw_amount=raw_amount,
        min_cap=rule.min_amount,
        max_cap=rule.max_amount,
        clamped_amount=clamped_amount,
        clamp=clamp,
        precision=precision,
        final_amount=quantize_money(clamped_amount, precision),
    )


def describe_rule(rule: RuleDefinition) -> str:
    """Human-readable one-liner for traces and explanations."""
    if rule.rule_type == RuleType.PERCENTAGE:
        text = f"{rule.percentage}% of sale"
    elif rule.rule_type == RuleType.FLAT_AMOUNT:
        text = f"{rule.flat_amount} per sale"
    else:
        base = f"{rule.percentage}%" if rule.percentage is not None else "plan base rate"
        text = f"{base} up to {rule.tier_threshold}, {rule.tier_percentage}% above"

    if rule.min_sale_amount is not None and rule.max_sale_amount is not None:
        text += f" (sales {rule.min_sale_amount}-{rule.max_sale_amount})"
    elif rule.min_sale_amount is not None:
        text += f" (sales {rule.min_sale_amount}+)"
    elif rule.max_sale_amount is not None:
        text += f" (sales up to {rule.max_sale_amount})"

    return f"{text} [{rule.scope.describe()}]"


# ── Calculation ───────────────────────────────────────────


def _input_snapshot(context: CalculationContext) -> InputSnapshot:
    names = context.names
    return InputSnapshot(
        transaction_id=context.transaction_id,
        transaction_type=TransactionType(context.transaction_type).value,
        transaction_date=context.transaction_date,
        gross_amount=context.gross_amount,
        net_amount=context.net_amount,
        basis=context.commission_basis.value,
        basis_amount=context.basis_amount,
        return_ids=context.return_ids,
        invoice_number=context.invoice_number,
        client_id=context.client_id,
        client_name=names.get("client"),
        customer_tier=context.scope_value("customer_tier"),
        project_id=context.project_id,
        project_name=names.get("project"),
        territory_id=context.territory_id,
        territory_name=names.get("territory"),
        product_category_id=context.product_category_id,
        product_category_name=names.get("product_category"),
        salesperson=context.salesperson,
    )


def calculate_commission(context: CalculationContext) -> CommissionResult:
    """
    Pick the winning rule for a transaction and compute the commission.

    Rules are ranked by their stored priority. Two eligible rules with the
    same priority are a data-integrity gap: the most recently created one
    wins and the trace carries an AMBIGUOUS_PRIORITY warning.

    Raises:
        NoMatchingRule: no rule (including a default) matches
    """
    ordered = sort_by_precedence(context.rules)
    basis_amount = context.basis_amount

    evaluations: list[tuple[RuleDefinition, list[ConditionCheck], Optional[str]]] = []
    eligible: list[RuleDefinition] = []
    for rule in ordered:
        scope_checks, amount_checks = _evaluate_conditions(rule, context)
        if not rule.is_active:
            outcome = "inactive"
        elif not all(check.passed for check in scope_checks):
            outcome = "scope_mismatch"
        elif not all(check.passed for check in amount_checks):
            outcome = "amount_out_of_range"
        else:
            outcome = None
            eligible.append(rule)
        evaluations.append((rule, scope_checks + amount_checks, outcome))

    if not eligible:
        raise NoMatchingRule(
            context.transaction_id,
            reason=f"{len(ordered)} rule(s) evaluated, none matched",
        )

    selected = eligible[0]
    tied = [rule for rule in eligible[1:] if rule.priority == selected.priority]

    warnings: list[TraceWarning] = []
    if tied:
        tied_ids = [selected.id] + [rule.id for rule in tied]
        logger.warning(
            f"Ambiguous priority {selected.priority} for transaction "
            f"{context.transaction_id}: rules {tied_ids}; using rule {selected.id}"
        )
        warnings.append(
            TraceWarning(
                code="AMBIGUOUS_PRIORITY",
                message=(
                    f"{len(tied_ids)} matching rules share priority {selected.priority}; "
                    f"the most recently created rule {selected.id} was used"
                ),
                rule_ids=tied_ids,
            )
        )

    rule_trace = []
    for rule, conditions, outcome in evaluations:
        if outcome is None:
            if rule is selected:
                outcome = "selected"
                reason = f"highest priority matching rule ({rule.priority})"
            elif rule.priority == selected.priority:
                outcome = "outranked"
                reason = (
                    f"tied at priority {rule.priority} with rule {selected.id}, "
                    "which was created more recently"
                )
            else:
                outcome = "outranked"
                reason = f"outranked by rule {selected.id} (priority {selected.priority} > {rule.priority})"
        elif outcome == "inactive":
            reason = "rule is inactive"
        elif outcome == "scope_mismatch":
            failed = [check.field for check in conditions if not check.passed and check.field != "sale_amount"]
            reason = f"scope does not match transaction ({', '.join(failed)})"
        else:
            reason = f"sale amount {basis_amount} outside the rule's band"

        rule_trace.append(
            RuleEvaluation(
                rule_id=rule.id,
                rule_type=rule.rule_type.value,
                priority=rule.priority,
                scope=rule.scope.as_dict(),
                description=describe_rule(rule),
                conditions=conditions,
                outcome=outcome,
                reason=reason,
            )
        )

    detail = apply_rule(
        selected,
        basis_amount,
        basis=context.commission_basis,
        base_rate=context.base_rate,
        precision=context.currency_precision,
    )
    amount = detail.final_amount

    if basis_amount > ZERO:
        effective_rate = (amount / basis_amount * HUNDRED).quantize(RATE_QUANTUM, rounding=ROUND_HALF_UP)
    else:
        effective_rate = ZERO

    trace = CommissionTrace(
        plan=context.plan or PlanSnapshot(
            commission_basis=context.commission_basis.value,
            base_rate=context.base_rate,
        ),
        input_snapshot=_input_snapshot(context),
        rule_trace=rule_trace,
        calculation=detail,
        warnings=warnings,
        output=CalculationOutput(
            selected_rule_id=selected.id,
            commission_amount=amount,
            effective_rate=effective_rate,
        ),
    )

    return CommissionResult(
        amount=amount,
        selected_rule_id=selected.id,
        trace=trace,
    )


def calculate_commission_with_precedence(
    context: CalculationContext,
    all_scoped_rules: Sequence[RuleDefinition],
) -> CommissionResult:
    """
    Rank rules by priorities derived from their scopes, then calculate.

    Stored priorities are not trusted here; every rule's priority is
    recomputed with assign_priority_from_scope first.
    """
    ranked = tuple(rule.with_derived_priority() for rule in all_scoped_rules)
    return calculate_commission(replace(context, rules=ranked))


def preview_commission(
    amount: Decimal,
    rules: Sequence[RuleDefinition],
    *,
    scope: RuleScope = RuleScope(),
    commission_basis: CommissionBasis = CommissionBasis.GROSS_REVENUE,
    base_rate: Optional[Decimal] = None,
    plan: Optional[PlanSnapshot] = None,
    precision: int = DEFAULT_PRECISION,
) -> CommissionResult:
    """What-if calculation for an amount and scope values; nothing is persisted."""
    amount = to_decimal(amount)
    context = CalculationContext(
        gross_amount=amount,
        net_amount=amount,
        client_id=scope.client_id,
        customer_tier=scope.customer_tier,
        project_id=scope.project_id,
        product_category_id=scope.product_category_id,
        territory_id=scope.territory_id,
        commission_basis=commission_basis,
        base_rate=base_rate,
        plan=plan,
        currency_precision=precision,
    )
    return calculate_commission_with_precedence(context, rules)
