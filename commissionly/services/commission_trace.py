"""
Versioned schema of the commission rule trace.

The trace is stored as JSON on CommissionCalculation and is the only audit
record of a calculation, so it is a closed set of entry kinds rather than an
open dict. Bump TRACE_SCHEMA_VERSION on any incompatible change and
ENGINE_VERSION whenever calculation semantics change.
"""

from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict

TRACE_SCHEMA_VERSION = 1
ENGINE_VERSION = "2.0.0"

RuleOutcome = Literal[
    "selected",
    "outranked",
    "scope_mismatch",
    "amount_out_of_range",
    "inactive",
]

ConditionValue = Optional[Union[int, str]]


class TraceModel(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class ConditionCheck(TraceModel):
    """One comparison made while matching a rule against the transaction."""

    field: str
    operator: Literal["equals", "gte", "lte"]
    expected: ConditionValue
    actual: ConditionValue
    passed: bool


class RuleEvaluation(TraceModel):
    kind: Literal["rule_evaluation"] = "rule_evaluation"
    rule_id: Optional[int]
    rule_type: str
    priority: int
    scope: dict[str, Union[int, str]]
    description: str
    conditions: list[ConditionCheck]
    outcome: RuleOutcome
    reason: str


class TierBand(TraceModel):
    lower_bound: Decimal
    upper_bound: Optional[Decimal]
    amount_in_band: Decimal
    rate: Decimal
    commission: Decimal


class CalculationDetail(TraceModel):
    """Arithmetic applied by the selected rule, enough to redo it by hand."""

    kind: Literal["calculation"] = "calculation"
    rule_id: Optional[int]
    rule_type: str
    basis: str
    basis_amount: Decimal
    formula: str
    rate: Optional[Decimal] = None
    flat_amount: Optional[Decimal] = None
    tier_threshold: Optional[Decimal] = None
    tier_percentage: Optional[Decimal] = None
    base_rate: Optional[Decimal] = None
    bands: list[TierBand] = []
    raw_amount: Decimal
    min_cap: Optional[Decimal] = None
    max_cap: Optional[Decimal] = None
    clamped_amount: Decimal
    clamp: Literal["none", "min", "max"]
    rounding: Literal["ROUND_HALF_UP"] = "ROUND_HALF_UP"
    precision: int
    final_amount: Decimal


class TraceWarning(TraceModel):
    kind: Literal["warning"] = "warning"
    code: Literal["AMBIGUOUS_PRIORITY"]
    message: str
    rule_ids: list[Optional[int]]


class PlanSnapshot(TraceModel):
    id: Optional[int] = None
    name: Optional[str] = None
    commission_basis: str
    base_rate: Optional[Decimal] = None


class SalespersonSnapshot(TraceModel):
    id: int
    name: str
    email: Optional[str] = None


class InputSnapshot(TraceModel):
    """Transaction values frozen at calculation time."""

    transaction_id: Optional[int]
    transaction_type: str
    transaction_date: Optional[datetime]
    gross_amount: Decimal
    net_amount: Decimal
    basis: str
    basis_amount: Decimal
    return_ids: tuple[int, ...] = ()
    invoice_number: Optional[str] = None
    client_id: Optional[int] = None
    client_name: Optional[str] = None
    customer_tier: Optional[str] = None
    project_id: Optional[int] = None
    project_name: Optional[str] = None
    territory_id: Optional[int] = None
    territory_name: Optional[str] = None
    product_category_id: Optional[int] = None
    product_category_name: Optional[str] = None
    salesperson: Optional[SalespersonSnapshot] = None


class CalculationOutput(TraceModel):
    selected_rule_id: Optional[int]
    commission_amount: Decimal
    effective_rate: Decimal


class RecalculationNote(TraceModel):
    """Summary of the trace a recalculation replaced."""

    previous_amount: Decimal
    previous_selected_rule_id: Optional[int] = None
    previous_engine_version: Optional[str] = None
    previous_calculated_at: Optional[datetime] = None


class CommissionTrace(TraceModel):
    schema_version: Literal[1] = TRACE_SCHEMA_VERSION
    engine_version: str = ENGINE_VERSION
    plan: PlanSnapshot
    input_snapshot: InputSnapshot
    rule_trace: list[RuleEvaluation]
    calculation: CalculationDetail
    warnings: list[TraceWarning] = []
    output: CalculationOutput
    recalculation: Optional[RecalculationNote] = None

    def to_metadata(self) -> dict:
        """JSON-safe dict for the calculation's metadata column."""
        return self.model_dump(mode="json")

    @classmethod
    def from_metadata(cls, metadata: dict) -> "CommissionTrace":
        return cls.model_validate(metadata)
