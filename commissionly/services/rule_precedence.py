"""
Rule precedence: priority assignment, value validation and conflict detection.

Priority is derived from a rule's scope and persisted on the rule, so picking
a winner at calculation time is a plain integer comparison:

    priority = populated_dimensions * 100 + sum(DIMENSION_WEIGHTS[dim])

More populated dimensions always win. Rules with the same number of
populated dimensions are ordered by field precedence

    project > client > territory > product_category > customer_tier

compared lexicographically from the highest-precedence field down. The
organization-wide default (no dimension populated) gets priority 0.
"""

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterable, Optional, Sequence

from commissionly.models.client import CustomerTier
from commissionly.models.commission_plan import RuleType
from commissionly.services.errors import (
    ConflictingRule,
    InvalidRuleConfiguration,
    RuleValidationError,
)

# Scope dimensions in tie-break precedence order, highest first
SCOPE_DIMENSIONS = (
    "project_id",
    "client_id",
    "territory_id",
    "product_category_id",
    "customer_tier",
)

DIMENSION_WEIGHTS = {
    "project_id": 16,
    "client_id": 8,
    "territory_id": 4,
    "product_category_id": 2,
    "customer_tier": 1,
}

# Must exceed sum(DIMENSION_WEIGHTS.values())
DIMENSION_STEP = 100
DEFAULT_PRIORITY = 0

ZERO = Decimal("0")
HUNDRED = Decimal("100")

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def to_decimal(value: Any) -> Optional[Decimal]:
    """Coerce DB/JSON numerics to Decimal without going through binary floats."""
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


@dataclass(frozen=True)
class RuleScope:
    """Optional scope dimensions of a rule. All unset = organization-wide default."""

    project_id: Optional[int] = None
    client_id: Optional[int] = None
    territory_id: Optional[int] = None
    product_category_id: Optional[int] = None
    customer_tier: Optional[CustomerTier] = None

    @classmethod
    def from_object(cls, obj: Any) -> "RuleScope":
        tier = getattr(obj, "customer_tier", None)
        return cls(
            project_id=getattr(obj, "project_id", None),
            client_id=getattr(obj, "client_id", None),
            territory_id=getattr(obj, "territory_id", None),
            product_category_id=getattr(obj, "product_category_id", None),
            customer_tier=CustomerTier(tier) if tier is not None else None,
        )

    def populated(self) -> tuple[str, ...]:
        return tuple(dim for dim in SCOPE_DIMENSIONS if getattr(self, dim) is not None)

    @property
    def is_default(self) -> bool:
        return not self.populated()

    def signature(self) -> tuple:
        return tuple(
            (dim, _plain(getattr(self, dim))) for dim in SCOPE_DIMENSIONS
        )

    def as_dict(self) -> dict[str, Any]:
        return {dim: _plain(getattr(self, dim)) for dim in self.populated()}

    def describe(self) -> str:
        if self.is_default:
            return "organization-wide default"
        return ", ".join(f"{dim}={value}" for dim, value in self.as_dict().items())


def _plain(value: Any) -> Any:
    if isinstance(value, CustomerTier):
        return value.value
    return value


@dataclass(frozen=True)
class RuleDefinition:
    """
    Engine-side view of a commission rule.

    Built from ORM rows (or request payloads) so the engine never touches the
    session and never triggers lazy loads.
    """

    rule_type: RuleType
    scope: RuleScope = RuleScope()
    id: Optional[int] = None
    description: Optional[str] = None
    percentage: Optional[Decimal] = None
    flat_amount: Optional[Decimal] = None
    tier_threshold: Optional[Decimal] = None
    tier_percentage: Optional[Decimal] = None
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None
    min_sale_amount: Optional[Decimal] = None
    max_sale_amount: Optional[Decimal] = None
    priority: int = DEFAULT_PRIORITY
    is_active: bool = True
    created_at: Optional[datetime] = None

    @classmethod
    def from_object(cls, obj: Any) -> "RuleDefinition":
        return cls(
            id=getattr(obj, "id", None),
            rule_type=RuleType(obj.rule_type),
            scope=RuleScope.from_object(obj),
            description=getattr(obj, "description", None),
            percentage=to_decimal(getattr(obj, "percentage", None)),
            flat_amount=to_decimal(getattr(obj, "flat_amount", None)),
            tier_threshold=to_decimal(getattr(obj, "tier_threshold", None)),
            tier_percentage=to_decimal(getattr(obj, "tier_percentage", None)),
            min_amount=to_decimal(getattr(obj, "min_amount", None)),
            max_amount=to_decimal(getattr(obj, "max_amount", None)),
            min_sale_amount=to_decimal(getattr(obj, "min_sale_amount", None)),
            max_sale_amount=to_decimal(getattr(obj, "max_sale_amount", None)),
            priority=getattr(obj, "priority", None) or DEFAULT_PRIORITY,
            is_active=getattr(obj, "is_active", True) is not False,
            created_at=getattr(obj, "created_at", None),
        )

    def with_derived_priority(self) -> "RuleDefinition":
        return replace(self, priority=assign_priority_from_scope(self.scope))


@dataclass(frozen=True)
class RuleConflict:
    """Active rules that cannot coexist: same scope, same type, overlapping sale band."""

    scope: RuleScope
    rule_type: RuleType
    rule_ids: tuple[Optional[int], ...]

    def describe(self) -> str:
        ids = ", ".join(str(rule_id) for rule_id in self.rule_ids)
        return f"{self.rule_type.value} rules {ids} share scope '{self.scope.describe()}'"


# ── Priority ──────────────────────────────────────────────


def assign_priority_from_scope(scope: RuleScope) -> int:
    """
    Compute the persisted priority of a rule from its scope.

    Must be called on every rule create and every scope edit; the value is
    never accepted from callers.
    """
    populated = scope.populated()
    return len(populated) * DIMENSION_STEP + sum(DIMENSION_WEIGHTS[dim] for dim in populated)


def precedence_key(rule: RuleDefinition) -> tuple:
    """Sort key, ascending: lowest priority, oldest, lowest id first."""
    created_at = rule.created_at or _EPOCH
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    return (rule.priority, created_at, rule.id or 0)


def sort_by_precedence(rules: Iterable[RuleDefinition]) -> list[RuleDefinition]:
    """Highest priority first; among equal priority the most recently created first."""
    return sorted(rules, key=precedence_key, reverse=True)


# ── Validation ────────────────────────────────────────────


def _check_percentage(errors: list, field: str, value: Optional[Decimal], required: bool) -> None:
    if value is None:
        if required:
            errors.append(RuleValidationError(field, "is required for this rule type"))
        return
    if value < ZERO or value > HUNDRED:
        errors.append(RuleValidationError(field, "must be between 0 and 100"))


def _check_range(
    errors: list,
    low_field: str,
    low: Optional[Decimal],
    high_field: str,
    high: Optional[Decimal],
    label: str,
) -> None:
    if low is not None and low < ZERO:
        errors.append(RuleValidationError(low_field, "must not be negative"))
    if high is not None and high < ZERO:
        errors.append(RuleValidationError(high_field, "must not be negative"))
    if low is not None and high is not None and high <= low:
        errors.append(RuleValidationError(high_field, f"maximum {label} must be greater than minimum {label}"))


def validate_rule_values(rule: RuleDefinition) -> None:
    """Raise InvalidRuleConfiguration if the rule's values break its type's bounds."""
    errors: list[RuleValidationError] = []

    if rule.rule_type == RuleType.PERCENTAGE:
        _check_percentage(errors, "percentage", rule.percentage, required=True)

    elif rule.rule_type == RuleType.FLAT_AMOUNT:
        if rule.flat_amount is None:
            errors.append(RuleValidationError("flat_amount", "is required for this rule type"))
        elif rule.flat_amount < ZERO:
            errors.append(RuleValidationError("flat_amount", "must not be negative"))

    elif rule.rule_type == RuleType.TIERED:
        if rule.tier_threshold is None:
            errors.append(RuleValidationError("tier_threshold", "is required for this rule type"))
        elif rule.tier_threshold < ZERO:
            errors.append(RuleValidationError("tier_threshold", "must not be negative"))
        _check_percentage(errors, "tier_percentage", rule.tier_percentage, required=True)
        # Base rate below the threshold; falls back to the plan's base rate
        _check_percentage(errors, "percentage", rule.percentage, required=False)

    _check_range(errors, "min_amount", rule.min_amount, "max_amount", rule.max_amount, "commission")
    _check_range(
        errors,
        "min_sale_amount",
        rule.min_sale_amount,
        "max_sale_amount",
        rule.max_sale_amount,
        "sale amount",
    )

    if errors:
        raise InvalidRuleConfiguration(errors)


def _bands_overlap(a: RuleDefinition, b: RuleDefinition) -> bool:
    # Sale bands are inclusive on both ends; None is unbounded
    if a.max_sale_amount is not None and b.min_sale_amount is not None:
        if b.min_sale_amount > a.max_sale_amount:
            return False
    if b.max_sale_amount is not None and a.min_sale_amount is not None:
        if a.min_sale_amount > b.max_sale_amount:
            return False
    return True


def _collides(candidate: RuleDefinition, existing: RuleDefinition) -> bool:
    return (
        existing.is_active
        and existing.rule_type == candidate.rule_type
        and existing.scope.signature() == candidate.scope.signature()
        and _bands_overlap(candidate, existing)
    )


def validate_scoped_rule(
    candidate: RuleDefinition,
    existing_rules: Sequence[RuleDefinition],
) -> None:
    """
    Pre-persistence check for a new or edited rule.

    Args:
        candidate: The rule as it would be stored
        existing_rules: Other rules of the same plan (the candidate itself,
            when editing, is skipped by id)

    Raises:
        InvalidRuleConfiguration: value bounds violated
        ConflictingRule: an active rule has the identical scope and type
    """
    validate_rule_values(candidate)

    if not candidate.is_active:
        return

    conflicting = [
        existing.id
        for existing in existing_rules
        if not (candidate.id is not None and existing.id == candidate.id)
        and _collides(candidate, existing)
    ]
    if conflicting:
        raise ConflictingRule(
            conflicting,
            scope_description=candidate.scope.describe(),
            rule_type=candidate.rule_type.value,
        )


def detect_rule_conflicts(rules: Sequence[RuleDefinition]) -> list[RuleConflict]:
    """
    Find groups of active rules that make selection ambiguous.

    Rules are grouped by scope signature and type; inside a group, rules whose
    sale bands overlap (transitively) form one conflict.
    """
    groups: dict[tuple, list[RuleDefinition]] = {}
    for rule in rules:
        if not rule.is_active:
            continue
        groups.setdefault((rule.scope.signature(), rule.rule_type), []).append(rule)

    conflicts: list[RuleConflict] = []
    for group in groups.values():
        if len(group) < 2:
            continue

        ordered = sorted(
            group,
            key=lambda r: (
                r.min_sale_amount is not None,
                r.min_sale_amount or ZERO,
                r.id or 0,
            ),
        )
        cluster = [ordered[0]]
        cluster_high = ordered[0].max_sale_amount
        for rule in ordered[1:]:
            low = rule.min_sale_amount
            overlaps = cluster_high is None or low is None or low <= cluster_high
            if overlaps:
                cluster.append(rule)
                if cluster_high is not None:
                    cluster_high = None if rule.max_sale_amount is None else max(cluster_high, rule.max_sale_amount)
            else:
                if len(cluster) > 1:
                    conflicts.append(_to_conflict(cluster))
                cluster = [rule]
                cluster_high = rule.max_sale_amount
        if len(cluster) > 1:
            conflicts.append(_to_conflict(cluster))

    return conflicts


def _to_conflict(cluster: list[RuleDefinition]) -> RuleConflict:
    first = cluster[0]
    return RuleConflict(
        scope=first.scope,
        rule_type=first.rule_type,
        rule_ids=tuple(sorted(rule.id or 0 for rule in cluster)),
    )
