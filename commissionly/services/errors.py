"""
Typed failures of the commission engine and the services around it.

Each error carries a stable `code` and a `category` so the API layer can tell
"fix your rule configuration" apart from "no rule covers this case" and from
"system data integrity issue".
"""

from dataclasses import dataclass
from typing import Any, Optional, Sequence


class CommissionEngineError(Exception):
    """Base class for domain errors."""

    code = "commission_error"
    category = "system"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def extra(self) -> dict[str, Any]:
        return {}

    def to_dict(self) -> dict[str, Any]:
        payload = {
            "error": self.code,
            "category": self.category,
            "detail": self.message,
        }
        payload.update(self.extra())
        return payload


@dataclass(frozen=True)
class RuleValidationError:
    field: str
    message: str


class InvalidRuleConfiguration(CommissionEngineError):
    """A rule's declared values violate the bounds of its type."""

    code = "invalid_rule_configuration"
    category = "rule_configuration"
    status_code = 422

    def __init__(self, errors: Sequence[RuleValidationError]):
        self.errors = list(errors)
        summary = "; ".join(f"{e.field}: {e.message}" for e in self.errors)
        super().__init__(f"Invalid rule configuration: {summary}")

    def extra(self) -> dict[str, Any]:
        return {"errors": [{"field": e.field, "message": e.message} for e in self.errors]}


class ConflictingRule(CommissionEngineError):
    """Another active rule already covers the identical scope with the same type."""

    code = "conflicting_rule"
    category = "rule_configuration"
    status_code = 409

    def __init__(self, rule_ids: Sequence[Optional[int]], scope_description: str, rule_type: str):
        self.rule_ids = list(rule_ids)
        self.scope_description = scope_description
        self.rule_type = rule_type
        ids = ", ".join(str(rule_id) for rule_id in self.rule_ids)
        super().__init__(
            f"A {rule_type} rule with scope '{scope_description}' already exists "
            f"(rule {ids}); selection between them would be ambiguous"
        )

    def extra(self) -> dict[str, Any]:
        return {"conflicting_rule_ids": self.rule_ids}


class NoMatchingRule(CommissionEngineError):
    """No rule, not even an organization-wide default, covers the transaction."""

    code = "no_matching_rule"
    category = "coverage"
    status_code = 422

    def __init__(self, transaction_id: Optional[int], reason: str = "no rule matches"):
        self.transaction_id = transaction_id
        self.reason = reason
        super().__init__(
            f"No commission rule covers transaction {transaction_id}: {reason}. "
            "Add a matching rule or an organization-wide default."
        )

    def extra(self) -> dict[str, Any]:
        return {"transaction_id": self.transaction_id}


class NetAmountUnavailable(CommissionEngineError):
    """The transaction or its linked returns could not be loaded."""

    code = "net_amount_unavailable"
    category = "data_integrity"
    status_code = 503

    def __init__(self, transaction_id: Optional[int], reason: str):
        self.transaction_id = transaction_id
        super().__init__(f"Net sales amount for transaction {transaction_id} unavailable: {reason}")

    def extra(self) -> dict[str, Any]:
        return {"transaction_id": self.transaction_id}


class CalculationAlreadyExists(CommissionEngineError):
    """A calculation row already exists for the transaction."""

    code = "calculation_exists"
    category = "data_integrity"
    status_code = 409

    def __init__(self, transaction_id: int, calculation_id: Optional[int] = None):
        self.transaction_id = transaction_id
        self.calculation_id = calculation_id
        super().__init__(f"Transaction {transaction_id} already has a commission calculation")

    def extra(self) -> dict[str, Any]:
        return {"transaction_id": self.transaction_id, "calculation_id": self.calculation_id}


class TransactionNotCalculable(CommissionEngineError):
    """Only SALE transactions earn commission."""

    code = "transaction_not_calculable"
    category = "workflow"
    status_code = 422


class InvalidStatusTransition(CommissionEngineError):
    """Requested payout workflow step is not allowed from the current status."""

    code = "invalid_status_transition"
    category = "workflow"
    status_code = 409

    def __init__(self, calculation_id: int, current: str, target: str):
        self.calculation_id = calculation_id
        self.current = current
        self.target = target
        super().__init__(f"Calculation {calculation_id} cannot move from {current} to {target}")

    def extra(self) -> dict[str, Any]:
        return {"calculation_id": self.calculation_id, "current": self.current, "target": self.target}


class ResourceNotFound(CommissionEngineError):
    code = "not_found"
    category = "request"
    status_code = 404

    def __init__(self, resource: str, resource_id: Any):
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource} {resource_id} not found")


class PermissionDenied(CommissionEngineError):
    code = "permission_denied"
    category = "request"
    status_code = 403


class InvalidRequest(CommissionEngineError):
    """Request is well-formed but contradicts organization data."""

    code = "invalid_request"
    category = "request"
    status_code = 422
