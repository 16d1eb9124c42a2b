"""
Tests for rule priority, value validation and conflict detection.

Covers:
- assign_priority_from_scope: dimension counts and field precedence
- sort_by_precedence: ties broken by creation time
- validate_rule_values: per-type bounds
- validate_scoped_rule: duplicate scope+type, sale bands, edits
- detect_rule_conflicts
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from commissionly.models import CustomerTier, RuleType
from commissionly.services.errors import ConflictingRule, InvalidRuleConfiguration
from commissionly.services.rule_precedence import (
    RuleDefinition,
    RuleScope,
    assign_priority_from_scope,
    detect_rule_conflicts,
    sort_by_precedence,
    validate_rule_values,
    validate_scoped_rule,
)

T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _percentage(rule_id=None, percentage="10", scope=RuleScope(), **kwargs) -> RuleDefinition:
    return RuleDefinition(
        id=rule_id,
        rule_type=RuleType.PERCENTAGE,
        scope=scope,
        percentage=Decimal(percentage),
        **kwargs,
    )


# ── assign_priority_from_scope ────────────────────────────


class TestAssignPriority:
    def test_default_scope_is_zero(self):
        assert assign_priority_from_scope(RuleScope()) == 0

    def test_single_dimension_weights(self):
        assert assign_priority_from_scope(RuleScope(project_id=1)) == 116
        assert assign_priority_from_scope(RuleScope(client_id=1)) == 108
        assert assign_priority_from_scope(RuleScope(territory_id=1)) == 104
        assert assign_priority_from_scope(RuleScope(product_category_id=1)) == 102
        assert assign_priority_from_scope(RuleScope(customer_tier=CustomerTier.VIP)) == 101

    def test_more_dimensions_always_win(self):
        # Two weakest dimensions still beat the strongest single one
        two = assign_priority_from_scope(
            RuleScope(product_category_id=1, customer_tier=CustomerTier.VIP)
        )
        one = assign_priority_from_scope(RuleScope(project_id=1))
        assert two > one

    def test_field_precedence_among_equal_counts(self):
        project_client = assign_priority_from_scope(RuleScope(project_id=1, client_id=2))
        project_territory = assign_priority_from_scope(RuleScope(project_id=1, territory_id=2))
        client_territory = assign_priority_from_scope(RuleScope(client_id=1, territory_id=2))
        assert project_client > project_territory > client_territory

    def test_all_dimensions(self):
        scope = RuleScope(
            project_id=1,
            client_id=2,
            territory_id=3,
            product_category_id=4,
            customer_tier=CustomerTier.ENTERPRISE,
        )
        assert assign_priority_from_scope(scope) == 500 + 31

    def test_depends_on_populated_fields_not_ids(self):
        assert assign_priority_from_scope(RuleScope(client_id=1)) == assign_priority_from_scope(
            RuleScope(client_id=999)
        )


# ── sort_by_precedence ────────────────────────────────────


class TestSortByPrecedence:
    def test_highest_priority_first(self):
        default = _percentage(1, priority=0, created_at=T0)
        client = _percentage(2, priority=108, created_at=T0)
        ordered = sort_by_precedence([default, client])
        assert [r.id for r in ordered] == [2, 1]

    def test_tie_goes_to_most_recent(self):
        older = _percentage(1, priority=108, created_at=T0)
        newer = _percentage(2, priority=108, created_at=T0 + timedelta(days=1))
        ordered = sort_by_precedence([newer, older])
        assert ordered[0].id == 2

    def test_naive_and_aware_timestamps_compare(self):
        naive = _percentage(1, priority=0, created_at=datetime(2026, 1, 2))
        aware = _percentage(2, priority=0, created_at=T0)
        assert sort_by_precedence([aware, naive])[0].id == 1


# ── validate_rule_values ──────────────────────────────────


class TestValidateRuleValues:
    def test_valid_percentage(self):
        validate_rule_values(_percentage(percentage="100"))

    @pytest.mark.parametrize("value", ["-1", "100.01"])
    def test_percentage_out_of_bounds(self, value):
        with pytest.raises(InvalidRuleConfiguration) as exc_info:
            validate_rule_values(_percentage(percentage=value))
        assert exc_info.value.errors[0].field == "percentage"

    def test_percentage_required(self):
        with pytest.raises(InvalidRuleConfiguration):
            validate_rule_values(RuleDefinition(rule_type=RuleType.PERCENTAGE))

    def test_negative_flat_amount(self):
        rule = RuleDefinition(rule_type=RuleType.FLAT_AMOUNT, flat_amount=Decimal("-5"))
        with pytest.raises(InvalidRuleConfiguration):
            validate_rule_values(rule)

    def test_zero_flat_amount_allowed(self):
        validate_rule_values(RuleDefinition(rule_type=RuleType.FLAT_AMOUNT, flat_amount=Decimal("0")))

    def test_tiered_requires_threshold_and_rate(self):
        with pytest.raises(InvalidRuleConfiguration) as exc_info:
            validate_rule_values(RuleDefinition(rule_type=RuleType.TIERED))
        fields = {e.field for e in exc_info.value.errors}
        assert fields == {"tier_threshold", "tier_percentage"}

    def test_max_cap_must_exceed_min_cap(self):
        rule = _percentage(min_amount=Decimal("50"), max_amount=Decimal("50"))
        with pytest.raises(InvalidRuleConfiguration) as exc_info:
            validate_rule_values(rule)
        assert exc_info.value.errors[0].field == "max_amount"

    def test_all_errors_reported_together(self):
        rule = _percentage(
            percentage="150",
            min_amount=Decimal("10"),
            max_amount=Decimal("5"),
        )
        with pytest.raises(InvalidRuleConfiguration) as exc_info:
            validate_rule_values(rule)
        assert len(exc_info.value.errors) == 2
        assert exc_info.value.to_dict()["category"] == "rule_configuration"


# ── validate_scoped_rule ──────────────────────────────────


class TestValidateScopedRule:
    def test_rejects_same_scope_and_type(self):
        existing = [_percentage(1, scope=RuleScope(client_id=5))]
        with pytest.raises(ConflictingRule) as exc_info:
            validate_scoped_rule(_percentage(scope=RuleScope(client_id=5)), existing)
        assert exc_info.value.rule_ids == [1]
        assert exc_info.value.status_code == 409

    def test_accepts_different_scope(self):
        existing = [_percentage(1, scope=RuleScope(client_id=5))]
        validate_scoped_rule(_percentage(scope=RuleScope(client_id=6)), existing)

    def test_accepts_different_type(self):
        existing = [_percentage(1, scope=RuleScope(client_id=5))]
        candidate = RuleDefinition(
            rule_type=RuleType.FLAT_AMOUNT,
            scope=RuleScope(client_id=5),
            flat_amount=Decimal("50"),
        )
        validate_scoped_rule(candidate, existing)

    def test_ignores_inactive_existing_rule(self):
        existing = [_percentage(1, is_active=False)]
        validate_scoped_rule(_percentage(), existing)

    def test_disjoint_sale_bands_coexist(self):
        existing = [_percentage(1, max_sale_amount=Decimal("999.99"))]
        validate_scoped_rule(_percentage(min_sale_amount=Decimal("1000")), existing)

    def test_touching_sale_bands_conflict(self):
        # Bands are inclusive on both ends
        existing = [_percentage(1, max_sale_amount=Decimal("1000"))]
        with pytest.raises(ConflictingRule):
            validate_scoped_rule(_percentage(min_sale_amount=Decimal("1000")), existing)

    def test_edit_skips_itself(self):
        existing = [_percentage(7, scope=RuleScope(territory_id=2))]
        validate_scoped_rule(_percentage(7, percentage="12", scope=RuleScope(territory_id=2)), existing)

    def test_value_errors_come_first(self):
        existing = [_percentage(1)]
        with pytest.raises(InvalidRuleConfiguration):
            validate_scoped_rule(_percentage(percentage="101"), existing)


# ── detect_rule_conflicts ─────────────────────────────────


class TestDetectRuleConflicts:
    def test_no_conflicts(self):
        rules = [
            _percentage(1),
            _percentage(2, scope=RuleScope(client_id=1)),
            RuleDefinition(id=3, rule_type=RuleType.FLAT_AMOUNT, flat_amount=Decimal("5")),
        ]
        assert detect_rule_conflicts(rules) == []

    def test_duplicate_scope_reported(self):
        rules = [
            _percentage(1, scope=RuleScope(client_id=1)),
            _percentage(2, scope=RuleScope(client_id=1)),
            _percentage(3),
        ]
        conflicts = detect_rule_conflicts(rules)
        assert len(conflicts) == 1
        assert conflicts[0].rule_ids == (1, 2)
        assert "client_id=1" in conflicts[0].describe()

    def test_inactive_rules_ignored(self):
        rules = [_percentage(1), _percentage(2, is_active=False)]
        assert detect_rule_conflicts(rules) == []

    def test_banded_rules_grouped_by_overlap(self):
        rules = [
            _percentage(1, max_sale_amount=Decimal("100")),
            _percentage(2, min_sale_amount=Decimal("101"), max_sale_amount=Decimal("500")),
            _percentage(3, min_sale_amount=Decimal("400")),
        ]
        conflicts = detect_rule_conflicts(rules)
        assert [c.rule_ids for c in conflicts] == [(2, 3)]
