"""
Tests for the commission calculator.

Covers:
- PERCENTAGE, FLAT_AMOUNT and two-band TIERED formulas
- min/max caps and half-up rounding
- gross vs. net basis
- rule selection, ambiguous priority warning, NoMatchingRule
- determinism of amount and trace
- preview_commission / calculate_commission_with_precedence
"""

import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from commissionly.models import CommissionBasis, CustomerTier, RuleType
from commissionly.services.commission_calculator import (
    CalculationContext,
    apply_rule,
    calculate_commission,
    calculate_commission_with_precedence,
    preview_commission,
    quantize_money,
    rule_matches,
)
from commissionly.services.commission_trace import CommissionTrace
from commissionly.services.errors import NoMatchingRule
from commissionly.services.rule_precedence import RuleDefinition, RuleScope

T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _rule(rule_id=1, rule_type=RuleType.PERCENTAGE, scope=RuleScope(), **kwargs) -> RuleDefinition:
    return RuleDefinition(id=rule_id, rule_type=rule_type, scope=scope, created_at=T0, **kwargs)


def _context(amount="1000", rules=(), **kwargs) -> CalculationContext:
    amount = Decimal(amount)
    kwargs.setdefault("net_amount", amount)
    return CalculationContext(
        gross_amount=amount,
        rules=tuple(rules),
        transaction_id=42,
        **kwargs,
    )


# ── Formulas ──────────────────────────────────────────────


class TestFormulas:
    def test_percentage(self):
        rule = _rule(percentage=Decimal("10"))
        result = calculate_commission(_context(rules=[rule]))
        assert result.amount == Decimal("100.00")
        assert str(result.amount) == "100.00"

    def test_flat_amount_ignores_sale_amount(self):
        rule = _rule(rule_type=RuleType.FLAT_AMOUNT, flat_amount=Decimal("75"))
        assert calculate_commission(_context("10", rules=[rule])).amount == Decimal("75.00")
        assert calculate_commission(_context("99999", rules=[rule])).amount == Decimal("75.00")

    def test_tiered_two_band(self):
        rule = _rule(
            rule_type=RuleType.TIERED,
            tier_threshold=Decimal("500"),
            tier_percentage=Decimal("15"),
            percentage=Decimal("5"),
        )
        result = calculate_commission(_context(rules=[rule]))
        # 500 x 5% + 500 x 15%
        assert result.amount == Decimal("100.00")

        bands = result.trace.calculation.bands
        assert [b.commission for b in bands] == [Decimal("25"), Decimal("75")]

    def test_tiered_falls_back_to_plan_base_rate(self):
        rule = _rule(
            rule_type=RuleType.TIERED,
            tier_threshold=Decimal("500"),
            tier_percentage=Decimal("15"),
        )
        result = calculate_commission(_context(rules=[rule], base_rate=Decimal("5")))
        assert result.amount == Decimal("100.00")

    def test_tiered_without_base_rate_uses_zero(self):
        rule = _rule(
            rule_type=RuleType.TIERED,
            tier_threshold=Decimal("500"),
            tier_percentage=Decimal("15"),
        )
        assert calculate_commission(_context(rules=[rule])).amount == Decimal("75.00")

    def test_tiered_below_threshold(self):
        rule = _rule(
            rule_type=RuleType.TIERED,
            tier_threshold=Decimal("500"),
            tier_percentage=Decimal("15"),
            percentage=Decimal("5"),
        )
        assert calculate_commission(_context("400", rules=[rule])).amount == Decimal("20.00")


# ── Caps and rounding ─────────────────────────────────────


class TestCapsAndRounding:
    def test_max_cap(self):
        rule = _rule(percentage=Decimal("20"), max_amount=Decimal("150"))
        result = calculate_commission(_context(rules=[rule]))
        assert result.amount == Decimal("150.00")
        assert result.trace.calculation.raw_amount == Decimal("200")
        assert result.trace.calculation.clamp == "max"

    def test_min_cap(self):
        rule = _rule(percentage=Decimal("1"), min_amount=Decimal("25"))
        result = calculate_commission(_context("100", rules=[rule]))
        assert result.amount == Decimal("25.00")
        assert result.trace.calculation.clamp == "min"

    def test_half_cent_rounds_up(self):
        rule = _rule(percentage=Decimal("10"))
        result = calculate_commission(_context("333.35", rules=[rule]))
        assert result.amount == Decimal("33.34")

    def test_rounding_is_stable(self):
        rule = _rule(percentage=Decimal("10"))
        amounts = {calculate_commission(_context("333.35", rules=[rule])).amount for _ in range(5)}
        assert amounts == {Decimal("33.34")}

    def test_quantize_money(self):
        assert quantize_money(Decimal("33.335")) == Decimal("33.34")
        assert quantize_money(Decimal("33.334")) == Decimal("33.33")
        assert quantize_money(Decimal("2.5"), precision=0) == Decimal("3")

    def test_apply_rule_records_precision(self):
        detail = apply_rule(_rule(percentage=Decimal("10")), Decimal("10.05"), precision=3)
        assert detail.final_amount == Decimal("1.005")
        assert detail.precision == 3


# ── Basis ─────────────────────────────────────────────────


class TestBasis:
    def test_net_basis_uses_net_amount(self):
        rule = _rule(percentage=Decimal("10"))
        context = _context(
            rules=[rule],
            net_amount=Decimal("800"),
            commission_basis=CommissionBasis.NET_SALES,
        )
        result = calculate_commission(context)
        assert result.amount == Decimal("80.00")
        assert result.trace.input_snapshot.gross_amount == Decimal("1000")
        assert result.trace.input_snapshot.basis_amount == Decimal("800")

    def test_gross_basis_ignores_returns(self):
        rule = _rule(percentage=Decimal("10"))
        context = _context(rules=[rule], net_amount=Decimal("800"))
        assert calculate_commission(context).amount == Decimal("100.00")

    def test_zero_net_amount(self):
        rule = _rule(percentage=Decimal("10"))
        context = _context(
            rules=[rule],
            net_amount=Decimal("0"),
            commission_basis=CommissionBasis.NET_SALES,
        )
        result = calculate_commission(context)
        assert result.amount == Decimal("0.00")
        assert result.trace.output.effective_rate == Decimal("0")


# ── Selection ─────────────────────────────────────────────


class TestSelection:
    def test_specific_rule_beats_default(self):
        default = _rule(1, percentage=Decimal("10"), priority=0)
        vip = _rule(
            2,
            percentage=Decimal("12"),
            scope=RuleScope(customer_tier=CustomerTier.VIP),
            priority=101,
        )
        context = _context(rules=[default, vip], customer_tier=CustomerTier.VIP)
        result = calculate_commission(context)
        assert result.selected_rule_id == 2
        assert result.amount == Decimal("120.00")

        outcomes = {entry.rule_id: entry.outcome for entry in result.trace.rule_trace}
        assert outcomes == {2: "selected", 1: "outranked"}

    def test_scope_mismatch_falls_back_to_default(self):
        default = _rule(1, percentage=Decimal("10"), priority=0)
        client_rule = _rule(2, percentage=Decimal("20"), scope=RuleScope(client_id=7), priority=108)
        result = calculate_commission(_context(rules=[default, client_rule], client_id=8))
        assert result.selected_rule_id == 1

        rejected = next(e for e in result.trace.rule_trace if e.rule_id == 2)
        assert rejected.outcome == "scope_mismatch"
        assert rejected.conditions[0].expected == 7
        assert rejected.conditions[0].actual == 8

    def test_sale_band(self):
        small = _rule(1, percentage=Decimal("5"), max_sale_amount=Decimal("999.99"))
        large = _rule(2, percentage=Decimal("8"), min_sale_amount=Decimal("1000"))
        result = calculate_commission(_context(rules=[small, large]))
        assert result.selected_rule_id == 2

        rejected = next(e for e in result.trace.rule_trace if e.rule_id == 1)
        assert rejected.outcome == "amount_out_of_range"

    def test_inactive_rule_skipped(self):
        inactive = _rule(1, percentage=Decimal("50"), is_active=False, priority=108, scope=RuleScope(client_id=1))
        default = _rule(2, percentage=Decimal("10"))
        result = calculate_commission(_context(rules=[inactive, default], client_id=1))
        assert result.selected_rule_id == 2
        assert not rule_matches(inactive, _context(client_id=1))

    def test_ambiguous_priority_warns_and_picks_newest(self):
        older = _rule(1, percentage=Decimal("10"), priority=108, scope=RuleScope(client_id=1))
        newer = RuleDefinition(
            id=2,
            rule_type=RuleType.PERCENTAGE,
            scope=RuleScope(client_id=1),
            percentage=Decimal("11"),
            priority=108,
            created_at=T0 + timedelta(hours=1),
        )
        result = calculate_commission(_context(rules=[older, newer], client_id=1))
        assert result.selected_rule_id == 2
        assert result.has_warnings
        warning = result.trace.warnings[0]
        assert warning.code == "AMBIGUOUS_PRIORITY"
        assert warning.rule_ids == [2, 1]

    def test_no_matching_rule(self):
        client_rule = _rule(1, percentage=Decimal("10"), scope=RuleScope(client_id=1), priority=108)
        with pytest.raises(NoMatchingRule) as exc_info:
            calculate_commission(_context(rules=[client_rule]))
        assert exc_info.value.transaction_id == 42
        assert exc_info.value.to_dict()["category"] == "coverage"

    def test_no_rules_at_all(self):
        with pytest.raises(NoMatchingRule):
            calculate_commission(_context(rules=[]))


# ── Trace ─────────────────────────────────────────────────


class TestTrace:
    def _result(self):
        rule = _rule(percentage=Decimal("10"), max_amount=Decimal("150"))
        return calculate_commission(_context(rules=[rule], transaction_date=T0, invoice_number="INV-1"))

    def test_identical_inputs_identical_output(self):
        first = json.dumps(self._result().metadata, sort_keys=True)
        second = json.dumps(self._result().metadata, sort_keys=True)
        assert first == second

    def test_trace_round_trips(self):
        metadata = self._result().metadata
        trace = CommissionTrace.from_metadata(metadata)
        assert trace.output.commission_amount == Decimal("100.00")
        assert trace.schema_version == 1

    def test_trace_is_json_safe(self):
        metadata = self._result().metadata
        assert metadata["calculation"]["final_amount"] == "100.00"
        assert metadata["input_snapshot"]["invoice_number"] == "INV-1"
        json.dumps(metadata)

    def test_trace_rejects_unknown_keys(self):
        metadata = self._result().metadata
        metadata["surprise"] = True
        with pytest.raises(ValueError):
            CommissionTrace.from_metadata(metadata)

    def test_effective_rate(self):
        assert self._result().trace.output.effective_rate == Decimal("10.0000")


# ── Precedence entry point ────────────────────────────────


class TestWithPrecedence:
    def test_stored_priorities_are_recomputed(self):
        # Stored priority claims the default outranks the project rule
        default = _rule(1, percentage=Decimal("10"), priority=999)
        project_rule = _rule(2, percentage=Decimal("15"), scope=RuleScope(project_id=3), priority=0)
        result = calculate_commission_with_precedence(_context(project_id=3), [default, project_rule])
        assert result.selected_rule_id == 2
        assert result.amount == Decimal("150.00")

    def test_preview(self):
        rules = [
            _rule(1, percentage=Decimal("10")),
            _rule(2, percentage=Decimal("12"), scope=RuleScope(territory_id=4)),
        ]
        result = preview_commission(Decimal("250"), rules, scope=RuleScope(territory_id=4))
        assert result.selected_rule_id == 2
        assert result.amount == Decimal("30.00")
        assert result.trace.input_snapshot.transaction_id is None
