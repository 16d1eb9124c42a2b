"""
Tests for plan and rule management.
"""

from decimal import Decimal

import pytest

from commissionly.models import CommissionBasis, CustomerTier, RuleType
from commissionly.schemas.plan import PlanCreate, PlanUpdate, PreviewRequest, RuleCreate, RuleUpdate
from commissionly.services import plans as plan_service
from commissionly.services.errors import (
    ConflictingRule,
    InvalidRequest,
    InvalidRuleConfiguration,
    ResourceNotFound,
)

from conftest import context_for, make_rule


# ── Plans ─────────────────────────────────────────────────


class TestPlans:
    @pytest.mark.asyncio
    async def test_create_plan_defaults_to_gross(self, db_session, manager_ctx):
        plan = await plan_service.create_plan(db_session, manager_ctx, PlanCreate(name="Q3"))
        assert plan.commission_basis == CommissionBasis.GROSS_REVENUE
        assert plan.rules == []

    @pytest.mark.asyncio
    async def test_create_plan_for_foreign_project(self, db_session, seed):
        ctx = context_for(seed.outsider)
        with pytest.raises(InvalidRequest):
            await plan_service.create_plan(
                db_session, ctx, PlanCreate(name="Stolen", project_id=seed.project.id)
            )

    @pytest.mark.asyncio
    async def test_list_plans_scoped_to_organization(self, db_session, seed, manager_ctx):
        await plan_service.create_plan(db_session, manager_ctx, PlanCreate(name="Paused", is_active=False))

        assert [p.name for p in await plan_service.list_plans(db_session, manager_ctx)] == ["Standard", "Paused"]
        active = await plan_service.list_plans(db_session, manager_ctx, active_only=True)
        assert [p.name for p in active] == ["Standard"]
        assert await plan_service.list_plans(db_session, context_for(seed.outsider)) == []

    @pytest.mark.asyncio
    async def test_update_plan(self, db_session, seed, manager_ctx):
        plan = await plan_service.update_plan(
            db_session, manager_ctx, seed.plan.id,
            PlanUpdate(commission_basis=CommissionBasis.NET_SALES),
        )
        assert plan.commission_basis == CommissionBasis.NET_SALES
        assert plan.name == "Standard"

    @pytest.mark.asyncio
    async def test_update_plan_rejects_null_name(self, db_session, seed, manager_ctx):
        with pytest.raises(InvalidRequest):
            await plan_service.update_plan(db_session, manager_ctx, seed.plan.id, PlanUpdate(name=None))

    @pytest.mark.asyncio
    async def test_delete_plan(self, db_session, seed, manager_ctx):
        await plan_service.delete_plan(db_session, manager_ctx, seed.plan.id)
        with pytest.raises(ResourceNotFound):
            await plan_service.get_plan(db_session, manager_ctx, seed.plan.id)

    @pytest.mark.asyncio
    async def test_other_organization_cannot_see_plan(self, db_session, seed):
        with pytest.raises(ResourceNotFound):
            await plan_service.get_plan(db_session, context_for(seed.outsider), seed.plan.id)


# ── Rules ─────────────────────────────────────────────────


class TestRules:
    @pytest.mark.asyncio
    async def test_priority_derived_from_scope(self, db_session, seed, manager_ctx):
        rule = await plan_service.create_rule(
            db_session, manager_ctx, seed.plan.id,
            RuleCreate(
                rule_type=RuleType.PERCENTAGE,
                percentage=Decimal("12"),
                client_id=seed.client.id,
                customer_tier=CustomerTier.VIP,
            ),
        )
        assert rule.priority == 209
        assert rule.commission_plan_id == seed.plan.id

    @pytest.mark.asyncio
    async def test_duplicate_default_rejected(self, db_session, seed, manager_ctx):
        with pytest.raises(ConflictingRule) as exc_info:
            await plan_service.create_rule(
                db_session, manager_ctx, seed.plan.id,
                RuleCreate(rule_type=RuleType.PERCENTAGE, percentage=Decimal("8")),
            )
        assert exc_info.value.rule_ids == [seed.default_rule.id]

    @pytest.mark.asyncio
    async def test_same_scope_other_type_accepted(self, db_session, seed, manager_ctx):
        rule = await plan_service.create_rule(
            db_session, manager_ctx, seed.plan.id,
            RuleCreate(rule_type=RuleType.FLAT_AMOUNT, flat_amount=Decimal("25")),
        )
        assert rule.priority == 0

    @pytest.mark.asyncio
    async def test_invalid_values_rejected(self, db_session, seed, manager_ctx):
        with pytest.raises(InvalidRuleConfiguration):
            await plan_service.create_rule(
                db_session, manager_ctx, seed.plan.id,
                RuleCreate(rule_type=RuleType.PERCENTAGE, percentage=Decimal("120"), client_id=seed.client.id),
            )

    @pytest.mark.asyncio
    async def test_foreign_scope_rejected(self, db_session, seed, manager_ctx):
        with pytest.raises(InvalidRequest):
            await plan_service.create_rule(
                db_session, manager_ctx, seed.plan.id,
                RuleCreate(
                    rule_type=RuleType.PERCENTAGE,
                    percentage=Decimal("5"),
                    territory_id=seed.foreign_territory.id,
                ),
            )

    @pytest.mark.asyncio
    async def test_update_recomputes_priority(self, db_session, seed, manager_ctx):
        rule = await plan_service.create_rule(
            db_session, manager_ctx, seed.plan.id,
            RuleCreate(rule_type=RuleType.PERCENTAGE, percentage=Decimal("12"), territory_id=seed.territory.id),
        )
        assert rule.priority == 104

        updated = await plan_service.update_rule(
            db_session, manager_ctx, seed.plan.id, rule.id,
            RuleUpdate(project_id=seed.project.id),
        )
        assert updated.priority == 220
        assert updated.percentage == Decimal("12")

        cleared = await plan_service.update_rule(
            db_session, manager_ctx, seed.plan.id, rule.id,
            RuleUpdate(project_id=None, territory_id=None, is_active=False),
        )
        assert cleared.priority == 0
        assert cleared.is_active is False

    @pytest.mark.asyncio
    async def test_update_into_conflict_rejected(self, db_session, seed, manager_ctx):
        rule = await plan_service.create_rule(
            db_session, manager_ctx, seed.plan.id,
            RuleCreate(rule_type=RuleType.PERCENTAGE, percentage=Decimal("12"), client_id=seed.client.id),
        )
        with pytest.raises(ConflictingRule):
            await plan_service.update_rule(
                db_session, manager_ctx, seed.plan.id, rule.id,
                RuleUpdate(client_id=None),
            )

    @pytest.mark.asyncio
    async def test_update_own_values(self, db_session, seed, manager_ctx):
        updated = await plan_service.update_rule(
            db_session, manager_ctx, seed.plan.id, seed.default_rule.id,
            RuleUpdate(percentage=Decimal("11")),
        )
        assert updated.percentage == Decimal("11")

    @pytest.mark.asyncio
    async def test_delete_rule(self, db_session, seed, manager_ctx):
        await plan_service.delete_rule(db_session, manager_ctx, seed.plan.id, seed.default_rule.id)
        plan = await plan_service.get_plan(db_session, manager_ctx, seed.plan.id)
        assert plan.rules == []

    @pytest.mark.asyncio
    async def test_unknown_rule(self, db_session, seed, manager_ctx):
        with pytest.raises(ResourceNotFound):
            await plan_service.delete_rule(db_session, manager_ctx, seed.plan.id, 9999)


# ── Health and preview ────────────────────────────────────


class TestHealthAndPreview:
    @pytest.mark.asyncio
    async def test_healthy_plan(self, db_session, seed, manager_ctx):
        health = await plan_service.plan_health(db_session, manager_ctx, seed.plan.id)
        assert health.healthy
        assert health.has_default_rule
        assert health.conflicts == []

    @pytest.mark.asyncio
    async def test_conflicting_rows_reported(self, db_session, seed, manager_ctx):
        # Rows written around the validator, e.g. by a bulk import
        seed.plan.rules.append(make_rule(percentage=Decimal("9")))
        await db_session.flush()

        health = await plan_service.plan_health(db_session, manager_ctx, seed.plan.id)
        assert not health.healthy
        assert len(health.conflicts) == 1
        assert seed.default_rule.id in health.conflicts[0].rule_ids

    @pytest.mark.asyncio
    async def test_missing_default_reported(self, db_session, seed, manager_ctx):
        seed.default_rule.is_active = False
        await db_session.flush()

        health = await plan_service.plan_health(db_session, manager_ctx, seed.plan.id)
        assert not health.has_default_rule
        assert not health.healthy
        assert health.active_rule_count == 0

    @pytest.mark.asyncio
    async def test_preview_uses_client_tier_and_territory(self, db_session, seed, manager_ctx):
        await plan_service.create_rule(
            db_session, manager_ctx, seed.plan.id,
            RuleCreate(rule_type=RuleType.PERCENTAGE, percentage=Decimal("15"), territory_id=seed.territory.id),
        )
        result = await plan_service.preview_plan(
            db_session, manager_ctx, seed.plan.id,
            PreviewRequest(amount=Decimal("1000"), client_id=seed.client.id),
        )
        assert result.amount == Decimal("150.00")
        assert result.trace.input_snapshot.customer_tier == "VIP"

    @pytest.mark.asyncio
    async def test_preview_resolves_client_through_project(self, db_session, seed, manager_ctx):
        await plan_service.create_rule(
            db_session, manager_ctx, seed.plan.id,
            RuleCreate(rule_type=RuleType.PERCENTAGE, percentage=Decimal("15"), territory_id=seed.territory.id),
        )
        result = await plan_service.preview_plan(
            db_session, manager_ctx, seed.plan.id,
            PreviewRequest(amount=Decimal("1000"), project_id=seed.project.id),
        )
        assert result.amount == Decimal("150.00")
        assert result.trace.input_snapshot.client_id == seed.client.id
        assert result.trace.input_snapshot.customer_tier == "VIP"

    @pytest.mark.asyncio
    async def test_preview_unknown_project(self, db_session, seed, manager_ctx):
        with pytest.raises(ResourceNotFound):
            await plan_service.preview_plan(
                db_session, manager_ctx, seed.plan.id,
                PreviewRequest(amount=Decimal("1000"), project_id=9999),
            )

    @pytest.mark.asyncio
    async def test_preview_default(self, db_session, seed, manager_ctx):
        result = await plan_service.preview_plan(
            db_session, manager_ctx, seed.plan.id,
            PreviewRequest(amount=Decimal("333.35")),
        )
        assert result.amount == Decimal("33.34")
        assert result.selected_rule_id == seed.default_rule.id
