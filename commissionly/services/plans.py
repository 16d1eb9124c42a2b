"""
Commission plan and rule management.

Every rule write goes through the precedence validator: value bounds are
checked, conflicts with the plan's other rules are rejected and the rule's
priority is recomputed from its scope.
"""

import logging
from types import SimpleNamespace

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from commissionly.auth.context import RequestContext
from commissionly.config import settings
from commissionly.models import (
    AuditAction,
    Client,
    CommissionBasis,
    CommissionPlan,
    CommissionRule,
    ProductCategory,
    Project,
    Territory,
)
from commissionly.schemas.plan import (
    PlanCreate,
    PlanHealthResponse,
    PlanUpdate,
    PreviewRequest,
    RuleConflictResponse,
    RuleCreate,
    RuleUpdate,
)
from commissionly.services.commission import load_plan_with_rules
from commissionly.services.commission_calculator import CommissionResult, preview_commission
from commissionly.services.commission_trace import PlanSnapshot
from commissionly.services.errors import InvalidRequest, ResourceNotFound
from commissionly.services.rule_precedence import (
    RuleDefinition,
    RuleScope,
    assign_priority_from_scope,
    detect_rule_conflicts,
    to_decimal,
    validate_scoped_rule,
)
from commissionly.utils.audit import log_action

logger = logging.getLogger(__name__)

_SCOPE_MODELS = {
    "project_id": (Project, "Project"),
    "client_id": (Client, "Client"),
    "territory_id": (Territory, "Territory"),
    "product_category_id": (ProductCategory, "Product category"),
}


async def _check_owned(db: AsyncSession, organization_id: int, model, label: str, object_id: int) -> None:
    owner = await db.scalar(select(model.organization_id).where(model.id == object_id))
    if owner != organization_id:
        raise InvalidRequest(f"{label} {object_id} does not belong to this organization")


async def _check_scope_ownership(db: AsyncSession, organization_id: int, values: dict) -> None:
    for column, (model, label) in _SCOPE_MODELS.items():
        object_id = values.get(column)
        if object_id is not None:
            await _check_owned(db, organization_id, model, label, object_id)


# ── Plans ─────────────────────────────────────────────────


async def list_plans(
    db: AsyncSession,
    ctx: RequestContext,
    active_only: bool = False,
) -> list[CommissionPlan]:
    query = (
        select(CommissionPlan)
        .options(selectinload(CommissionPlan.rules))
        .where(CommissionPlan.organization_id == ctx.organization_id)
        .order_by(CommissionPlan.id)
    )
    if active_only:
        query = query.where(CommissionPlan.is_active.is_(True))
    result = await db.execute(query)
    return list(result.scalars().all())


async def get_plan(db: AsyncSession, ctx: RequestContext, plan_id: int) -> CommissionPlan:
    """Load a plan of the caller's organization with its rules."""
    plan = await load_plan_with_rules(db, ctx.organization_id, plan_id)
    if plan is None:
        raise ResourceNotFound("Commission plan", plan_id)
    return plan


async def create_plan(db: AsyncSession, ctx: RequestContext, data: PlanCreate) -> CommissionPlan:
    if data.project_id is not None:
        await _check_owned(db, ctx.organization_id, Project, "Project", data.project_id)

    plan = CommissionPlan(
        organization_id=ctx.organization_id,
        name=data.name,
        description=data.description,
        project_id=data.project_id,
        commission_basis=data.commission_basis or CommissionBasis(settings.default_commission_basis),
        base_rate=data.base_rate,
        is_active=data.is_active,
    )
    db.add(plan)
    await db.flush()

    await log_action(
        db, ctx, AuditAction.CREATE_PLAN,
        target_type="plan", target_id=plan.id,
        action_metadata={"name": plan.name},
    )
    logger.info(f"Plan {plan.id} '{plan.name}' created for organization {ctx.organization_id}")
    return await get_plan(db, ctx, plan.id)


async def update_plan(
    db: AsyncSession,
    ctx: RequestContext,
    plan_id: int,
    data: PlanUpdate,
) -> CommissionPlan:
    plan = await get_plan(db, ctx, plan_id)
    changes = data.model_dump(exclude_unset=True)

    if changes.get("project_id") is not None:
        await _check_owned(db, ctx.organization_id, Project, "Project", changes["project_id"])
    if "name" in changes and changes["name"] is None:
        raise InvalidRequest("Plan name cannot be empty")
    if "commission_basis" in changes and changes["commission_basis"] is None:
        changes.pop("commission_basis")
    if "is_active" in changes and changes["is_active"] is None:
        changes.pop("is_active")

    for key, value in changes.items():
        setattr(plan, key, value)
    await db.flush()

    await log_action(
        db, ctx, AuditAction.UPDATE_PLAN,
        target_type="plan", target_id=plan.id,
        action_metadata={"fields": sorted(changes)},
    )
    return plan


async def delete_plan(db: AsyncSession, ctx: RequestContext, plan_id: int) -> None:
    """Delete a plan and its rules. Existing calculations keep their traces."""
    plan = await get_plan(db, ctx, plan_id)
    await db.delete(plan)
    await log_action(
        db, ctx, AuditAction.DELETE_PLAN,
        target_type="plan", target_id=plan_id,
        action_metadata={"name": plan.name},
    )
    await db.flush()
    logger.info(f"Plan {plan_id} deleted")


# ── Rules ─────────────────────────────────────────────────


def _get_rule(plan: CommissionPlan, rule_id: int) -> CommissionRule:
    for rule in plan.rules:
        if rule.id == rule_id:
            return rule
    raise ResourceNotFound("Commission rule", rule_id)


async def create_rule(
    db: AsyncSession,
    ctx: RequestContext,
    plan_id: int,
    data: RuleCreate,
) -> CommissionRule:
    """
    Add a rule to a plan.

    Raises:
        InvalidRuleConfiguration: value bounds violated
        ConflictingRule: an active rule with the same scope and type overlaps
        InvalidRequest: a scope id belongs to another organization
    """
    plan = await get_plan(db, ctx, plan_id)
    values = data.model_dump()
    await _check_scope_ownership(db, ctx.organization_id, values)

    candidate = RuleDefinition.from_object(data)
    validate_scoped_rule(
        candidate,
        [RuleDefinition.from_object(rule) for rule in plan.rules],
    )

    rule = CommissionRule(
        **values,
        priority=assign_priority_from_scope(candidate.scope),
    )
    plan.rules.append(rule)
    await db.flush()

    await log_action(
        db, ctx, AuditAction.CREATE_RULE,
        target_type="rule", target_id=rule.id,
        action_metadata={
            "plan_id": plan.id,
            "rule_type": rule.rule_type.value,
            "priority": rule.priority,
        },
    )
    logger.info(f"Rule {rule.id} ({rule.rule_type.value}, priority {rule.priority}) added to plan {plan.id}")
    return rule


async def update_rule(
    db: AsyncSession,
    ctx: RequestContext,
    plan_id: int,
    rule_id: int,
    data: RuleUpdate,
) -> CommissionRule:
    """Apply a partial edit, re-validate it and recompute the priority."""
    plan = await get_plan(db, ctx, plan_id)
    rule = _get_rule(plan, rule_id)

    changes = data.model_dump(exclude_unset=True)
    for required in ("rule_type", "is_active"):
        if required in changes and changes[required] is None:
            changes.pop(required)
    await _check_scope_ownership(db, ctx.organization_id, changes)

    merged = {column: getattr(rule, column) for column in RuleCreate.model_fields}
    merged.update(changes)
    candidate = RuleDefinition.from_object(SimpleNamespace(id=rule.id, created_at=rule.created_at, **merged))

    validate_scoped_rule(
        candidate,
        [RuleDefinition.from_object(other) for other in plan.rules],
    )

    for key, value in changes.items():
        setattr(rule, key, value)
    rule.priority = assign_priority_from_scope(candidate.scope)
    await db.flush()

    await log_action(
        db, ctx, AuditAction.UPDATE_RULE,
        target_type="rule", target_id=rule.id,
        action_metadata={"plan_id": plan.id, "fields": sorted(changes), "priority": rule.priority},
    )
    return rule


async def delete_rule(db: AsyncSession, ctx: RequestContext, plan_id: int, rule_id: int) -> None:
    plan = await get_plan(db, ctx, plan_id)
    rule = _get_rule(plan, rule_id)
    plan.rules.remove(rule)
    await log_action(
        db, ctx, AuditAction.DELETE_RULE,
        target_type="rule", target_id=rule_id,
        action_metadata={"plan_id": plan.id},
    )
    await db.flush()


# ── Health and preview ────────────────────────────────────


async def plan_health(db: AsyncSession, ctx: RequestContext, plan_id: int) -> PlanHealthResponse:
    """Report overlapping rules and whether the plan has a catch-all default."""
    plan = await get_plan(db, ctx, plan_id)
    rules = [RuleDefinition.from_object(rule) for rule in plan.rules]
    active = [rule for rule in rules if rule.is_active]

    conflicts = [
        RuleConflictResponse(
            rule_type=conflict.rule_type,
            scope=conflict.scope.as_dict(),
            rule_ids=list(conflict.rule_ids),
            message=conflict.describe(),
        )
        for conflict in detect_rule_conflicts(rules)
    ]
    has_default = any(
        rule.scope.is_default and rule.min_sale_amount is None and rule.max_sale_amount is None
        for rule in active
    )
    if conflicts:
        logger.warning(f"Plan {plan.id} has {len(conflicts)} rule conflict(s)")

    return PlanHealthResponse(
        plan_id=plan.id,
        rule_count=len(rules),
        active_rule_count=len(active),
        has_default_rule=has_default,
        conflicts=conflicts,
        healthy=not conflicts and has_default,
    )


async def preview_plan(
    db: AsyncSession,
    ctx: RequestContext,
    plan_id: int,
    data: PreviewRequest,
) -> CommissionResult:
    """What-if calculation against a plan's current rules. Nothing is stored."""
    plan = await get_plan(db, ctx, plan_id)

    customer_tier = data.customer_tier
    territory_id = data.territory_id
    client_id = data.client_id
    if client_id is None and data.project_id is not None:
        # Same resolution as a recorded sale: the project's client
        project = await db.scalar(
            select(Project).where(
                Project.id == data.project_id,
                Project.organization_id == ctx.organization_id,
            )
        )
        if project is None:
            raise ResourceNotFound("Project", data.project_id)
        client_id = project.client_id

    if client_id is not None:
        client = await db.scalar(
            select(Client).where(
                Client.id == client_id,
                Client.organization_id == ctx.organization_id,
            )
        )
        if client is None:
            raise ResourceNotFound("Client", client_id)
        customer_tier = customer_tier or client.tier
        territory_id = territory_id or client.territory_id

    return preview_commission(
        data.amount,
        [RuleDefinition.from_object(rule) for rule in plan.rules],
        scope=RuleScope(
            project_id=data.project_id,
            client_id=client_id,
            territory_id=territory_id,
            product_category_id=data.product_category_id,
            customer_tier=customer_tier,
        ),
        commission_basis=plan.commission_basis,
        base_rate=to_decimal(plan.base_rate),
        plan=PlanSnapshot(
            id=plan.id,
            name=plan.name,
            commission_basis=plan.commission_basis.value,
            base_rate=to_decimal(plan.base_rate),
        ),
        precision=settings.currency_precision,
    )

