"""Commission plan and rule API endpoints."""

from typing import List

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from commissionly.auth.context import RequestContext
from commissionly.auth.dependencies import get_request_context, require_manager
from commissionly.db import get_db
from commissionly.schemas.plan import (
    PlanCreate,
    PlanHealthResponse,
    PlanResponse,
    PlanUpdate,
    PreviewRequest,
    PreviewResponse,
    RuleCreate,
    RuleResponse,
    RuleUpdate,
)
from commissionly.services import plans as plan_service

router = APIRouter(prefix="/plans", tags=["Plans"])


@router.get("", response_model=List[PlanResponse])
async def list_plans(
    active_only: bool = Query(False),
    db: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
):
    """List the organization's commission plans with their rules."""
    plans = await plan_service.list_plans(db, ctx, active_only=active_only)
    return [PlanResponse.model_validate(plan) for plan in plans]


@router.post("", response_model=PlanResponse, status_code=status.HTTP_201_CREATED)
async def create_plan(
    data: PlanCreate,
    db: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(require_manager),
):
    plan = await plan_service.create_plan(db, ctx, data)
    return PlanResponse.model_validate(plan)


@router.get("/{plan_id}", response_model=PlanResponse)
async def get_plan(
    plan_id: int,
    db: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
):
    plan = await plan_service.get_plan(db, ctx, plan_id)
    return PlanResponse.model_validate(plan)


@router.patch("/{plan_id}", response_model=PlanResponse)
async def update_plan(
    plan_id: int,
    data: PlanUpdate,
    db: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(require_manager),
):
    plan = await plan_service.update_plan(db, ctx, plan_id, data)
    return PlanResponse.model_validate(plan)


@router.delete("/{plan_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_plan(
    plan_id: int,
    db: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(require_manager),
):
    await plan_service.delete_plan(db, ctx, plan_id)


# ── Rules ─────────────────────────────────────────────────


@router.post("/{plan_id}/rules", response_model=RuleResponse, status_code=status.HTTP_201_CREATED)
async def create_rule(
    plan_id: int,
    data: RuleCreate,
    db: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(require_manager),
):
    """
    Add a rule to a plan.

    The rule's priority is derived from its scope. Responds 422 for invalid
    values and 409 when an active rule already covers the same scope.
    """
    rule = await plan_service.create_rule(db, ctx, plan_id, data)
    return RuleResponse.model_validate(rule)


@router.patch("/{plan_id}/rules/{rule_id}", response_model=RuleResponse)
async def update_rule(
    plan_id: int,
    rule_id: int,
    data: RuleUpdate,
    db: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(require_manager),
):
    rule = await plan_service.update_rule(db, ctx, plan_id, rule_id, data)
    return RuleResponse.model_validate(rule)


@router.delete("/{plan_id}/rules/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_rule(
    plan_id: int,
    rule_id: int,
    db: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(require_manager),
):
    await plan_service.delete_rule(db, ctx, plan_id, rule_id)


# ── Health and preview ────────────────────────────────────


@router.get("/{plan_id}/health", response_model=PlanHealthResponse)
async def plan_health(
    plan_id: int,
    db: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(require_manager),
):
    """Report conflicting rules and whether the plan has a default rule."""
    return await plan_service.plan_health(db, ctx, plan_id)


@router.post("/{plan_id}/preview", response_model=PreviewResponse)
async def preview_plan(
    plan_id: int,
    data: PreviewRequest,
    db: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(require_manager),
):
    """What-if calculation; nothing is stored."""
    result = await plan_service.preview_plan(db, ctx, plan_id, data)
    return PreviewResponse(
        amount=result.amount,
        selected_rule_id=result.selected_rule_id,
        metadata=result.metadata,
    )
