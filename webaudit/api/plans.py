"""
Plan catalog and administration API.

Reads are public. Writes require X-Admin-Key.
"""

import logging
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from webaudit.core.admin_auth import AdminActor, require_admin
from webaudit.core.errors import NotFoundError
from webaudit.features.plans.service import create_plan, get_plan, list_active_plans, update_plan
from webaudit.models.plan import Plan

logger = logging.getLogger("webaudit.api.plans")

router = APIRouter(prefix="/api/plans", tags=["plans"])


class PlanResponse(BaseModel):
    planId: str
    name: str
    planType: str
    description: Optional[str] = None
    price: Decimal
    currency: str
    billingCycle: Optional[str] = None
    canUseFeatures: List[str]
    maxProjects: int
    isActive: bool
    sortOrder: int


class CreatePlanRequest(BaseModel):
    name: str = Field(..., min_length=1)
    plan_type: str = Field(..., description="Starter, Growth or Scale")
    plan_id: Optional[str] = None
    description: Optional[str] = None
    price: Decimal = Decimal("0")
    currency: Optional[str] = None
    billing_cycle: Optional[str] = None
    can_use_features: List[str] = Field(default_factory=list)
    max_projects: int = 1
    is_active: bool = True
    sort_order: int = 0


class UpdatePlanRequest(BaseModel):
    name: Optional[str] = None
    plan_type: Optional[str] = None
    description: Optional[str] = None
    price: Optional[Decimal] = None
    currency: Optional[str] = None
    billing_cycle: Optional[str] = None
    can_use_features: Optional[List[str]] = None
    max_projects: Optional[int] = None
    is_active: Optional[bool] = None
    sort_order: Optional[int] = None


def _to_response(plan: Plan) -> PlanResponse:
    return PlanResponse(
        planId=plan.plan_id,
        name=plan.name,
        planType=plan.plan_type.value,
        description=plan.description,
        price=plan.price,
        currency=plan.currency,
        billingCycle=plan.billing_cycle.value if plan.billing_cycle else None,
        canUseFeatures=list(plan.can_use_features),
        maxProjects=plan.max_projects,
        isActive=plan.is_active,
        sortOrder=plan.sort_order,
    )


@router.get("", response_model=List[PlanResponse])
def list_plans():
    """Active plans in display order."""
    return [_to_response(p) for p in list_active_plans()]


@router.get("/{plan_id}", response_model=PlanResponse)
def read_plan(plan_id: str):
    plan = get_plan(plan_id)
    if plan is None:
        raise NotFoundError(f"Plan {plan_id} not found")
    return _to_response(plan)


@router.post("", response_model=PlanResponse, status_code=201)
def create_plan_endpoint(body: CreatePlanRequest, actor: AdminActor = Depends(require_admin)):
    plan = create_plan(**body.model_dump())
    logger.info("[plans] created via admin api", extra={"plan_id": plan.plan_id, "event_type": actor.actor_id})
    return _to_response(plan)


@router.patch("/{plan_id}", response_model=PlanResponse)
def update_plan_endpoint(plan_id: str, body: UpdatePlanRequest, actor: AdminActor = Depends(require_admin)):
    changes = body.model_dump(exclude_unset=True)
    plan = update_plan(plan_id, **changes)
    logger.info("[plans] updated via admin api", extra={"plan_id": plan_id, "event_type": actor.actor_id})
    return _to_response(plan)
