"""
Subscription API Routes

Plan catalog, the caller's subscription state and admin overrides.
"""

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from api.dependencies import get_catalog, get_guarded_actions, get_quota, get_subscriptions
from api.middleware.auth import get_current_user, require_admin
from entitlements.entitlement_gate import EntitlementGate
from entitlements.guarded_actions import GuardedActionService
from entitlements.models import (
    Plan,
    RequestContext,
    Role,
    SubscriptionStatus,
    UsageLimit,
    ResourceKind,
    parse_datetime,
)
from entitlements.plan_catalog import PlanCatalog, ROLE_RESOURCE_KINDS
from entitlements.subscription_state import SubscriptionChangeError, SubscriptionRepository
from entitlements.usage_tracker import QuotaEnforcer

router = APIRouter()


# ============================================================================
# Request/Response Models
# ============================================================================

class UsageLimitModel(BaseModel):
    daily: Optional[int] = None
    monthly: Optional[int] = None


class PlanUpsertRequest(BaseModel):
    """Admin plan definition"""
    role: Role
    name: str = Field(..., min_length=1)
    price: Decimal = Field(..., ge=0, decimal_places=2)
    currency: str = "INR"
    duration_days: int = Field(30, gt=0)
    features: List[str] = Field(default_factory=list)
    usage_limits: Dict[ResourceKind, UsageLimitModel] = Field(default_factory=dict)
    yearly_price: Optional[Decimal] = Field(None, ge=0, decimal_places=2)
    yearly_discount_percent: int = Field(0, ge=0, le=100)
    yearly_duration_days: int = Field(365, gt=0)
    active: bool = True


class ActivateFreePlanRequest(BaseModel):
    plan_id: str


class SubscriptionOverrideRequest(BaseModel):
    """Admin subscription override"""
    status: SubscriptionStatus
    plan_id: Optional[str] = None
    role: Optional[Role] = None
    expires_at: Optional[datetime] = None


def _subscription_body(subscription, now=None) -> Optional[dict]:
    if subscription is None:
        return None
    data = subscription.to_dict()
    for key in ("expiresAt", "startedAt", "updatedAt"):
        if data.get(key) is not None:
            data[key] = data[key].isoformat()
    data["status"] = EntitlementGate.effective_status(subscription, now).value
    return data


# ============================================================================
# Routes
# ============================================================================

@router.get("/plans")
async def list_plans(
    role: Optional[Role] = Query(None),
    catalog: PlanCatalog = Depends(get_catalog),
):
    """Public plan catalog"""
    plans = await catalog.list_plans(role)
    return {"plans": [plan.to_dict() for plan in plans]}


@router.get("/subscription")
async def get_subscription(
    ctx: RequestContext = Depends(get_current_user),
    guarded: GuardedActionService = Depends(get_guarded_actions),
    quota: QuotaEnforcer = Depends(get_quota),
):
    """Caller's subscription with entitlement flag and usage summary"""
    plan = await guarded.resolve_plan(ctx)
    kinds = ROLE_RESOURCE_KINDS.get(ctx.role, []) if ctx.role else []
    entitled = EntitlementGate.is_entitled(ctx.subscription)

    return {
        "subscription": _subscription_body(ctx.subscription),
        "entitled": entitled,
        "message": None if entitled else EntitlementGate.denial_message(ctx.subscription),
        "role": ctx.role.value if ctx.role else None,
        "roles": [r.value for r in ctx.roles],
        "plan": plan.to_dict() if plan else None,
        "usage": await quota.usage_summary(ctx.user_id, plan, kinds) if plan else {},
    }


@router.post("/subscription/free")
async def activate_free_plan(
    request: ActivateFreePlanRequest,
    ctx: RequestContext = Depends(get_current_user),
    catalog: PlanCatalog = Depends(get_catalog),
    subscriptions: SubscriptionRepository = Depends(get_subscriptions),
):
    plan = await catalog.get_plan(request.plan_id)
    if plan is None:
        raise HTTPException(status_code=404, detail="Plan not found")
    if ctx.role is not None and plan.role != ctx.role:
        raise HTTPException(status_code=400, detail=f"Plan {plan.id} is not available for your role.")

    try:
        subscription = await subscriptions.activate_free_plan(ctx.user_id, plan)
    except SubscriptionChangeError as e:
        raise HTTPException(status_code=400, detail=e.message)

    return {"success": True, "subscription": _subscription_body(subscription)}


# ============================================================================
# Admin Routes
# ============================================================================

@router.put("/admin/plans/{plan_id}")
async def upsert_plan(
    plan_id: str,
    request: PlanUpsertRequest,
    admin: RequestContext = Depends(require_admin),
    catalog: PlanCatalog = Depends(get_catalog),
):
    plan = Plan(
        id=plan_id,
        role=request.role,
        name=request.name,
        price=request.price,
        currency=request.currency,
        duration_days=request.duration_days,
        features=request.features,
        usage_limits={
            kind: UsageLimit(daily=limit.daily, monthly=limit.monthly)
            for kind, limit in request.usage_limits.items()
        },
        yearly_price=request.yearly_price,
        yearly_discount_percent=request.yearly_discount_percent,
        yearly_duration_days=request.yearly_duration_days,
        active=request.active,
    )
    await catalog.upsert_plan(plan)
    return {"success": True, "plan": plan.to_dict()}


@router.post("/admin/plans/seed")
async def seed_plans(
    admin: RequestContext = Depends(require_admin),
    catalog: PlanCatalog = Depends(get_catalog),
):
    written = await catalog.seed_defaults()
    return {"success": True, "written": written}


@router.put("/admin/subscriptions/{user_id}")
async def override_subscription(
    user_id: str,
    request: SubscriptionOverrideRequest,
    admin: RequestContext = Depends(require_admin),
    catalog: PlanCatalog = Depends(get_catalog),
    subscriptions: SubscriptionRepository = Depends(get_subscriptions),
):
    if request.plan_id is not None and await catalog.get_plan(request.plan_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Plan not found")

    subscription = await subscriptions.admin_set(
        user_id,
        request.status,
        plan_id=request.plan_id,
        role=request.role,
        expires_at=parse_datetime(request.expires_at),
    )
    return {"success": True, "subscription": _subscription_body(subscription)}
