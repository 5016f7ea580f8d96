"""
Quota API Routes

Limit checks and usage commits for every quota-tracked resource kind:
- GET  /limits/{kind}     can the caller create/publish another one
- POST /usage/{kind}      count a create/publish the client confirmed
- POST /usage/{kind}/release   free an active slot of a held kind
- POST /resources/{kind}  guarded server-side create
- DELETE /resources/{kind}/{id}  delete own resource, freeing its slot
- POST /content/validate  content safety pre-check
"""

import uuid
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from api.dependencies import get_guarded_actions, get_quota, get_store, get_validator
from api.middleware.auth import get_current_user
from entitlements.content_safety import ContentSafetyValidator
from entitlements.document_store import DocumentStore
from entitlements.guarded_actions import ActionOutcome, ActionStatus, GuardedActionService
from entitlements.models import RequestContext, ResourceKind, utcnow
from entitlements.usage_tracker import QuotaEnforcer

router = APIRouter()

_DENIAL_STATUS = {
    ActionStatus.KIND_NOT_AVAILABLE: status.HTTP_403_FORBIDDEN,
    ActionStatus.NOT_ENTITLED: status.HTTP_403_FORBIDDEN,
    ActionStatus.QUOTA_EXCEEDED: status.HTTP_429_TOO_MANY_REQUESTS,
    ActionStatus.CONTENT_REJECTED: status.HTTP_422_UNPROCESSABLE_ENTITY,
}


# ============================================================================
# Request/Response Models
# ============================================================================

class UsageCommitRequest(BaseModel):
    """Confirmation that a resource was created or published"""
    content: Optional[str] = Field(None, description="Published text, screened for prohibited claims")


class ResourceCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    content: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)


class ContentValidateRequest(BaseModel):
    text: str


class ContentValidateResponse(BaseModel):
    valid: bool
    reason: Optional[str] = None


# ============================================================================
# Helpers
# ============================================================================

def _parse_kind(kind: str) -> ResourceKind:
    try:
        return ResourceKind(kind)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown resource kind: {kind}")


def _limit_response(outcome: ActionOutcome) -> Dict[str, Any]:
    body = outcome.to_dict()
    flag = "canPublish" if outcome.kind.published else "canCreate"
    body[flag] = outcome.allowed
    return body


def _raise_denial(outcome: ActionOutcome):
    raise HTTPException(
        status_code=_DENIAL_STATUS.get(outcome.status, status.HTTP_403_FORBIDDEN),
        detail=_limit_response(outcome),
    )


# ============================================================================
# Routes
# ============================================================================

@router.get("/limits/{kind}")
async def check_limit(
    kind: str,
    ctx: RequestContext = Depends(get_current_user),
    guarded: GuardedActionService = Depends(get_guarded_actions),
):
    """Check whether the caller can create/publish another resource of this kind."""
    outcome = await guarded.check(ctx, _parse_kind(kind))
    return _limit_response(outcome)


@router.post("/usage/{kind}")
async def commit_usage(
    kind: str,
    request: Optional[UsageCommitRequest] = None,
    ctx: RequestContext = Depends(get_current_user),
    guarded: GuardedActionService = Depends(get_guarded_actions),
    quota: QuotaEnforcer = Depends(get_quota),
):
    """
    Count one create/publish the client already persisted.

    Entitlement and quota are revalidated server-side before counting.
    """
    resource_kind = _parse_kind(kind)
    content = request.content if request else None

    outcome = await guarded.check(ctx, resource_kind, content)
    if not outcome.allowed:
        _raise_denial(outcome)

    await quota.commit_consumption(ctx.user_id, resource_kind)
    decision = await quota.can_consume(ctx.user_id, resource_kind, await guarded.resolve_plan(ctx))
    return {
        "success": True,
        "kind": resource_kind.value,
        "remaining": decision.remaining,
        "limit": decision.limit,
    }


@router.post("/usage/{kind}/release")
async def release_usage(
    kind: str,
    ctx: RequestContext = Depends(get_current_user),
    guarded: GuardedActionService = Depends(get_guarded_actions),
):
    """Give back an active slot after the client removed a held resource."""
    resource_kind = _parse_kind(kind)
    if not resource_kind.held:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{resource_kind.label.capitalize()} do not hold active slots",
        )

    active = await guarded.release(ctx, resource_kind)
    return {"success": True, "kind": resource_kind.value, "active": active}


@router.post("/resources/{kind}", status_code=status.HTTP_201_CREATED)
async def create_resource(
    kind: str,
    request: ResourceCreateRequest,
    ctx: RequestContext = Depends(get_current_user),
    guarded: GuardedActionService = Depends(get_guarded_actions),
    store: DocumentStore = Depends(get_store),
):
    """Create a resource with every entitlement, quota and content check applied."""
    resource_kind = _parse_kind(kind)
    resource_id = uuid.uuid4().hex

    async def persist():
        document = {
            "id": resource_id,
            "ownerId": ctx.user_id,
            "role": ctx.role.value if ctx.role else None,
            "title": request.title,
            "content": request.content,
            "data": request.data,
            "published": resource_kind.published,
            "createdAt": utcnow(),
        }
        await store.set(resource_kind.value, resource_id, document)
        return document

    outcome = await guarded.run(ctx, resource_kind, persist, content=request.content)
    if not outcome.allowed:
        _raise_denial(outcome)

    body = _limit_response(outcome)
    body["id"] = resource_id
    return body


@router.delete("/resources/{kind}/{resource_id}")
async def delete_resource(
    kind: str,
    resource_id: str,
    ctx: RequestContext = Depends(get_current_user),
    guarded: GuardedActionService = Depends(get_guarded_actions),
    store: DocumentStore = Depends(get_store),
):
    """Delete one of the caller's resources, freeing its slot for held kinds."""
    resource_kind = _parse_kind(kind)
    document = await store.get(resource_kind.value, resource_id)
    if document is None or document.get("ownerId") != ctx.user_id:
        raise HTTPException(status_code=404, detail="Resource not found")

    async def remove():
        await store.delete(resource_kind.value, resource_id)

    active = None
    if resource_kind.held:
        active = await guarded.release(ctx, resource_kind, remove)
    else:
        await remove()
    return {"success": True, "id": resource_id, "kind": resource_kind.value, "active": active}


@router.post("/content/validate", response_model=ContentValidateResponse)
async def validate_content(
    request: ContentValidateRequest,
    ctx: RequestContext = Depends(get_current_user),
    validator: ContentSafetyValidator = Depends(get_validator),
):
    result = validator.validate(request.text)
    return ContentValidateResponse(valid=result.valid, reason=result.reason)
