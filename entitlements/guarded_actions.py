"""
Guarded Actions

Runs a role-specific create/publish action through every check, in order:

    role/kind -> entitlement gate -> quota -> content safety (published kinds)
    -> persist (single write) -> commit consumption

persist runs only after every check passed, and consumption is committed
only after persist returned. If persist raises, nothing is counted.

Held kinds (courses, students, projects, clients) keep their slot until
release() is called for the removed resource.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from entitlements.content_safety import ContentSafetyValidator
from entitlements.entitlement_gate import EntitlementError, EntitlementGate
from entitlements.models import Plan, RequestContext, ResourceKind, SubscriptionState, utcnow
from entitlements.plan_catalog import PlanCatalog, kind_available_to
from entitlements.usage_tracker import QuotaDecision, QuotaEnforcer
from utils.logger import logger


class ActionStatus(str, Enum):
    ALLOWED = "allowed"
    CREATED = "created"
    KIND_NOT_AVAILABLE = "kind_not_available"
    NOT_ENTITLED = "not_entitled"
    QUOTA_EXCEEDED = "quota_exceeded"
    CONTENT_REJECTED = "content_rejected"


@dataclass
class ActionOutcome:
    status: ActionStatus
    kind: ResourceKind
    message: Optional[str] = None
    quota: Optional[QuotaDecision] = None
    resource: Any = None

    @property
    def allowed(self) -> bool:
        return self.status in (ActionStatus.ALLOWED, ActionStatus.CREATED)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "status": self.status.value,
            "kind": self.kind.value,
            "allowed": self.allowed,
            "error": None if self.allowed else self.message,
            "remaining": None,
            "limit": None,
            "period": None,
        }
        if self.quota is not None:
            data["remaining"] = self.quota.remaining
            data["limit"] = self.quota.limit
            data["period"] = self.quota.period
        return data


class GuardedActionService:
    """Applies entitlement, quota and content checks around a resource write"""

    def __init__(
        self,
        catalog: PlanCatalog,
        quota: QuotaEnforcer,
        validator: Optional[ContentSafetyValidator] = None,
    ):
        self.catalog = catalog
        self.quota = quota
        self.validator = validator or ContentSafetyValidator()

    async def resolve_plan(self, ctx: RequestContext) -> Optional[Plan]:
        """Plan governing the caller's quotas. No plan id means the role's free tier."""
        subscription: Optional[SubscriptionState] = ctx.subscription
        if subscription is not None and subscription.plan_id:
            plan = await self.catalog.get_plan(subscription.plan_id)
            if plan is not None:
                return plan
            logger.warning(
                f"Subscription of {ctx.user_id} references missing plan {subscription.plan_id}"
            )
        role = ctx.role or (subscription.role if subscription else None)
        if role is None:
            return None
        return await self.catalog.default_plan_for(role)

    async def check(
        self,
        ctx: RequestContext,
        kind: ResourceKind,
        content: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ActionOutcome:
        """Run every pre-write check without side effects on usage."""
        now = now or utcnow()

        if not kind_available_to(ctx.role, kind):
            return ActionOutcome(
                status=ActionStatus.KIND_NOT_AVAILABLE,
                kind=kind,
                message=f"{kind.label.capitalize()} are not available for your role.",
            )

        try:
            EntitlementGate.require(ctx.subscription, now)
        except EntitlementError as e:
            return ActionOutcome(status=ActionStatus.NOT_ENTITLED, kind=kind, message=e.message)

        plan = await self.resolve_plan(ctx)
        if plan is None:
            # No governing plan at all: deny rather than treat as unbounded
            return ActionOutcome(
                status=ActionStatus.NOT_ENTITLED,
                kind=kind,
                message=EntitlementGate.INACTIVE_MESSAGE,
            )

        decision = await self.quota.can_consume(ctx.user_id, kind, plan, now)
        if not decision.allowed:
            return ActionOutcome(
                status=ActionStatus.QUOTA_EXCEEDED,
                kind=kind,
                message=decision.reason,
                quota=decision,
            )

        if kind.published and content is not None:
            safety = self.validator.validate(content)
            if not safety.valid:
                return ActionOutcome(
                    status=ActionStatus.CONTENT_REJECTED,
                    kind=kind,
                    message=safety.reason,
                    quota=decision,
                )

        return ActionOutcome(status=ActionStatus.ALLOWED, kind=kind, quota=decision)

    async def run(
        self,
        ctx: RequestContext,
        kind: ResourceKind,
        persist: Callable[[], Awaitable[Any]],
        content: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ActionOutcome:
        """
        Perform a guarded create/publish.

        Args:
            ctx: Authenticated caller with the freshly loaded subscription
            kind: Resource kind being created or published
            persist: Coroutine factory performing the single resource write
            content: Text to screen for published kinds

        Returns:
            ActionOutcome with status CREATED and the persisted resource,
            or the first failed check
        """
        now = now or utcnow()
        if kind.published and content is None:
            content = ""

        outcome = await self.check(ctx, kind, content, now)
        if not outcome.allowed:
            logger.info(f"{kind.value} for {ctx.user_id} denied: {outcome.status.value}")
            return outcome

        resource = await persist()
        await self.quota.commit_consumption(ctx.user_id, kind, now)

        outcome.status = ActionStatus.CREATED
        outcome.resource = resource
        if outcome.quota is not None and outcome.quota.remaining is not None:
            outcome.quota.remaining = max(outcome.quota.remaining - 1, 0)
            outcome.quota.used += 1
        return outcome

    async def release(
        self,
        ctx: RequestContext,
        kind: ResourceKind,
        remove: Optional[Callable[[], Awaitable[Any]]] = None,
        now: Optional[datetime] = None,
    ) -> int:
        """
        Give back one active slot of a held kind.

        remove, when given, deletes the resource first. If it raises the
        slot stays taken. Returns the caller's remaining active count.
        """
        if not kind.held:
            raise ValueError(f"{kind.value} does not hold active slots")
        if remove is not None:
            await remove()
        return await self.quota.release(ctx.user_id, kind, now)
