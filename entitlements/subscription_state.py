"""
Subscription State

Loads and mutates the per-user subscription record in the subscriptions
collection.

Expiry is lazy: a record that is still "active" or "trial" past its
expiresAt is corrected to "expired" the first time it is read. There is no
background sweep.

Mutations come only from payment settlement, free plan activation and the
admin override.
"""

from datetime import datetime, timedelta
from typing import Optional

from entitlements.document_store import DocumentStore
from entitlements.models import (
    BillingCycle,
    ENTITLED_STATUSES,
    Plan,
    Role,
    SubscriptionState,
    SubscriptionStatus,
    utcnow,
)
from utils.logger import logger

SUBSCRIPTIONS_COLLECTION = "subscriptions"


class SubscriptionChangeError(Exception):
    """Raised when a requested subscription change is not allowed"""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class SubscriptionRepository:
    """Reads and writes subscription records"""

    def __init__(self, store: DocumentStore):
        self.store = store

    async def load(self, user_id: str, now: Optional[datetime] = None) -> Optional[SubscriptionState]:
        """Load a subscription, expiring it in place if its end date has passed."""
        data = await self.store.get(SUBSCRIPTIONS_COLLECTION, user_id)
        if data is None:
            return None

        now = now or utcnow()
        subscription = SubscriptionState.from_dict(user_id, data)

        if subscription.is_lapsed(now):
            logger.info(
                f"Subscription for {user_id} lapsed at {subscription.expires_at.isoformat()}, "
                f"marking expired"
            )
            subscription.status = SubscriptionStatus.EXPIRED
            subscription.updated_at = now
            await self.store.update(SUBSCRIPTIONS_COLLECTION, user_id, {
                "status": SubscriptionStatus.EXPIRED.value,
                "updatedAt": now,
            })

        return subscription

    async def save(self, subscription: SubscriptionState) -> None:
        await self.store.set(SUBSCRIPTIONS_COLLECTION, subscription.user_id, subscription.to_dict())

    async def apply_purchase(
        self,
        user_id: str,
        plan: Plan,
        cycle: BillingCycle,
        order_id: str,
        now: Optional[datetime] = None,
    ) -> SubscriptionState:
        """
        Extend or start a subscription for a verified order.

        The read and the write happen in one store transaction, so two
        orders settling at the same time both extend the record. Applying
        the same order twice is a no-op. Renewing the same plan before it
        runs out extends from the current expiry.
        """
        now = now or utcnow()
        outcome = {}

        def _extend(data):
            current = SubscriptionState.from_dict(user_id, data) if data else None
            if current is not None and current.is_lapsed(now):
                current.status = SubscriptionStatus.EXPIRED

            if current is not None and current.last_order_id == order_id:
                outcome["subscription"] = current
                outcome["applied"] = False
                return None

            renewing = (
                current is not None
                and current.plan_id == plan.id
                and current.status in ENTITLED_STATUSES
                and current.expires_at is not None
                and current.expires_at > now
            )
            anchor = current.expires_at if renewing else now

            subscription = SubscriptionState(
                user_id=user_id,
                role=plan.role,
                plan_id=plan.id,
                status=SubscriptionStatus.ACTIVE,
                expires_at=anchor + timedelta(days=plan.duration_for(cycle)),
                started_at=current.started_at if renewing else now,
                last_order_id=order_id,
                updated_at=now,
            )
            outcome["subscription"] = subscription
            outcome["applied"] = True
            return subscription.to_dict()

        await self.store.transact(SUBSCRIPTIONS_COLLECTION, user_id, _extend)
        subscription = outcome["subscription"]

        if not outcome["applied"]:
            logger.info(f"Order {order_id} already applied to subscription of {user_id}")
        else:
            logger.info(
                f"Subscription for {user_id} set to {plan.id} ({cycle.value}) "
                f"until {subscription.expires_at.isoformat()}"
            )
        return subscription

    async def activate_free_plan(
        self,
        user_id: str,
        plan: Plan,
        now: Optional[datetime] = None,
    ) -> SubscriptionState:
        """Activate a zero-price plan without going through payment."""
        if not plan.is_free:
            raise SubscriptionChangeError("This plan requires payment.")
        if not plan.active:
            raise SubscriptionChangeError("This plan is no longer available.")

        now = now or utcnow()
        current = await self.load(user_id, now)

        # A running paid plan is never replaced by a free one. lastOrderId
        # names the order that bought the current plan, if any
        if (
            current is not None
            and current.plan_id != plan.id
            and current.last_order_id is not None
            and current.status in ENTITLED_STATUSES
        ):
            raise SubscriptionChangeError(
                "You already have an active paid plan. It will continue until it expires."
            )

        subscription = SubscriptionState(
            user_id=user_id,
            role=plan.role,
            plan_id=plan.id,
            status=SubscriptionStatus.ACTIVE,
            expires_at=now + timedelta(days=plan.duration_days),
            started_at=now,
            last_order_id=None,
            updated_at=now,
        )
        await self.save(subscription)
        logger.info(f"Free plan {plan.id} activated for {user_id}")
        return subscription

    async def admin_set(
        self,
        user_id: str,
        status: SubscriptionStatus,
        plan_id: Optional[str] = None,
        role: Optional[Role] = None,
        expires_at: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> SubscriptionState:
        """Admin override of a user's subscription record"""
        now = now or utcnow()
        data = await self.store.get(SUBSCRIPTIONS_COLLECTION, user_id)
        current = SubscriptionState.from_dict(user_id, data) if data else SubscriptionState(user_id=user_id)

        current.status = status
        if plan_id is not None and plan_id != current.plan_id:
            current.last_order_id = None
        current.plan_id = plan_id if plan_id is not None else current.plan_id
        current.role = role if role is not None else current.role
        current.expires_at = expires_at
        current.started_at = current.started_at or now
        current.updated_at = now

        await self.save(current)
        logger.info(f"Admin set subscription for {user_id}: {status.value} plan={current.plan_id}")
        return current
