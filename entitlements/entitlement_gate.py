"""
Entitlement Gate - coarse subscription check ahead of every gated action

Usage:
    if not EntitlementGate.is_entitled(ctx.subscription):
        return EntitlementGate.denial_message(ctx.subscription)

    # Or raise for route handlers
    EntitlementGate.require(ctx.subscription)

The gate fails closed: a missing record, an unknown status or an expiry in
the past (or exactly now) all deny access.
"""

from datetime import datetime
from typing import Optional

from entitlements.models import (
    ENTITLED_STATUSES,
    SubscriptionState,
    SubscriptionStatus,
    utcnow,
)


class EntitlementError(Exception):
    """Raised when the caller's subscription does not allow gated features"""

    def __init__(self, status: Optional[SubscriptionStatus], message: str):
        self.status = status
        self.message = message
        super().__init__(message)


class EntitlementGate:
    """Decides whether a subscription currently allows gated features"""

    EXPIRED_MESSAGE = "Your plan validity has ended. Please renew or upgrade to continue."
    INACTIVE_MESSAGE = "Your subscription is not active. Please activate or upgrade your plan."

    @classmethod
    def effective_status(
        cls,
        subscription: Optional[SubscriptionState],
        now: Optional[datetime] = None,
    ) -> SubscriptionStatus:
        if subscription is None:
            return SubscriptionStatus.INACTIVE
        if subscription.is_lapsed(now or utcnow()):
            return SubscriptionStatus.EXPIRED
        return subscription.status

    @classmethod
    def is_entitled(
        cls,
        subscription: Optional[SubscriptionState],
        now: Optional[datetime] = None,
    ) -> bool:
        if subscription is None:
            return False
        now = now or utcnow()
        if subscription.status not in ENTITLED_STATUSES:
            return False
        return not subscription.is_lapsed(now)

    @classmethod
    def denial_message(
        cls,
        subscription: Optional[SubscriptionState],
        now: Optional[datetime] = None,
    ) -> str:
        if cls.effective_status(subscription, now) == SubscriptionStatus.EXPIRED:
            return cls.EXPIRED_MESSAGE
        return cls.INACTIVE_MESSAGE

    @classmethod
    def require(
        cls,
        subscription: Optional[SubscriptionState],
        now: Optional[datetime] = None,
    ) -> None:
        """Raise EntitlementError unless the subscription is entitled"""
        if not cls.is_entitled(subscription, now):
            raise EntitlementError(
                cls.effective_status(subscription, now),
                cls.denial_message(subscription, now),
            )
