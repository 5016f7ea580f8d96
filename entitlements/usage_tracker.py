"""
Usage Tracking and Quota Enforcement

Tracks per-user, per-kind, per-period counters and enforces plan quotas:
- can_consume() decides before any authoring side effect
- commit_consumption() counts only after the guarded write succeeded
- release() frees an active slot when a held resource is removed

Counters live in the usageCounters collection keyed by
"{userId}:{resourceKind}:{periodKey}". Period keys are UTC ("2024-05" for
monthly, "2024-05-17" for daily). A missing row reads as 0, rows are
created by the first atomic increment and never deleted, so period
rollover needs no sweep.

Held kinds (courses, students, projects, clients) additionally keep one
row per user and kind in activeCounters, keyed "{userId}:{resourceKind}".
It goes up on every commit and down on release, never below 0, and is
checked against the plan's maxActive.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List

from entitlements.document_store import DocumentStore
from entitlements.models import (
    Plan,
    PeriodGranularity,
    ResourceKind,
    utcnow,
)
from utils.logger import logger

COUNTERS_COLLECTION = "usageCounters"
ACTIVE_COLLECTION = "activeCounters"

_PERIOD_FORMATS = {
    PeriodGranularity.DAILY: "%Y-%m-%d",
    PeriodGranularity.MONTHLY: "%Y-%m",
}

_PERIOD_WORDS = {
    PeriodGranularity.DAILY: ("daily", "tomorrow"),
    PeriodGranularity.MONTHLY: ("monthly", "next month"),
}


def period_key(granularity: PeriodGranularity, now: Optional[datetime] = None) -> str:
    """Deterministic UTC period key for a usage window"""
    now = now or utcnow()
    if now.tzinfo is not None:
        now = now.astimezone(timezone.utc)
    return now.strftime(_PERIOD_FORMATS[granularity])


def counter_id(user_id: str, kind: ResourceKind, key: str) -> str:
    return f"{user_id}:{kind.value}:{key}"


def active_id(user_id: str, kind: ResourceKind) -> str:
    return f"{user_id}:{kind.value}"


@dataclass
class QuotaDecision:
    """Result of a quota check. A denial is a normal outcome, not an error."""
    allowed: bool
    kind: ResourceKind
    remaining: Optional[int] = None  # None means unbounded
    limit: Optional[int] = None
    used: int = 0
    granularity: Optional[PeriodGranularity] = None
    period_key: Optional[str] = None
    reason: Optional[str] = None
    capacity: bool = False

    @property
    def unbounded(self) -> bool:
        return self.limit is None

    @property
    def period(self) -> Optional[str]:
        """Window name: daily, monthly, or active for a capacity cap"""
        if self.capacity:
            return "active"
        return self.granularity.value if self.granularity else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed,
            "kind": self.kind.value,
            "remaining": self.remaining,
            "limit": self.limit,
            "used": self.used,
            "period": self.period,
            "periodKey": self.period_key,
            "reason": self.reason,
        }


def quota_message(kind: ResourceKind, limit: int, granularity: PeriodGranularity) -> str:
    adjective, upcoming = _PERIOD_WORDS[granularity]
    if limit == 0:
        return (
            f"Your current plan does not include {kind.label}. "
            f"Upgrade your plan to unlock it."
        )
    return (
        f"You've reached your {adjective} limit of {limit} {kind.label}. "
        f"It resets {upcoming}, or you can upgrade your plan now."
    )


def capacity_message(kind: ResourceKind, limit: int) -> str:
    if limit == 0:
        return (
            f"Your current plan does not include {kind.label}. "
            f"Upgrade your plan to unlock it."
        )
    return (
        f"You've reached your limit of {limit} active {kind.label}. "
        f"Remove one or upgrade your plan to add more."
    )


class UsageCounterStore:
    """Reads and atomically updates usage and active counters"""

    def __init__(self, store: DocumentStore):
        self.store = store

    async def get_count(self, user_id: str, kind: ResourceKind, key: str) -> int:
        data = await self.store.get(COUNTERS_COLLECTION, counter_id(user_id, kind, key))
        if not data:
            return 0
        return int(data.get("count", 0))

    async def increment(
        self,
        user_id: str,
        kind: ResourceKind,
        granularity: PeriodGranularity,
        key: str,
        now: Optional[datetime] = None,
    ) -> None:
        await self.store.increment(
            COUNTERS_COLLECTION,
            counter_id(user_id, kind, key),
            "count",
            1,
            extra={
                "userId": user_id,
                "resourceKind": kind.value,
                "periodKey": key,
                "granularity": granularity.value,
                "updatedAt": now or utcnow(),
            },
        )

    async def get_active(self, user_id: str, kind: ResourceKind) -> int:
        data = await self.store.get(ACTIVE_COLLECTION, active_id(user_id, kind))
        if not data:
            return 0
        return max(int(data.get("active", 0)), 0)

    async def increment_active(
        self,
        user_id: str,
        kind: ResourceKind,
        now: Optional[datetime] = None,
    ) -> None:
        await self.store.increment(
            ACTIVE_COLLECTION,
            active_id(user_id, kind),
            "active",
            1,
            extra={
                "userId": user_id,
                "resourceKind": kind.value,
                "updatedAt": now or utcnow(),
            },
        )

    async def release_active(
        self,
        user_id: str,
        kind: ResourceKind,
        now: Optional[datetime] = None,
    ) -> int:
        """Decrement the active count, flooring at 0. Returns the new count."""
        now = now or utcnow()

        def _decrement(data):
            if not data or int(data.get("active", 0)) <= 0:
                return None
            updated = dict(data)
            updated["active"] = int(data["active"]) - 1
            updated["updatedAt"] = now
            return updated

        data = await self.store.transact(ACTIVE_COLLECTION, active_id(user_id, kind), _decrement)
        if not data:
            return 0
        return max(int(data.get("active", 0)), 0)


class QuotaEnforcer:
    """
    Generic per-kind quota service.

    Every configured window of a kind (daily and/or monthly) must have
    room for the action to be allowed, and so must the active cap of a
    held kind.
    """

    def __init__(self, counters: UsageCounterStore):
        self.counters = counters

    async def can_consume(
        self,
        user_id: str,
        kind: ResourceKind,
        plan: Optional[Plan],
        now: Optional[datetime] = None,
    ) -> QuotaDecision:
        now = now or utcnow()
        limits = plan.limit_for(kind) if plan is not None else None
        windows = limits.configured() if limits is not None else []
        capacity = limits.capacity() if limits is not None and kind.held else None

        if not windows and capacity is None:
            return QuotaDecision(allowed=True, kind=kind)

        tightest: Optional[QuotaDecision] = None
        for granularity in windows:
            limit = limits.for_granularity(granularity)
            key = period_key(granularity, now)
            used = await self.counters.get_count(user_id, kind, key)
            remaining = max(limit - used, 0)
            decision = QuotaDecision(
                allowed=used < limit,
                kind=kind,
                remaining=remaining,
                limit=limit,
                used=used,
                granularity=granularity,
                period_key=key,
            )
            if not decision.allowed:
                decision.reason = quota_message(kind, limit, granularity)
                logger.debug(
                    f"Quota denied for {user_id}: {kind.value} {used}/{limit} ({key})"
                )
                return decision
            if tightest is None or remaining < tightest.remaining:
                tightest = decision

        if capacity is not None:
            active = await self.counters.get_active(user_id, kind)
            decision = QuotaDecision(
                allowed=active < capacity,
                kind=kind,
                remaining=max(capacity - active, 0),
                limit=capacity,
                used=active,
                capacity=True,
            )
            if not decision.allowed:
                decision.reason = capacity_message(kind, capacity)
                logger.debug(
                    f"Capacity denied for {user_id}: {kind.value} {active}/{capacity} active"
                )
                return decision
            if tightest is None or decision.remaining < tightest.remaining:
                tightest = decision

        return tightest

    async def commit_consumption(
        self,
        user_id: str,
        kind: ResourceKind,
        now: Optional[datetime] = None,
    ) -> None:
        """
        Count one confirmed create/publish.

        Both the daily and the monthly rows are incremented so counts stay
        correct if a plan changes the kind's granularity mid-period. Held
        kinds also take an active slot.
        """
        now = now or utcnow()
        for granularity in (PeriodGranularity.DAILY, PeriodGranularity.MONTHLY):
            await self.counters.increment(
                user_id, kind, granularity, period_key(granularity, now), now=now
            )
        if kind.held:
            await self.counters.increment_active(user_id, kind, now=now)

    async def release(
        self,
        user_id: str,
        kind: ResourceKind,
        now: Optional[datetime] = None,
    ) -> int:
        """
        Free one active slot of a held kind.

        Period counters are untouched: removing a resource does not give
        back this month's quota. Returns the remaining active count.
        """
        if not kind.held:
            raise ValueError(f"{kind.value} does not hold active slots")
        active = await self.counters.release_active(user_id, kind, now)
        logger.info(f"Released one {kind.value} slot for {user_id}, {active} active")
        return active

    async def usage_summary(
        self,
        user_id: str,
        plan: Optional[Plan],
        kinds: List[ResourceKind],
        now: Optional[datetime] = None,
    ) -> Dict[str, Dict[str, Any]]:
        now = now or utcnow()
        summary = {}
        for kind in kinds:
            decision = await self.can_consume(user_id, kind, plan, now)
            summary[kind.value] = decision.to_dict()
        return summary
