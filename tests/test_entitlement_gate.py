#!/usr/bin/env python3
"""
Entitlement Gate and Subscription State Tests

Tests for:
- Fail-closed entitlement decisions
- Lazy expiry on read
- Purchases, renewals, free plans and admin overrides
"""

import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest

from entitlements.entitlement_gate import EntitlementError, EntitlementGate
from entitlements.models import (
    BillingCycle,
    Plan,
    ResourceKind,
    Role,
    SubscriptionState,
    SubscriptionStatus,
)
from entitlements.subscription_state import SUBSCRIPTIONS_COLLECTION, SubscriptionChangeError


class TestEntitlementGate:
    """Tests for EntitlementGate.is_entitled"""

    def test_missing_record_is_denied(self, now):
        assert EntitlementGate.is_entitled(None, now) is False
        assert EntitlementGate.denial_message(None, now) == EntitlementGate.INACTIVE_MESSAGE

    @pytest.mark.parametrize("status", [SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIAL])
    def test_entitled_statuses(self, status, now):
        sub = SubscriptionState("u1", status=status, expires_at=now + timedelta(days=1))
        assert EntitlementGate.is_entitled(sub, now) is True

    @pytest.mark.parametrize("status", [SubscriptionStatus.INACTIVE, SubscriptionStatus.EXPIRED])
    def test_other_statuses_denied(self, status, now):
        sub = SubscriptionState("u1", status=status, expires_at=now + timedelta(days=1))
        assert EntitlementGate.is_entitled(sub, now) is False

    def test_no_expiry_is_entitled(self, now):
        sub = SubscriptionState("u1", status=SubscriptionStatus.ACTIVE, expires_at=None)
        assert EntitlementGate.is_entitled(sub, now) is True

    def test_past_expiry_denied_even_if_active(self, now):
        sub = SubscriptionState("u1", status=SubscriptionStatus.ACTIVE, expires_at=now - timedelta(seconds=1))
        assert EntitlementGate.is_entitled(sub, now) is False
        assert EntitlementGate.effective_status(sub, now) == SubscriptionStatus.EXPIRED
        assert EntitlementGate.denial_message(sub, now) == EntitlementGate.EXPIRED_MESSAGE

    def test_expiry_at_exactly_now_denied(self, now):
        sub = SubscriptionState("u1", status=SubscriptionStatus.ACTIVE, expires_at=now)
        assert sub.is_lapsed(now) is True
        assert EntitlementGate.is_entitled(sub, now) is False
        assert EntitlementGate.effective_status(sub, now) == SubscriptionStatus.EXPIRED

    def test_require_raises_with_status(self, now):
        sub = SubscriptionState("u1", status=SubscriptionStatus.INACTIVE)
        with pytest.raises(EntitlementError) as exc_info:
            EntitlementGate.require(sub, now)
        assert exc_info.value.status == SubscriptionStatus.INACTIVE


class TestLazyExpiry:
    """Tests for SubscriptionRepository.load"""

    async def test_missing_subscription(self, subscriptions, now):
        assert await subscriptions.load("nobody", now) is None

    async def test_lapsed_trial_is_corrected_on_read(self, subscriptions, put_subscription, store, now):
        put_subscription("u1", status=SubscriptionStatus.TRIAL, expires_at=now - timedelta(days=1))

        sub = await subscriptions.load("u1", now)

        assert sub.status == SubscriptionStatus.EXPIRED
        assert EntitlementGate.is_entitled(sub, now) is False
        assert store.docs(SUBSCRIPTIONS_COLLECTION)["u1"]["status"] == "expired"

    async def test_valid_subscription_not_rewritten(self, subscriptions, put_subscription, store, now):
        put_subscription("u1", status=SubscriptionStatus.ACTIVE, expires_at=now + timedelta(days=3))

        sub = await subscriptions.load("u1", now)

        assert sub.status == SubscriptionStatus.ACTIVE
        assert store.write_count(SUBSCRIPTIONS_COLLECTION) == 0

    async def test_iso_string_timestamps_are_read(self, subscriptions, store, now):
        store.collections[SUBSCRIPTIONS_COLLECTION]["u1"] = {
            "status": "active",
            "planId": "astrologer_pro",
            "role": "astrologer",
            "expiresAt": "2024-05-10T00:00:00Z",
        }
        sub = await subscriptions.load("u1", now)
        assert sub.status == SubscriptionStatus.EXPIRED


class TestApplyPurchase:
    """Tests for SubscriptionRepository.apply_purchase"""

    async def test_new_subscription_starts_now(self, subscriptions, catalog, now):
        plan = await catalog.get_plan("astrologer_pro")

        sub = await subscriptions.apply_purchase("u1", plan, BillingCycle.MONTHLY, "order-1", now)

        assert sub.status == SubscriptionStatus.ACTIVE
        assert sub.plan_id == "astrologer_pro"
        assert sub.role == Role.ASTROLOGER
        assert sub.expires_at == now + timedelta(days=30)
        assert sub.last_order_id == "order-1"

    async def test_renewal_extends_from_current_expiry(self, subscriptions, catalog, put_subscription, now):
        plan = await catalog.get_plan("astrologer_pro")
        current_expiry = now + timedelta(days=10)
        put_subscription("u1", plan_id="astrologer_pro", expires_at=current_expiry, last_order_id="order-0")

        sub = await subscriptions.apply_purchase("u1", plan, BillingCycle.MONTHLY, "order-1", now)

        assert sub.expires_at == current_expiry + timedelta(days=30)

    async def test_plan_change_anchors_at_now(self, subscriptions, catalog, put_subscription, now):
        plan = await catalog.get_plan("astrologer_pro")
        put_subscription("u1", plan_id="astrologer_free", expires_at=now + timedelta(days=10))

        sub = await subscriptions.apply_purchase("u1", plan, BillingCycle.MONTHLY, "order-1", now)

        assert sub.expires_at == now + timedelta(days=30)

    async def test_yearly_uses_yearly_duration(self, subscriptions, catalog, now):
        plan = await catalog.get_plan("astrologer_pro")
        sub = await subscriptions.apply_purchase("u1", plan, BillingCycle.YEARLY, "order-1", now)
        assert sub.expires_at == now + timedelta(days=365)

    async def test_same_order_applied_once(self, subscriptions, catalog, now):
        plan = await catalog.get_plan("astrologer_pro")

        first = await subscriptions.apply_purchase("u1", plan, BillingCycle.MONTHLY, "order-1", now)
        second = await subscriptions.apply_purchase("u1", plan, BillingCycle.MONTHLY, "order-1", now)

        assert second.expires_at == first.expires_at

    async def test_concurrent_orders_both_extend(self, subscriptions, catalog, store, now):
        plan = await catalog.get_plan("astrologer_pro")
        store.yield_io = True

        await asyncio.gather(
            subscriptions.apply_purchase("u1", plan, BillingCycle.MONTHLY, "order-1", now),
            subscriptions.apply_purchase("u1", plan, BillingCycle.MONTHLY, "order-2", now),
        )

        sub = await subscriptions.load("u1", now)
        assert sub.expires_at == now + timedelta(days=60)

    async def test_lapsed_record_restarts_at_now(self, subscriptions, catalog, put_subscription, store, now):
        plan = await catalog.get_plan("astrologer_pro")
        put_subscription("u1", plan_id="astrologer_pro", expires_at=now - timedelta(days=3),
                         last_order_id="order-0")

        sub = await subscriptions.apply_purchase("u1", plan, BillingCycle.MONTHLY, "order-1", now)

        assert sub.expires_at == now + timedelta(days=30)
        assert store.docs(SUBSCRIPTIONS_COLLECTION)["u1"]["status"] == "active"


class TestFreePlanAndOverrides:

    async def test_activate_free_plan(self, subscriptions, catalog, now):
        plan = await catalog.get_plan("astrologer_free")
        sub = await subscriptions.activate_free_plan("u1", plan, now)

        assert sub.status == SubscriptionStatus.ACTIVE
        assert sub.expires_at == now + timedelta(days=plan.duration_days)

    async def test_paid_plan_cannot_be_activated_free(self, subscriptions, catalog, now):
        plan = await catalog.get_plan("astrologer_pro")
        with pytest.raises(SubscriptionChangeError):
            await subscriptions.activate_free_plan("u1", plan, now)

    async def test_running_paid_plan_not_replaced(self, subscriptions, catalog, put_subscription, now):
        put_subscription("u1", plan_id="astrologer_pro", expires_at=now + timedelta(days=5),
                         last_order_id="order-1")
        plan = await catalog.get_plan("astrologer_free")

        with pytest.raises(SubscriptionChangeError):
            await subscriptions.activate_free_plan("u1", plan, now)

    async def test_free_plans_switch_after_paid_plan_lapsed(self, subscriptions, catalog, put_subscription, now):
        put_subscription("u1", plan_id="astrologer_pro", expires_at=now - timedelta(days=1),
                         last_order_id="o1")

        first = await subscriptions.activate_free_plan("u1", await catalog.get_plan("astrologer_free"), now)
        second = await subscriptions.activate_free_plan("u1", await catalog.get_plan("teacher_free"), now)

        assert first.last_order_id is None
        assert second.plan_id == "teacher_free"
        assert second.role == Role.TEACHER
        assert second.status == SubscriptionStatus.ACTIVE

    async def test_free_plans_switch_freely(self, subscriptions, catalog, now):
        await subscriptions.activate_free_plan("u1", await catalog.get_plan("doctor_free"), now)
        sub = await subscriptions.activate_free_plan("u1", await catalog.get_plan("artist_free"), now)
        assert sub.plan_id == "artist_free"

    async def test_admin_override(self, subscriptions, now):
        sub = await subscriptions.admin_set(
            "u1", SubscriptionStatus.TRIAL, plan_id="doctor_pro", role=Role.DOCTOR,
            expires_at=now + timedelta(days=7), now=now,
        )
        assert sub.status == SubscriptionStatus.TRIAL
        assert sub.role == Role.DOCTOR
        assert EntitlementGate.is_entitled(sub, now)

    async def test_admin_plan_change_clears_order(self, subscriptions, put_subscription, catalog, now):
        put_subscription("u1", plan_id="astrologer_pro", expires_at=now + timedelta(days=5),
                         last_order_id="order-1")

        sub = await subscriptions.admin_set(
            "u1", SubscriptionStatus.ACTIVE, plan_id="astrologer_free",
            expires_at=now + timedelta(days=30), now=now,
        )
        assert sub.last_order_id is None

        switched = await subscriptions.activate_free_plan("u1", await catalog.get_plan("teacher_free"), now)
        assert switched.plan_id == "teacher_free"


class TestPlanModel:

    def test_yearly_amount_uses_discount_from_plan(self):
        plan = Plan(id="p", role=Role.ARTIST, name="P", price=Decimal("100"), yearly_discount_percent=20)
        assert plan.amount_for(BillingCycle.YEARLY) == Decimal("960.00")

    def test_explicit_yearly_price_wins(self):
        plan = Plan(id="p", role=Role.ARTIST, name="P", price=Decimal("100"),
                    yearly_price=Decimal("999.50"), yearly_discount_percent=20)
        assert plan.amount_for(BillingCycle.YEARLY) == Decimal("999.50")

    def test_duration_must_be_positive(self):
        with pytest.raises(ValueError):
            Plan(id="p", role=Role.ARTIST, name="P", price=Decimal("1"), duration_days=0)

    def test_round_trip_keeps_limits(self):
        plan = Plan.from_dict({
            "id": "p",
            "role": "doctor",
            "name": "P",
            "price": 49.99,
            "usageLimits": {"articles": {"monthly": 4}, "unknown_kind": {"monthly": 1}},
        })
        assert plan.price == Decimal("49.99")
        assert plan.limit_for(ResourceKind.ARTICLES).monthly == 4
        assert set(plan.usage_limits) == {ResourceKind.ARTICLES}
        assert Plan.from_dict(plan.to_dict()).usage_limits == plan.usage_limits
