#!/usr/bin/env python3
"""
Guarded Action Tests

Tests for:
- Quota exhaustion on publish
- Expired subscriptions at action time
- Role/kind availability and content screening
- Nothing is counted when a check or the write fails
"""

from datetime import timedelta

import pytest

from entitlements.entitlement_gate import EntitlementGate
from entitlements.guarded_actions import ActionStatus
from entitlements.models import ResourceKind, Role, SubscriptionStatus
from entitlements.subscription_state import SUBSCRIPTIONS_COLLECTION
from entitlements.usage_tracker import COUNTERS_COLLECTION


class Recorder:
    """persist callable that records every resource write"""

    def __init__(self, fail: bool = False):
        self.items = []
        self.fail = fail

    async def __call__(self):
        if self.fail:
            raise RuntimeError("write failed")
        self.items.append({"id": f"post-{len(self.items) + 1}"})
        return self.items[-1]


class TestPublishQuota:

    @pytest.mark.integration
    async def test_fourth_post_rejected_without_writes(self, guarded, store, put_subscription, make_ctx, now):
        """Astrologer on the free plan: three posts a month, the fourth is refused"""
        put_subscription("u1", plan_id="astrologer_free", expires_at=now + timedelta(days=20))
        ctx = await make_ctx("u1", now=now)
        persist = Recorder()

        for remaining in (2, 1, 0):
            outcome = await guarded.run(ctx, ResourceKind.POSTS, persist, "Mercury enters Gemini.", now)
            assert outcome.status == ActionStatus.CREATED
            assert outcome.quota.remaining == remaining

        writes_before = store.write_count()
        outcome = await guarded.run(ctx, ResourceKind.POSTS, persist, "Venus retrograde notes.", now)

        assert outcome.status == ActionStatus.QUOTA_EXCEEDED
        assert "monthly limit of 3 posts" in outcome.message
        assert len(persist.items) == 3
        assert store.write_count() == writes_before
        assert store.docs(COUNTERS_COLLECTION)["u1:posts:2024-05"]["count"] == 3

    async def test_check_does_not_consume(self, guarded, put_subscription, make_ctx, store, now):
        put_subscription("u1", plan_id="astrologer_free", expires_at=now + timedelta(days=20))
        ctx = await make_ctx("u1", now=now)

        for _ in range(5):
            assert (await guarded.check(ctx, ResourceKind.POSTS, now=now)).allowed
        assert store.write_count(COUNTERS_COLLECTION) == 0

    async def test_no_plan_id_uses_free_tier(self, guarded, put_subscription, make_ctx, now):
        put_subscription("u1", plan_id=None, expires_at=now + timedelta(days=20))
        ctx = await make_ctx("u1", now=now)

        outcome = await guarded.check(ctx, ResourceKind.POSTS, now=now)
        assert outcome.quota.limit == 3

    async def test_pro_plan_limits_apply(self, guarded, put_subscription, make_ctx, now):
        put_subscription("u1", plan_id="astrologer_pro", expires_at=now + timedelta(days=20))
        ctx = await make_ctx("u1", now=now)

        outcome = await guarded.check(ctx, ResourceKind.POSTS, now=now)
        assert outcome.quota.limit == 60


class TestEntitlementAtActionTime:

    @pytest.mark.integration
    async def test_lapsed_trial_denied_and_corrected(self, guarded, put_subscription, make_ctx, store, now):
        """Trial that ended yesterday: action denied, record now reads expired"""
        put_subscription("u1", status=SubscriptionStatus.TRIAL, plan_id="astrologer_pro",
                         expires_at=now - timedelta(days=1))
        ctx = await make_ctx("u1", now=now)
        persist = Recorder()

        outcome = await guarded.run(ctx, ResourceKind.READINGS, persist, now=now)

        assert outcome.status == ActionStatus.NOT_ENTITLED
        assert outcome.message == EntitlementGate.EXPIRED_MESSAGE
        assert persist.items == []
        assert store.docs(SUBSCRIPTIONS_COLLECTION)["u1"]["status"] == "expired"
        assert store.write_count(COUNTERS_COLLECTION) == 0

    async def test_missing_subscription_denied(self, guarded, make_ctx, now):
        ctx = await make_ctx("nobody", now=now)

        outcome = await guarded.check(ctx, ResourceKind.READINGS, now=now)

        assert outcome.status == ActionStatus.NOT_ENTITLED
        assert outcome.message == EntitlementGate.INACTIVE_MESSAGE

    async def test_no_role_cannot_act(self, guarded, put_subscription, make_ctx, now):
        put_subscription("u1", plan_id="astrologer_free", expires_at=now + timedelta(days=20))
        ctx = await make_ctx("u1", role=None, now=now)

        outcome = await guarded.check(ctx, ResourceKind.READINGS, now=now)
        assert outcome.status == ActionStatus.KIND_NOT_AVAILABLE


class TestKindsAndContent:

    async def test_kind_outside_role(self, guarded, put_subscription, make_ctx, now):
        put_subscription("u1", plan_id="astrologer_free", expires_at=now + timedelta(days=20))
        ctx = await make_ctx("u1", now=now)

        outcome = await guarded.check(ctx, ResourceKind.TRACK_UPLOADS, now=now)

        assert outcome.status == ActionStatus.KIND_NOT_AVAILABLE
        assert outcome.allowed is False

    async def test_rejected_content_consumes_nothing(self, guarded, put_subscription, make_ctx, store, now):
        put_subscription("u1", plan_id="astrologer_free", expires_at=now + timedelta(days=20))
        ctx = await make_ctx("u1", now=now)
        persist = Recorder()

        outcome = await guarded.run(
            ctx, ResourceKind.POSTS, persist, "This mantra is guaranteed to bring wealth", now
        )

        assert outcome.status == ActionStatus.CONTENT_REJECTED
        assert "guaranteed" in outcome.message
        assert persist.items == []
        assert store.write_count(COUNTERS_COLLECTION) == 0

    async def test_unpublished_kinds_are_not_screened(self, guarded, put_subscription, make_ctx, now):
        put_subscription("u1", plan_id="astrologer_free", expires_at=now + timedelta(days=20))
        ctx = await make_ctx("u1", now=now)

        outcome = await guarded.run(
            ctx, ResourceKind.READINGS, Recorder(), "guaranteed insights", now
        )
        assert outcome.status == ActionStatus.CREATED

    async def test_failed_write_is_not_counted(self, guarded, put_subscription, make_ctx, store, now):
        put_subscription("u1", plan_id="astrologer_free", expires_at=now + timedelta(days=20))
        ctx = await make_ctx("u1", now=now)

        with pytest.raises(RuntimeError):
            await guarded.run(ctx, ResourceKind.POSTS, Recorder(fail=True), "Full moon in Scorpio", now)

        assert store.write_count(COUNTERS_COLLECTION) == 0

    async def test_outcome_dict(self, guarded, put_subscription, make_ctx, now):
        put_subscription("u1", plan_id="doctor_free", role=Role.DOCTOR,
                         expires_at=now + timedelta(days=20))
        ctx = await make_ctx("u1", role=Role.DOCTOR, now=now)

        data = (await guarded.check(ctx, ResourceKind.ARTICLES, now=now)).to_dict()

        assert data == {
            "status": "allowed",
            "kind": "articles",
            "allowed": True,
            "error": None,
            "remaining": 2,
            "limit": 2,
            "period": "monthly",
        }


class TestHeldResources:

    async def test_teacher_student_cap_and_release(self, guarded, put_subscription, make_ctx, now):
        """Free teacher: five students at a time, removing one makes room"""
        put_subscription("u1", plan_id="teacher_free", role=Role.TEACHER,
                         expires_at=now + timedelta(days=20))
        ctx = await make_ctx("u1", role=Role.TEACHER, now=now)
        persist = Recorder()

        for _ in range(5):
            assert (await guarded.run(ctx, ResourceKind.STUDENTS, persist, now=now)).allowed

        outcome = await guarded.run(ctx, ResourceKind.STUDENTS, persist, now=now)
        assert outcome.status == ActionStatus.QUOTA_EXCEEDED
        assert outcome.to_dict()["period"] == "active"
        assert len(persist.items) == 5

        removed = []

        async def remove():
            removed.append(persist.items.pop())

        assert await guarded.release(ctx, ResourceKind.STUDENTS, remove, now) == 4
        assert len(removed) == 1
        assert (await guarded.run(ctx, ResourceKind.STUDENTS, persist, now=now)).status == ActionStatus.CREATED

    async def test_failed_remove_keeps_slot(self, guarded, put_subscription, make_ctx, now):
        put_subscription("u1", plan_id="director_free", role=Role.DIRECTOR,
                         expires_at=now + timedelta(days=20))
        ctx = await make_ctx("u1", role=Role.DIRECTOR, now=now)
        await guarded.run(ctx, ResourceKind.PROJECTS, Recorder(), now=now)

        async def remove():
            raise RuntimeError("delete failed")

        with pytest.raises(RuntimeError):
            await guarded.release(ctx, ResourceKind.PROJECTS, remove, now)

        outcome = await guarded.check(ctx, ResourceKind.PROJECTS, now=now)
        assert outcome.status == ActionStatus.QUOTA_EXCEEDED
        assert "1 active projects" in outcome.message

    async def test_pro_astrologer_clients_unbounded(self, guarded, put_subscription, make_ctx, now):
        put_subscription("u1", plan_id="astrologer_pro", expires_at=now + timedelta(days=20))
        ctx = await make_ctx("u1", now=now)

        for _ in range(12):
            await guarded.run(ctx, ResourceKind.CLIENTS, Recorder(), now=now)

        outcome = await guarded.check(ctx, ResourceKind.CLIENTS, now=now)
        assert outcome.allowed
        assert outcome.quota.unbounded

    async def test_release_rejects_kinds_that_are_not_held(self, guarded, make_ctx, now):
        ctx = await make_ctx("u1", now=now)
        with pytest.raises(ValueError):
            await guarded.release(ctx, ResourceKind.POSTS, now=now)
