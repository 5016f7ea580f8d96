#!/usr/bin/env python3
"""
Role Unlock and Enrollment Tests
"""

import asyncio

import pytest

from entitlements.models import Role
from entitlements.role_unlock import (
    DASHBOARD_REDIRECTS,
    ENROLLMENTS_COLLECTION,
    UNLOCKS_COLLECTION,
    USERS_COLLECTION,
)


class TestUnlockRole:

    async def test_first_unlock_creates_record_and_grants_role(self, unlocks, store, now):
        result = await unlocks.unlock_role("u1", Role.TEACHER, "c1", now)

        assert result.already_unlocked is False
        assert result.redirect_role == "music_teacher"
        record = store.docs(UNLOCKS_COLLECTION)["u1:teacher"]
        assert record["sourceCourseId"] == "c1"
        assert record["unlockedRole"] == "teacher"
        assert store.docs(USERS_COLLECTION)["u1"]["roles"] == ["teacher"]

    async def test_second_unlock_is_noop(self, unlocks, store, now):
        await unlocks.unlock_role("u1", Role.TEACHER, "c1", now)
        result = await unlocks.unlock_role("u1", Role.TEACHER, "c2", now)

        assert result.already_unlocked is True
        assert len(store.docs(UNLOCKS_COLLECTION)) == 1
        assert store.docs(UNLOCKS_COLLECTION)["u1:teacher"]["sourceCourseId"] == "c1"
        assert store.docs(USERS_COLLECTION)["u1"]["roles"] == ["teacher"]

    async def test_concurrent_unlocks_create_one_record(self, unlocks, store, now):
        results = await asyncio.gather(*[
            unlocks.unlock_role("u1", Role.DOCTOR, "c1", now) for _ in range(5)
        ])

        assert [r.already_unlocked for r in results].count(False) == 1
        assert len(store.docs(UNLOCKS_COLLECTION)) == 1

    async def test_existing_roles_are_kept(self, unlocks, store, now):
        store.collections[USERS_COLLECTION]["u1"] = {"role": "artist", "roles": ["artist"]}

        await unlocks.unlock_role("u1", Role.ASTROLOGER, "c1", now)

        user = store.docs(USERS_COLLECTION)["u1"]
        assert user["roles"] == ["artist", "astrologer"]
        assert user["role"] == "artist"

    @pytest.mark.parametrize("role, redirect", [
        (Role.TEACHER, "music_teacher"),
        (Role.ARTIST, "artist"),
        (Role.DIRECTOR, "music_director"),
        (Role.DOCTOR, "music_therapy"),
        (Role.ASTROLOGER, "astrologer"),
    ])
    def test_redirect_table(self, role, redirect):
        assert DASHBOARD_REDIRECTS[role] == redirect


class TestEnrollment:

    async def test_enrollment_created_once(self, unlocks, store, now):
        assert await unlocks.grant_enrollment("u1", "c1", "order-1", now) is True
        assert await unlocks.grant_enrollment("u1", "c1", "order-2", now) is False

        enrollment = store.docs(ENROLLMENTS_COLLECTION)["u1:c1"]
        assert enrollment["orderId"] == "order-1"


class TestAssignRole:

    async def test_assign_sets_active_role(self, unlocks, store):
        store.collections[USERS_COLLECTION]["u1"] = {"role": "artist", "roles": ["artist"], "name": "Asha"}

        await unlocks.assign_role("u1", Role.DIRECTOR)

        user = store.docs(USERS_COLLECTION)["u1"]
        assert user["role"] == "director"
        assert user["roles"] == ["artist", "director"]
        assert user["name"] == "Asha"
