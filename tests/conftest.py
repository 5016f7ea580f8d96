#!/usr/bin/env python3
"""
Pytest Configuration and Shared Fixtures

Provides shared fixtures and configuration for all tests.
"""

import pytest
import sys
import os
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from entitlements.models import (
    RequestContext,
    Role,
    SubscriptionState,
    SubscriptionStatus,
)
from entitlements.payment_gateway import RAZORPAY_SETTINGS_DOC, SETTINGS_COLLECTION
from entitlements.payment_orders import PaymentOrderService
from entitlements.plan_catalog import DEFAULT_PLANS, PLANS_COLLECTION, PlanCatalog
from entitlements.role_unlock import RoleUnlockService
from entitlements.subscription_state import SUBSCRIPTIONS_COLLECTION, SubscriptionRepository
from entitlements.usage_tracker import QuotaEnforcer, UsageCounterStore
from entitlements.guarded_actions import GuardedActionService
from tests.fakes import FakeGateway, InMemoryDocumentStore, TOKENS, TEST_KEY_ID, TEST_KEY_SECRET


# ============================================================================
# ASYNCIO CONFIGURATION
# ============================================================================
# Note: pytest-asyncio is configured with asyncio_mode = "auto" in pyproject.toml
# The event loop is automatically managed per-function by default


# ============================================================================
# CLOCK
# ============================================================================

@pytest.fixture
def now():
    """Fixed UTC instant used by service-level tests"""
    return datetime(2024, 5, 17, 12, 0, tzinfo=timezone.utc)


# ============================================================================
# STORE AND SERVICES
# ============================================================================

@pytest.fixture
def store():
    """In-memory store with the gateway keys configured in admin settings"""
    store = InMemoryDocumentStore()
    store.collections[SETTINGS_COLLECTION][RAZORPAY_SETTINGS_DOC] = {
        "enabled": True,
        "keyId": TEST_KEY_ID,
        "keySecret": TEST_KEY_SECRET,
    }
    return store


@pytest.fixture
def catalog(store):
    """Plan catalog holding the built-in default plans"""
    for plan in DEFAULT_PLANS:
        store.collections[PLANS_COLLECTION][plan.id] = plan.to_dict()
    return PlanCatalog(store)


@pytest.fixture
def subscriptions(store):
    return SubscriptionRepository(store)


@pytest.fixture
def quota(store):
    return QuotaEnforcer(UsageCounterStore(store))


@pytest.fixture
def unlocks(store):
    return RoleUnlockService(store)


@pytest.fixture
def guarded(catalog, quota):
    return GuardedActionService(catalog, quota)


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture
def payments(store, catalog, subscriptions, unlocks, fake_gateway):
    return PaymentOrderService(
        store,
        catalog,
        subscriptions,
        unlocks,
        gateway_factory=lambda config: fake_gateway,
    )


@pytest.fixture
def put_subscription(store):
    """Write a subscription record straight into the store"""
    def _put(user_id, status=SubscriptionStatus.ACTIVE, plan_id=None, role=Role.ASTROLOGER,
             expires_at=None, last_order_id=None):
        state = SubscriptionState(
            user_id=user_id,
            role=role,
            plan_id=plan_id,
            status=status,
            expires_at=expires_at,
            last_order_id=last_order_id,
        )
        store.collections[SUBSCRIPTIONS_COLLECTION][user_id] = state.to_dict()
        return state
    return _put


@pytest.fixture
def make_ctx(subscriptions):
    """Build a RequestContext the way the auth dependency does"""
    async def _make(user_id, role=Role.ASTROLOGER, now=None, is_admin=False):
        subscription = await subscriptions.load(user_id, now)
        return RequestContext(
            user_id=user_id,
            role=role,
            roles=[role] if role else [],
            is_admin=is_admin,
            subscription=subscription,
        )
    return _make


# ============================================================================
# API FIXTURES
# ============================================================================

@pytest.fixture
def app(store, catalog, fake_gateway):
    """FastAPI app wired to the in-memory store and fake gateway"""
    from api.main import app as fastapi_app
    from api.dependencies import get_gateway_factory, get_store

    fastapi_app.dependency_overrides[get_store] = lambda: store
    fastapi_app.dependency_overrides[get_gateway_factory] = lambda: (lambda config: fake_gateway)

    async def _verify(token):
        return TOKENS.get(token)

    with patch("api.middleware.auth.verify_firebase_token", AsyncMock(side_effect=_verify)):
        yield fastapi_app

    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    """Create a test client for the API"""
    from fastapi.testclient import TestClient
    return TestClient(app)


# ============================================================================
# PYTEST HOOKS
# ============================================================================

def pytest_configure(config):
    """Configure custom markers"""
    config.addinivalue_line("markers", "integration: tests that exercise several components together")
