"""
Service wiring for route handlers

Every service is built per request from the shared document store, so
tests can swap the store or the gateway through app.dependency_overrides.
"""

from typing import Callable

from fastapi import Depends

from entitlements.content_safety import ContentSafetyValidator
from entitlements.document_store import DocumentStore, get_document_store
from entitlements.guarded_actions import GuardedActionService
from entitlements.payment_gateway import GatewayConfig, PaymentGateway, RazorpayGateway
from entitlements.payment_orders import PaymentOrderService
from entitlements.plan_catalog import PlanCatalog
from entitlements.role_unlock import RoleUnlockService
from entitlements.subscription_state import SubscriptionRepository
from entitlements.usage_tracker import QuotaEnforcer, UsageCounterStore

_validator = ContentSafetyValidator()


def get_store() -> DocumentStore:
    return get_document_store()


def get_gateway_factory() -> Callable[[GatewayConfig], PaymentGateway]:
    return RazorpayGateway


def get_validator() -> ContentSafetyValidator:
    return _validator


def get_catalog(store: DocumentStore = Depends(get_store)) -> PlanCatalog:
    return PlanCatalog(store)


def get_subscriptions(store: DocumentStore = Depends(get_store)) -> SubscriptionRepository:
    return SubscriptionRepository(store)


def get_quota(store: DocumentStore = Depends(get_store)) -> QuotaEnforcer:
    return QuotaEnforcer(UsageCounterStore(store))


def get_guarded_actions(
    catalog: PlanCatalog = Depends(get_catalog),
    quota: QuotaEnforcer = Depends(get_quota),
    validator: ContentSafetyValidator = Depends(get_validator),
) -> GuardedActionService:
    return GuardedActionService(catalog, quota, validator)


def get_payment_orders(
    store: DocumentStore = Depends(get_store),
    catalog: PlanCatalog = Depends(get_catalog),
    subscriptions: SubscriptionRepository = Depends(get_subscriptions),
    gateway_factory: Callable[[GatewayConfig], PaymentGateway] = Depends(get_gateway_factory),
) -> PaymentOrderService:
    return PaymentOrderService(
        store,
        catalog,
        subscriptions,
        RoleUnlockService(store),
        gateway_factory=gateway_factory,
    )
