"""
Entitlement and Usage-Limit Enforcement

Gates professional-role features behind subscription state, enforces
per-period quotas per resource kind, and settles Razorpay payments into
subscriptions, course enrollments and role unlocks.

Architecture:
- Plan catalog and subscription state live in Firestore
- Entitlement gate is a coarse check, quota enforcement is per kind
  (daily and monthly windows, plus active caps on held kinds)
- Counters use atomic increments and are committed only after the
  guarded write succeeded
- Payment orders move created -> verified exactly once
"""

from entitlements.models import (
    Role,
    SubscriptionStatus,
    PeriodGranularity,
    ResourceKind,
    OrderKind,
    OrderStatus,
    BillingCycle,
    UsageLimit,
    Plan,
    SubscriptionState,
    PaymentOrder,
    RoleUnlockRecord,
    Course,
    RequestContext,
)
from entitlements.document_store import (
    DocumentStore,
    FirestoreDocumentStore,
    StoreUnavailableError,
    get_document_store,
)
from entitlements.plan_catalog import PlanCatalog, DEFAULT_PLANS, ROLE_RESOURCE_KINDS
from entitlements.subscription_state import SubscriptionRepository, SubscriptionChangeError
from entitlements.entitlement_gate import EntitlementGate, EntitlementError
from entitlements.usage_tracker import (
    QuotaDecision,
    QuotaEnforcer,
    UsageCounterStore,
    period_key,
)
from entitlements.content_safety import ContentSafetyValidator, SafetyResult
from entitlements.payment_gateway import (
    GatewayConfig,
    GatewayError,
    PaymentGateway,
    RazorpayGateway,
    verify_payment_signature,
)
from entitlements.payment_orders import (
    PaymentOrderService,
    PaymentsDisabledError,
    PaymentInitiationError,
    OrderNotFoundError,
    FulfillmentError,
    CheckoutSession,
    VerificationResult,
)
from entitlements.role_unlock import RoleUnlockService, UnlockResult, DASHBOARD_REDIRECTS
from entitlements.guarded_actions import GuardedActionService, ActionOutcome, ActionStatus

__all__ = [
    # Models
    'Role',
    'SubscriptionStatus',
    'PeriodGranularity',
    'ResourceKind',
    'OrderKind',
    'OrderStatus',
    'BillingCycle',
    'UsageLimit',
    'Plan',
    'SubscriptionState',
    'PaymentOrder',
    'RoleUnlockRecord',
    'Course',
    'RequestContext',
    # Storage
    'DocumentStore',
    'FirestoreDocumentStore',
    'StoreUnavailableError',
    'get_document_store',
    # Plans and subscriptions
    'PlanCatalog',
    'DEFAULT_PLANS',
    'ROLE_RESOURCE_KINDS',
    'SubscriptionRepository',
    'SubscriptionChangeError',
    'EntitlementGate',
    'EntitlementError',
    # Quota
    'QuotaDecision',
    'QuotaEnforcer',
    'UsageCounterStore',
    'period_key',
    # Content safety
    'ContentSafetyValidator',
    'SafetyResult',
    # Payments
    'GatewayConfig',
    'GatewayError',
    'PaymentGateway',
    'RazorpayGateway',
    'verify_payment_signature',
    'PaymentOrderService',
    'PaymentsDisabledError',
    'PaymentInitiationError',
    'OrderNotFoundError',
    'FulfillmentError',
    'CheckoutSession',
    'VerificationResult',
    # Role unlock
    'RoleUnlockService',
    'UnlockResult',
    'DASHBOARD_REDIRECTS',
    # Guarded actions
    'GuardedActionService',
    'ActionOutcome',
    'ActionStatus',
]
