"""
Payment Order Lifecycle

Moves a user from unpaid to entitled through a Razorpay checkout:

    create_order()     -> gateway order + PaymentOrder(status=created)
    (client checkout)
    verify_callback()  -> signature check, payment confirmation,
                          created -> verified, then fulfilment
                          (subscription extension or course enrollment
                          with optional role unlock)

Order status transitions are compare-and-set on the stored status, so an
order is verified at most once even under concurrent callbacks. The
outcome is stored on the order and replayed on re-delivery.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from config import settings
from entitlements.document_store import DocumentStore
from entitlements.models import (
    BillingCycle,
    Course,
    OrderKind,
    OrderStatus,
    PaymentOrder,
    Role,
    parse_datetime,
    to_minor_units,
    utcnow,
)
from entitlements.payment_gateway import (
    CONFIRMED_PAYMENT_STATUSES,
    GatewayConfig,
    GatewayError,
    PaymentGateway,
    RazorpayGateway,
    resolve_gateway_config,
)
from entitlements.plan_catalog import PlanCatalog
from entitlements.role_unlock import DASHBOARD_REDIRECTS, RoleUnlockService
from entitlements.subscription_state import SubscriptionRepository
from utils.logger import logger

ORDERS_COLLECTION = "paymentOrders"
COURSES_COLLECTION = "courses"

VERIFICATION_FAILED_MESSAGE = "Payment verification failed, contact support"


# ============================================================================
# Errors
# ============================================================================

class PaymentsDisabledError(Exception):
    """Raised when no gateway credentials are configured"""

    def __init__(self, message: str = "Payments are not configured. Please contact support."):
        self.message = message
        super().__init__(message)


class PaymentInitiationError(Exception):
    """Raised when an order cannot be created. Nothing is persisted."""

    NOT_FOUND = "not_found"
    INVALID = "invalid"
    GATEWAY = "gateway"

    def __init__(self, reason: str, message: str):
        self.reason = reason
        self.message = message
        super().__init__(message)


class OrderNotFoundError(Exception):
    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order {order_id} not found")


class FulfillmentError(Exception):
    """Raised when a verified order cannot be applied. The order stays unfulfilled."""

    def __init__(self, order_id: str, message: str):
        self.order_id = order_id
        self.message = message
        super().__init__(f"Order {order_id}: {message}")


# ============================================================================
# Results
# ============================================================================

@dataclass
class CheckoutSession:
    """What the client needs to open the hosted checkout"""
    order_id: str
    gateway_order_id: str
    amount_minor: int
    currency: str
    key_id: str
    kind: OrderKind
    target_id: str
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "orderId": self.order_id,
            "gatewayOrderId": self.gateway_order_id,
            "amount": self.amount_minor,
            "currency": self.currency,
            "keyId": self.key_id,
            "kind": self.kind.value,
            "targetId": self.target_id,
            "description": self.description,
        }


@dataclass
class VerificationResult:
    success: bool
    message: str
    order_id: Optional[str] = None
    role_assigned: bool = False
    role_name: Optional[str] = None
    role_unlocked: bool = False
    redirect_role: Optional[str] = None
    expires_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "orderId": self.order_id,
            "roleAssigned": self.role_assigned,
            "roleName": self.role_name,
            "roleUnlocked": self.role_unlocked,
            "dashboardRedirectRole": self.redirect_role,
            "expiresAt": self.expires_at.isoformat() if self.expires_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VerificationResult":
        return cls(
            success=data.get("success", False),
            message=data.get("message", ""),
            order_id=data.get("orderId"),
            role_assigned=data.get("roleAssigned", False),
            role_name=data.get("roleName"),
            role_unlocked=data.get("roleUnlocked", False),
            redirect_role=data.get("dashboardRedirectRole"),
            expires_at=parse_datetime(data.get("expiresAt")),
        )

    @classmethod
    def failure(cls, order_id: Optional[str] = None) -> "VerificationResult":
        return cls(success=False, message=VERIFICATION_FAILED_MESSAGE, order_id=order_id)


@dataclass
class _Target:
    amount: Any
    currency: str
    description: str
    billing_cycle: Optional[BillingCycle]


# ============================================================================
# Service
# ============================================================================

class PaymentOrderService:
    """Creates, verifies and fulfils payment orders"""

    def __init__(
        self,
        store: DocumentStore,
        catalog: PlanCatalog,
        subscriptions: SubscriptionRepository,
        unlocks: RoleUnlockService,
        gateway_factory: Callable[[GatewayConfig], PaymentGateway] = RazorpayGateway,
    ):
        self.store = store
        self.catalog = catalog
        self.subscriptions = subscriptions
        self.unlocks = unlocks
        self.gateway_factory = gateway_factory

    async def gateway_config(self) -> GatewayConfig:
        return await resolve_gateway_config(self.store)

    async def _gateway(self) -> PaymentGateway:
        config = await self.gateway_config()
        if not config.configured:
            raise PaymentsDisabledError()
        return self.gateway_factory(config)

    async def get_order(self, order_id: str) -> Optional[PaymentOrder]:
        data = await self.store.get(ORDERS_COLLECTION, order_id)
        return PaymentOrder.from_dict(data) if data else None

    async def get_course(self, course_id: str) -> Optional[Course]:
        data = await self.store.get(COURSES_COLLECTION, course_id)
        return Course.from_dict(course_id, data) if data else None

    # ------------------------------------------------------------------------
    # Order creation
    # ------------------------------------------------------------------------

    async def _resolve_target(
        self,
        kind: OrderKind,
        target_id: str,
        billing_cycle: Optional[BillingCycle],
        role: Optional[Role],
    ) -> _Target:
        if kind == OrderKind.SUBSCRIPTION:
            plan = await self.catalog.get_plan(target_id)
            if plan is None or not plan.active:
                raise PaymentInitiationError(PaymentInitiationError.NOT_FOUND, "Plan not found.")
            if role is not None and plan.role != role:
                raise PaymentInitiationError(
                    PaymentInitiationError.INVALID,
                    f"Plan {plan.id} is not available for the {role.value} role.",
                )
            if plan.is_free:
                raise PaymentInitiationError(
                    PaymentInitiationError.INVALID,
                    "This plan is free. Activate it directly instead of paying.",
                )
            cycle = billing_cycle or BillingCycle.MONTHLY
            return _Target(
                amount=plan.amount_for(cycle),
                currency=plan.currency or settings.PAYMENT_CURRENCY,
                description=f"{plan.name} ({plan.role.value}, {cycle.value})",
                billing_cycle=cycle,
            )

        course = await self.get_course(target_id)
        if course is None or not course.active:
            raise PaymentInitiationError(PaymentInitiationError.NOT_FOUND, "Course not found.")
        if course.price <= 0:
            raise PaymentInitiationError(
                PaymentInitiationError.INVALID, "This course does not require payment."
            )
        return _Target(
            amount=course.price,
            currency=course.currency or settings.PAYMENT_CURRENCY,
            description=course.title,
            billing_cycle=None,
        )

    async def create_order(
        self,
        user_id: str,
        kind: OrderKind,
        target_id: str,
        billing_cycle: Optional[BillingCycle] = None,
        role: Optional[Role] = None,
        now: Optional[datetime] = None,
    ) -> CheckoutSession:
        """
        Create a gateway order and persist it as "created".

        The order is only written after the gateway accepted it, so a
        gateway failure leaves nothing behind.
        """
        gateway = await self._gateway()
        target = await self._resolve_target(kind, target_id, billing_cycle, role)

        now = now or utcnow()
        order_id = uuid.uuid4().hex
        amount_minor = to_minor_units(target.amount)

        try:
            gateway_order = await gateway.create_order(
                amount_minor,
                target.currency,
                receipt=order_id,
                notes={
                    "userId": user_id,
                    "kind": kind.value,
                    "targetId": target_id,
                    "billingCycle": target.billing_cycle.value if target.billing_cycle else "",
                },
            )
        except GatewayError as e:
            raise PaymentInitiationError(
                PaymentInitiationError.GATEWAY,
                "Failed to create payment order. Please try again.",
            ) from e

        order = PaymentOrder(
            id=order_id,
            user_id=user_id,
            kind=kind,
            target_id=target_id,
            amount=target.amount,
            currency=target.currency,
            billing_cycle=target.billing_cycle,
            gateway_order_id=gateway_order["id"],
            status=OrderStatus.CREATED,
            created_at=now,
            updated_at=now,
        )
        await self.store.set(ORDERS_COLLECTION, order_id, order.to_dict())

        logger.info(
            f"Created {kind.value} order {order_id} for {user_id}: "
            f"{target_id} {order.amount} {order.currency} (gateway {order.gateway_order_id})"
        )

        return CheckoutSession(
            order_id=order_id,
            gateway_order_id=order.gateway_order_id,
            amount_minor=amount_minor,
            currency=order.currency,
            key_id=gateway.key_id,
            kind=kind,
            target_id=target_id,
            description=target.description,
        )

    # ------------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------------

    async def _transition(
        self,
        order: PaymentOrder,
        target: OrderStatus,
        now: datetime,
        **fields,
    ) -> bool:
        updates = {"status": target.value, "updatedAt": now}
        updates.update(fields)
        return await self.store.compare_and_set(
            ORDERS_COLLECTION, order.id, "status", OrderStatus.CREATED.value, updates
        )

    async def _fail(self, order: PaymentOrder, reason: str, now: datetime) -> VerificationResult:
        if order.status == OrderStatus.CREATED:
            await self._transition(order, OrderStatus.FAILED, now, failureReason=reason)
        return VerificationResult.failure(order.id)

    async def verify_callback(
        self,
        user_id: str,
        order_id: str,
        gateway_order_id: str,
        gateway_payment_id: str,
        signature: str,
        now: Optional[datetime] = None,
    ) -> VerificationResult:
        now = now or utcnow()

        order = await self.get_order(order_id)
        if order is None or order.user_id != user_id:
            logger.warning(f"Verification for unknown order {order_id} by {user_id}")
            return VerificationResult.failure(order_id)

        gateway = await self._gateway()

        signature_ok = (
            gateway_order_id == order.gateway_order_id
            and gateway.verify_signature(gateway_order_id, gateway_payment_id, signature)
        )
        if not signature_ok:
            logger.warning(
                f"Payment signature mismatch: order={order.id} user={user_id} "
                f"gateway_order={gateway_order_id} stored_gateway_order={order.gateway_order_id} "
                f"payment={gateway_payment_id}"
            )
            return await self._fail(order, "signature_mismatch", now)

        if order.status == OrderStatus.VERIFIED:
            return await self._replay(order, now)
        if order.status in (OrderStatus.FAILED, OrderStatus.CANCELLED):
            logger.info(f"Verification for {order.status.value} order {order.id} rejected")
            return VerificationResult.failure(order.id)

        payment = await gateway.fetch_payment(gateway_payment_id)
        payment_status = (payment or {}).get("status")
        payment_order = (payment or {}).get("order_id")
        if payment_status not in CONFIRMED_PAYMENT_STATUSES or (
            payment_order and payment_order != order.gateway_order_id
        ):
            logger.warning(
                f"Payment {gateway_payment_id} for order {order.id} not confirmed "
                f"(status={payment_status}, gateway_order={payment_order})"
            )
            return await self._fail(order, f"payment_status_{payment_status}", now)

        won = await self._transition(
            order, OrderStatus.VERIFIED, now, gatewayPaymentId=gateway_payment_id
        )
        order = await self.get_order(order.id)
        if not won:
            # Another callback settled this order first
            if order is not None and order.status == OrderStatus.VERIFIED:
                return await self._replay(order, now)
            return VerificationResult.failure(order_id)

        return await self._fulfill(order, now)

    async def _replay(self, order: PaymentOrder, now: datetime) -> VerificationResult:
        if order.fulfilled and order.result:
            return VerificationResult.from_dict(order.result)
        # Verified but fulfilment never completed
        return await self._fulfill(order, now)

    async def _fulfill(self, order: PaymentOrder, now: datetime) -> VerificationResult:
        if order.kind == OrderKind.SUBSCRIPTION:
            plan = await self.catalog.get_plan(order.target_id)
            if plan is None:
                raise FulfillmentError(order.id, f"plan {order.target_id} no longer exists")
            cycle = order.billing_cycle or BillingCycle.MONTHLY
            subscription = await self.subscriptions.apply_purchase(
                order.user_id, plan, cycle, order.id, now
            )
            await self.unlocks.assign_role(order.user_id, plan.role)
            result = VerificationResult(
                success=True,
                message="Payment verified. Your plan is now active.",
                order_id=order.id,
                role_assigned=True,
                role_name=plan.role.value,
                redirect_role=DASHBOARD_REDIRECTS[plan.role],
                expires_at=subscription.expires_at,
            )
        else:
            course = await self.get_course(order.target_id)
            await self.unlocks.grant_enrollment(order.user_id, order.target_id, order.id, now)
            result = VerificationResult(
                success=True,
                message="Payment verified. You are now enrolled.",
                order_id=order.id,
            )
            if course is not None and course.unlocks_role is not None:
                unlock = await self.unlocks.unlock_role(
                    order.user_id, course.unlocks_role, course.id, now
                )
                result.role_unlocked = True
                result.role_name = unlock.role.value
                result.redirect_role = unlock.redirect_role

        await self.store.update(ORDERS_COLLECTION, order.id, {
            "result": result.to_dict(),
            "fulfilled": True,
            "updatedAt": now,
        })
        logger.info(
            f"Order {order.id} settled for {order.user_id}: {order.kind.value} {order.target_id}"
        )
        return result

    # ------------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------------

    async def cancel_order(self, user_id: str, order_id: str, now: Optional[datetime] = None) -> bool:
        """Cancel a still-open order. Returns False if it was already settled."""
        order = await self.get_order(order_id)
        if order is None or order.user_id != user_id:
            raise OrderNotFoundError(order_id)
        cancelled = await self._transition(order, OrderStatus.CANCELLED, now or utcnow())
        if cancelled:
            logger.info(f"Order {order_id} cancelled by {user_id}")
        return cancelled

    async def cancel_stale_orders(
        self,
        older_than: Optional[timedelta] = None,
        now: Optional[datetime] = None,
    ) -> List[str]:
        """Cancel "created" orders older than the cutoff. Returns the cancelled ids."""
        now = now or utcnow()
        cutoff = now - (older_than or timedelta(hours=settings.STALE_ORDER_HOURS))

        cancelled = []
        for row in await self.store.query(ORDERS_COLLECTION, "status", OrderStatus.CREATED.value):
            order = PaymentOrder.from_dict(row)
            if order.created_at is None or order.created_at >= cutoff:
                continue
            if await self._transition(order, OrderStatus.CANCELLED, now, failureReason="stale"):
                cancelled.append(order.id)

        if cancelled:
            logger.info(f"Cancelled {len(cancelled)} stale payment orders")
        return cancelled
