"""
Payment API Routes

Razorpay checkout for subscription plans and paid courses:
- Gateway configuration for the client checkout
- Order creation
- Checkout callback verification
- Order cancellation and stale order cleanup
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from api.dependencies import get_payment_orders
from api.middleware.auth import get_current_user, require_admin
from config import settings
from entitlements.models import BillingCycle, OrderKind, RequestContext
from entitlements.payment_gateway import GatewayError
from entitlements.payment_orders import (
    FulfillmentError,
    OrderNotFoundError,
    PaymentInitiationError,
    PaymentOrderService,
    PaymentsDisabledError,
)
from utils.logger import logger

router = APIRouter()

_INITIATION_STATUS = {
    PaymentInitiationError.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    PaymentInitiationError.INVALID: status.HTTP_400_BAD_REQUEST,
    PaymentInitiationError.GATEWAY: status.HTTP_502_BAD_GATEWAY,
}


# ============================================================================
# Request/Response Models
# ============================================================================

class CreateOrderRequest(BaseModel):
    """Request to start a checkout"""
    kind: OrderKind = Field(..., description="subscription or course")
    target_id: str = Field(..., description="Plan id or course id")
    billing_cycle: Optional[BillingCycle] = Field(None, description="monthly or yearly (subscriptions only)")


class VerifyPaymentRequest(BaseModel):
    """Razorpay checkout handler payload"""
    order_id: str
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str


class PaymentConfigResponse(BaseModel):
    enabled: bool
    key_id: Optional[str] = None
    currency: str


def _payments_disabled(e: PaymentsDisabledError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message)


# ============================================================================
# Routes
# ============================================================================

@router.get("/config", response_model=PaymentConfigResponse)
async def get_payment_config(payments: PaymentOrderService = Depends(get_payment_orders)):
    """Public gateway configuration for the client checkout. Never includes the secret."""
    config = await payments.gateway_config()
    return PaymentConfigResponse(
        enabled=config.configured,
        key_id=config.key_id if config.configured else None,
        currency=settings.PAYMENT_CURRENCY,
    )


@router.post("/orders")
async def create_order(
    request: CreateOrderRequest,
    ctx: RequestContext = Depends(get_current_user),
    payments: PaymentOrderService = Depends(get_payment_orders),
):
    try:
        session = await payments.create_order(
            ctx.user_id,
            request.kind,
            request.target_id,
            billing_cycle=request.billing_cycle,
            role=ctx.role if request.kind == OrderKind.SUBSCRIPTION else None,
        )
    except PaymentsDisabledError as e:
        raise _payments_disabled(e)
    except PaymentInitiationError as e:
        raise HTTPException(status_code=_INITIATION_STATUS[e.reason], detail=e.message)

    return session.to_dict()


@router.post("/verify")
async def verify_payment(
    request: VerifyPaymentRequest,
    ctx: RequestContext = Depends(get_current_user),
    payments: PaymentOrderService = Depends(get_payment_orders),
):
    try:
        result = await payments.verify_callback(
            ctx.user_id,
            request.order_id,
            request.razorpay_order_id,
            request.razorpay_payment_id,
            request.razorpay_signature,
        )
    except PaymentsDisabledError as e:
        raise _payments_disabled(e)
    except GatewayError:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Could not confirm payment with the gateway. Please try again.",
        )
    except FulfillmentError as e:
        logger.error(f"Fulfilment failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Payment received but could not be applied. Please contact support.",
        )

    if not result.success:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=result.message)

    return result.to_dict()


@router.post("/orders/{order_id}/cancel")
async def cancel_order(
    order_id: str,
    ctx: RequestContext = Depends(get_current_user),
    payments: PaymentOrderService = Depends(get_payment_orders),
):
    """Called when the user dismisses the checkout"""
    try:
        cancelled = await payments.cancel_order(ctx.user_id, order_id)
    except OrderNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    return {"success": True, "cancelled": cancelled}


@router.post("/admin/orders/cleanup")
async def cleanup_stale_orders(
    admin: RequestContext = Depends(require_admin),
    payments: PaymentOrderService = Depends(get_payment_orders),
):
    cancelled = await payments.cancel_stale_orders()
    return {"success": True, "cancelled": len(cancelled), "orderIds": cancelled}
