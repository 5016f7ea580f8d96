"""
Payment Gateway

Razorpay integration used by the payment order lifecycle:
- Order creation (amount in paise)
- Checkout callback signature verification (HMAC-SHA256)
- Payment status confirmation

Gateway keys come from the admin-managed adminSettings/razorpay document
when present, falling back to RAZORPAY_KEY_ID / RAZORPAY_KEY_SECRET.
With neither, payments are disabled.
"""

import asyncio
import hashlib
import hmac
from abc import ABC, abstractmethod
from dataclasses import dataclass
from functools import partial
from typing import Any, Dict, Optional

from config import settings
from entitlements.document_store import DocumentStore
from utils.logger import logger

SETTINGS_COLLECTION = "adminSettings"
RAZORPAY_SETTINGS_DOC = "razorpay"

# Payment states that confirm the customer was charged
CONFIRMED_PAYMENT_STATUSES = ("captured", "authorized")


class GatewayError(Exception):
    """Raised when the payment gateway rejects or fails a request"""

    def __init__(self, operation: str, message: str):
        self.operation = operation
        self.message = message
        super().__init__(f"{operation}: {message}")


@dataclass
class GatewayConfig:
    """Resolved gateway credentials"""
    enabled: bool
    key_id: Optional[str] = None
    key_secret: Optional[str] = None
    source: str = "none"

    @property
    def configured(self) -> bool:
        return bool(self.enabled and self.key_id and self.key_secret)


def compute_signature(secret: str, gateway_order_id: str, gateway_payment_id: str) -> str:
    """Hex HMAC-SHA256 of "order_id|payment_id", as Razorpay checkout signs it"""
    payload = f"{gateway_order_id}|{gateway_payment_id}"
    return hmac.new(
        secret.encode(),
        payload.encode(),
        hashlib.sha256
    ).hexdigest()


def verify_payment_signature(
    secret: str,
    gateway_order_id: str,
    gateway_payment_id: str,
    signature: Optional[str],
) -> bool:
    """Constant-time comparison of the checkout signature"""
    if not secret or not signature:
        return False
    expected = compute_signature(secret, gateway_order_id, gateway_payment_id)
    return hmac.compare_digest(expected.encode(), signature.encode())


async def resolve_gateway_config(store: DocumentStore) -> GatewayConfig:
    """Admin settings first, then environment keys."""
    if settings.GATEWAY_SETTINGS_FROM_STORE:
        data = await store.get(SETTINGS_COLLECTION, RAZORPAY_SETTINGS_DOC)
        if data:
            if data.get("enabled") is False:
                return GatewayConfig(enabled=False, source="store")
            if data.get("keyId") and data.get("keySecret"):
                return GatewayConfig(
                    enabled=True,
                    key_id=data["keyId"],
                    key_secret=data["keySecret"],
                    source="store",
                )

    if settings.RAZORPAY_KEY_ID and settings.RAZORPAY_KEY_SECRET:
        return GatewayConfig(
            enabled=True,
            key_id=settings.RAZORPAY_KEY_ID,
            key_secret=settings.RAZORPAY_KEY_SECRET,
            source="env",
        )

    return GatewayConfig(enabled=False)


class PaymentGateway(ABC):
    """Abstract payment gateway"""

    def __init__(self, config: GatewayConfig):
        self.config = config

    @property
    def key_id(self) -> Optional[str]:
        return self.config.key_id

    @abstractmethod
    async def create_order(
        self,
        amount_minor: int,
        currency: str,
        receipt: str,
        notes: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """Create a gateway order. Returns the gateway's order payload (with "id")."""
        pass

    @abstractmethod
    async def fetch_payment(self, payment_id: str) -> Dict[str, Any]:
        """Fetch a payment. Returns the gateway's payment payload (with "status")."""
        pass

    def verify_signature(self, gateway_order_id: str, gateway_payment_id: str, signature: str) -> bool:
        return verify_payment_signature(
            self.config.key_secret, gateway_order_id, gateway_payment_id, signature
        )


class RazorpayGateway(PaymentGateway):
    """Razorpay Orders API. The SDK is synchronous, so calls run in the default executor."""

    def __init__(self, config: GatewayConfig):
        super().__init__(config)
        import razorpay

        self._client = razorpay.Client(auth=(config.key_id, config.key_secret))

    async def _call(self, operation: str, fn, *args, **kwargs):
        loop = asyncio.get_event_loop()
        try:
            return await loop.run_in_executor(None, partial(fn, *args, **kwargs))
        except Exception as e:
            logger.error(f"Razorpay {operation} failed: {e}")
            raise GatewayError(operation, str(e)) from e

    async def create_order(
        self,
        amount_minor: int,
        currency: str,
        receipt: str,
        notes: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        order = await self._call("order.create", self._client.order.create, data={
            "amount": amount_minor,
            "currency": currency,
            "receipt": receipt,
            "notes": notes or {},
        })
        if not order or not order.get("id"):
            raise GatewayError("order.create", "Gateway returned no order id")
        return order

    async def fetch_payment(self, payment_id: str) -> Dict[str, Any]:
        return await self._call("payment.fetch", self._client.payment.fetch, payment_id)
