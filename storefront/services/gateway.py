"""Razorpay client wrapper: order (intent) creation and payment lookup."""

import asyncio
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

import razorpay

from storefront.core.config import Settings
from storefront.core.exceptions import BadRequestError, IntentCreationFailed, ProviderUnavailable
from storefront.core.logging import get_logger

log = get_logger(__name__)

PAISE_PER_RUPEE = 100


def to_minor_units(amount: Any) -> int:
    """Major units (e.g. 500.00 INR) -> minor units (50000 paise). Razorpay only accepts minor units."""
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError) as exc:
        raise BadRequestError("Amount must be a number") from exc
    if not value.is_finite():
        raise BadRequestError("Amount must be positive")
    paise = int((value * PAISE_PER_RUPEE).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    if paise <= 0:
        raise BadRequestError("Amount must be positive")
    return paise


def to_major_units(amount_paise: int) -> Decimal:
    return (Decimal(amount_paise) / PAISE_PER_RUPEE).quantize(Decimal("0.01"))


def build_client(settings: Settings) -> razorpay.Client | None:
    if not settings.payments_configured:
        return None
    return razorpay.Client(auth=(settings.razorpay_key_id, settings.razorpay_key_secret))


class PaymentGateway:
    """Blocking SDK calls run in a worker thread with a hard timeout."""

    def __init__(self, client: Any, timeout_seconds: float = 10.0):
        self.client = client
        self.timeout_seconds = timeout_seconds

    async def _call(self, fn, *args):
        return await asyncio.wait_for(asyncio.to_thread(fn, *args), timeout=self.timeout_seconds)

    async def create_intent(
        self,
        amount: Any,
        currency: str = "INR",
        receipt: str | None = None,
        notes: dict[str, Any] | None = None,
    ) -> dict:
        """Create a Razorpay order for amount (major units)."""
        data: dict[str, Any] = {"amount": to_minor_units(amount), "currency": currency}
        if receipt:
            data["receipt"] = receipt
        if notes:
            data["notes"] = notes
        try:
            order = await self._call(self.client.order.create, data)
        except asyncio.TimeoutError as exc:
            log.error("intent_create_timeout", amount=data["amount"], currency=currency)
            raise IntentCreationFailed("Payment provider timed out") from exc
        except Exception as exc:
            log.error("intent_create_failed", amount=data["amount"], currency=currency, error=str(exc))
            raise IntentCreationFailed(str(exc) or "Failed to create payment order") from exc
        if not isinstance(order, dict) or not order.get("id"):
            log.error("intent_create_bad_response", response=order)
            raise IntentCreationFailed("Payment provider returned no order id")
        log.info("intent_created", provider_order_id=order["id"], amount=data["amount"], currency=currency)
        return order

    async def fetch_payment(self, payment_id: str) -> dict:
        """Read-only lookup for manual reconciliation."""
        try:
            return await self._call(self.client.payment.fetch, payment_id)
        except asyncio.TimeoutError as exc:
            log.error("payment_fetch_timeout", payment_id=payment_id)
            raise ProviderUnavailable("Payment provider timed out") from exc
        except Exception as exc:
            log.error("payment_fetch_failed", payment_id=payment_id, error=str(exc))
            raise ProviderUnavailable(str(exc) or "Failed to fetch payment") from exc
