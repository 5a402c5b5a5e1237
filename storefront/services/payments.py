"""Razorpay orders, checkout confirmation and webhooks, all driving the order lifecycle."""

from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from storefront.core.exceptions import (
    BadRequestError,
    ConflictError,
    OrderNotFound,
    PaymentMismatch,
    SignatureInvalid,
)
from storefront.core.logging import get_logger
from storefront.core.security import verify_payment_confirmation, verify_razorpay_webhook
from storefront.models.order import OrderStatus
from storefront.services.gateway import PaymentGateway, to_major_units
from storefront.services.lifecycle import OrderLifecycle, TransitionOutcome, TransitionResult
from storefront.services.order_store import OrderRecord, OrderStore

log = get_logger(__name__)


class WebhookEvent(str, Enum):
    PAYMENT_AUTHORIZED = "payment.authorized"
    PAYMENT_CAPTURED = "payment.captured"
    PAYMENT_FAILED = "payment.failed"


EVENT_TARGETS: dict[WebhookEvent, OrderStatus] = {
    WebhookEvent.PAYMENT_AUTHORIZED: OrderStatus.PAID,
    WebhookEvent.PAYMENT_CAPTURED: OrderStatus.PAID,
    WebhookEvent.PAYMENT_FAILED: OrderStatus.FAILED,
}


def parse_event(name: str) -> WebhookEvent | None:
    try:
        return WebhookEvent(name)
    except ValueError:
        return None


class PaymentEntity(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    order_id: str | None = None
    status: str | None = None
    amount: int | None = None
    # Razorpay sends [] when an order has no notes
    notes: dict[str, Any] | list[Any] = Field(default_factory=dict)


class PaymentWrapper(BaseModel):
    model_config = ConfigDict(extra="allow")

    entity: PaymentEntity


class WebhookPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    payment: PaymentWrapper | None = None


class WebhookEnvelope(BaseModel):
    model_config = ConfigDict(extra="allow")

    event: str
    payload: WebhookPayload = Field(default_factory=WebhookPayload)

    @property
    def payment(self) -> PaymentEntity | None:
        return self.payload.payment.entity if self.payload.payment else None


@dataclass
class WebhookResult:
    event: str
    handled: bool
    outcome: TransitionOutcome | None = None
    order_id: str | None = None
    mismatch: bool = False


class PaymentService:
    """
    Entry point for the payment endpoints. Collaborators are injected so the
    process entry point owns their lifecycle.
    """

    def __init__(
        self,
        store: OrderStore,
        gateway: PaymentGateway | None,
        key_secret: str,
        webhook_secret: str,
        default_currency: str = "INR",
    ):
        self.store = store
        self.gateway = gateway
        self.key_secret = key_secret
        self.webhook_secret = webhook_secret
        self.default_currency = default_currency
        self.lifecycle = OrderLifecycle(store)

    def _require_gateway(self) -> PaymentGateway:
        if self.gateway is None:
            raise BadRequestError("Payments not configured")
        return self.gateway

    async def create_intent(
        self,
        amount: Any = None,
        currency: str | None = None,
        receipt: str | None = None,
        notes: dict[str, Any] | None = None,
        order_id: str | None = None,
    ) -> dict:
        """
        Create a Razorpay order. With order_id the local pending order is authoritative
        for amount and currency, and the Razorpay order id -> local order binding is
        stored; only bound payments can later settle that order.
        """
        gateway = self._require_gateway()
        notes = {k: v for k, v in (notes or {}).items() if k != "order_id"}
        order = None
        if order_id:
            order = await self.store.get_order(order_id)
            if order is None:
                raise OrderNotFound()
            if order.status != OrderStatus.PENDING:
                raise ConflictError("Order is no longer pending", code="ORDER_NOT_PENDING")
            amount = to_major_units(order.total_paise)
            currency = order.currency
            receipt = receipt or order.id
            notes["order_id"] = order.id
        elif amount is None:
            raise BadRequestError("Amount is required")
        intent = await gateway.create_intent(amount, currency or self.default_currency, receipt, notes)
        if order is not None:
            await self.store.record_intent(intent["id"], order.id, order.total_paise, order.currency)
        return intent

    async def fetch_payment(self, payment_id: str) -> dict:
        return await self._require_gateway().fetch_payment(payment_id)

    async def _check_binding(self, order: OrderRecord, provider_order_id: str | None) -> None:
        """Raise PaymentMismatch unless provider_order_id was created here for this order and its total."""
        intent = await self.store.get_intent(provider_order_id) if provider_order_id else None
        if intent is None or intent.order_id != order.id:
            log.error(
                "payment_order_mismatch",
                order_id=order.id,
                provider_order_id=provider_order_id,
                bound_order_id=intent.order_id if intent else None,
            )
            raise PaymentMismatch("Payment was not created for this order")
        if intent.amount_paise != order.total_paise or intent.currency != order.currency:
            log.error(
                "payment_amount_mismatch",
                order_id=order.id,
                provider_order_id=provider_order_id,
                amount_paise=intent.amount_paise,
                total_paise=order.total_paise,
            )
            raise PaymentMismatch("Payment amount does not match order total")

    async def confirm_payment(
        self,
        provider_order_id: Any,
        provider_payment_id: Any,
        signature: Any,
        order_id: Any = None,
    ) -> TransitionResult | None:
        """
        Checkout callback. The signature is checked before any order is read, then the
        Razorpay order must be the one created for this order. A store failure after
        that point propagates: the provider already holds the money, so the client
        retries the confirmation instead of paying again.
        """
        if not self.key_secret:
            raise BadRequestError("Payments not configured")
        if not verify_payment_confirmation(provider_order_id, provider_payment_id, signature, self.key_secret):
            log.warning("payment_signature_invalid", order_id=str(order_id) if order_id else None)
            raise SignatureInvalid()
        if not order_id:
            log.info("payment_verified", provider_payment_id=provider_payment_id)
            return None

        order = await self.store.get_order(str(order_id))
        if order is None:
            log.warning("payment_confirmation_unknown_order", order_id=order_id, provider_payment_id=provider_payment_id)
            return TransitionResult(TransitionOutcome.NOT_FOUND)
        await self._check_binding(order, provider_order_id)

        result = await self.lifecycle.mark_paid(order.id, provider_payment_id, provider_order_id, signature)
        if result.outcome == TransitionOutcome.NOT_FOUND:
            log.warning("payment_confirmation_unknown_order", order_id=order.id, provider_payment_id=provider_payment_id)
            return result
        if result.outcome == TransitionOutcome.ALREADY_APPLIED and result.order.payment_id != provider_payment_id:
            log.error(
                "payment_duplicate",
                order_id=order.id,
                recorded_payment_id=result.order.payment_id,
                provider_payment_id=provider_payment_id,
            )
            raise ConflictError(
                "Order was already paid by another payment",
                code="ORDER_NOT_PENDING",
                details={"status": result.order.status.value},
            )
        if result.outcome == TransitionOutcome.CONFLICT:
            log.error("payment_for_closed_order", order_id=order.id, provider_payment_id=provider_payment_id)
            raise ConflictError(
                "Order is no longer pending",
                code="ORDER_NOT_PENDING",
                details={"status": result.order.status.value},
            )
        log.info(
            "payment_confirmed",
            order_id=order.id,
            provider_payment_id=provider_payment_id,
            outcome=result.outcome.value,
            cart_items_cleared=result.cart_items_cleared,
        )
        return result

    async def _resolve_order(self, payment: PaymentEntity) -> OrderRecord | None:
        """By recorded payment id, else through the Razorpay order binding written at intent creation."""
        order = await self.store.find_order_by_provider_payment_id(payment.id)
        if order is None and payment.order_id:
            intent = await self.store.get_intent(payment.order_id)
            if intent is not None:
                order = await self.store.get_order(intent.order_id)
        return order

    async def handle_webhook(self, body: bytes, signature: str | None) -> WebhookResult:
        """
        Verify over the raw body, then map the event onto the lifecycle. Unknown orders,
        unhandled events, mismatched payments and repeated deliveries are acknowledged,
        never errors.
        """
        if not self.webhook_secret:
            raise BadRequestError("Webhook secret not configured")
        if not verify_razorpay_webhook(body, signature or "", self.webhook_secret):
            log.warning("webhook_signature_invalid")
            raise SignatureInvalid("Invalid webhook signature")
        try:
            envelope = WebhookEnvelope.model_validate_json(body)
        except ValidationError as exc:
            raise BadRequestError("Malformed webhook payload") from exc

        event = parse_event(envelope.event)
        if event is None:
            log.info("webhook_ignored", webhook_event=envelope.event)
            return WebhookResult(envelope.event, handled=False)
        payment = envelope.payment
        if payment is None:
            raise BadRequestError("Malformed webhook payload")

        order = await self._resolve_order(payment)
        if order is None:
            log.info("webhook_order_not_found", webhook_event=event.value, provider_payment_id=payment.id)
            return WebhookResult(event.value, handled=True, outcome=TransitionOutcome.NOT_FOUND)

        target = EVENT_TARGETS[event]
        if target == OrderStatus.PAID:
            try:
                await self._check_binding(order, payment.order_id)
                if payment.amount != order.total_paise:
                    log.error(
                        "payment_amount_mismatch",
                        order_id=order.id,
                        provider_payment_id=payment.id,
                        amount_paise=payment.amount,
                        total_paise=order.total_paise,
                    )
                    raise PaymentMismatch("Payment amount does not match order total")
            except PaymentMismatch:
                return WebhookResult(event.value, handled=True, order_id=order.id, mismatch=True)
            result = await self.lifecycle.mark_paid(order.id, payment.id, payment.order_id)
        else:
            result = await self.lifecycle.mark_failed(order.id, payment.id, payment.order_id)
        log.info(
            "webhook_processed",
            webhook_event=event.value,
            order_id=order.id,
            provider_payment_id=payment.id,
            outcome=result.outcome.value,
        )
        return WebhookResult(event.value, handled=True, outcome=result.outcome, order_id=order.id)
