"""
Order lifecycle: pending -> paid | failed.

paid and failed are terminal. A request for the state an order is already in is a
no-op, so redelivered webhooks and retried confirmations are safe. The conditional
store update is the serialization point: of two concurrent transitions on one order
only one is applied. The cart is cleared once per paid order: the clear is claimed
on the order first, and released again if the delete fails so a retried
confirmation or webhook for the same payment can finish it.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any

from storefront.core.exceptions import StoreWriteFailed
from storefront.core.logging import get_logger
from storefront.models.order import OrderStatus
from storefront.services.order_store import OrderRecord, OrderStore

log = get_logger(__name__)

TERMINAL_STATES = frozenset({OrderStatus.PAID, OrderStatus.FAILED})

ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PAID, OrderStatus.FAILED}),
    OrderStatus.PAID: frozenset(),
    OrderStatus.FAILED: frozenset(),
}


class TransitionOutcome(str, Enum):
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    CONFLICT = "conflict"  # order sits in the other terminal state
    NOT_FOUND = "not_found"


@dataclass
class TransitionResult:
    outcome: TransitionOutcome
    order: OrderRecord | None = None
    cart_items_cleared: int = 0

    @property
    def applied(self) -> bool:
        return self.outcome == TransitionOutcome.APPLIED


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


class OrderLifecycle:
    def __init__(self, store: OrderStore):
        self.store = store

    async def _clear_cart_once(self, order: OrderRecord) -> int:
        if not await self.store.claim_cart_clear(order.id):
            return 0
        try:
            return await self.store.clear_cart(order.user_id)
        except StoreWriteFailed:
            await self.store.release_cart_clear(order.id)
            raise

    async def transition(
        self,
        order_id: str,
        target: OrderStatus,
        provider_fields: dict[str, Any] | None = None,
    ) -> TransitionResult:
        if target not in TERMINAL_STATES:
            raise ValueError(f"Cannot transition an order to {target.value}")
        updated = await self.store.update_order_status(
            order_id, target, provider_fields, expected_status=OrderStatus.PENDING
        )
        if updated is not None:
            log.info("order_transition", order_id=order_id, status=target.value)
            result = TransitionResult(TransitionOutcome.APPLIED, updated)
            if target == OrderStatus.PAID:
                result.cart_items_cleared = await self._clear_cart_once(updated)
            return result

        # Lost the conditional write: report what is already there.
        current = await self.store.get_order(order_id)
        if current is None:
            return TransitionResult(TransitionOutcome.NOT_FOUND)
        if current.status == target:
            result = TransitionResult(TransitionOutcome.ALREADY_APPLIED, current)
            payment_id = (provider_fields or {}).get("payment_id")
            if target == OrderStatus.PAID and not current.cart_cleared and payment_id == current.payment_id:
                # an earlier attempt committed the payment but did not finish clearing the cart
                result.cart_items_cleared = await self._clear_cart_once(current)
            return result
        log.warning(
            "order_transition_conflict",
            order_id=order_id,
            current=current.status.value,
            requested=target.value,
        )
        return TransitionResult(TransitionOutcome.CONFLICT, current)

    async def mark_paid(
        self,
        order_id: str,
        payment_id: str,
        payment_order_id: str | None = None,
        signature: str | None = None,
    ) -> TransitionResult:
        return await self.transition(
            order_id,
            OrderStatus.PAID,
            {
                "payment_id": payment_id,
                "payment_order_id": payment_order_id,
                "payment_signature": signature,
            },
        )

    async def mark_failed(
        self,
        order_id: str,
        payment_id: str | None = None,
        payment_order_id: str | None = None,
    ) -> TransitionResult:
        return await self.transition(
            order_id,
            OrderStatus.FAILED,
            {"payment_id": payment_id, "payment_order_id": payment_order_id},
        )
