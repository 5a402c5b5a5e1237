"""Checkout: snapshot the cart into a pending order with frozen line-item prices."""

from storefront.core.exceptions import BadRequestError, StoreWriteFailed
from storefront.core.logging import get_logger
from storefront.services.lifecycle import OrderLifecycle
from storefront.services.order_store import LineItem, OrderRecord, OrderStore

log = get_logger(__name__)


def order_total(items: list[LineItem]) -> int:
    return sum(i.subtotal_paise for i in items)


async def place_order(store: OrderStore, user_id: str, currency: str = "INR") -> tuple[OrderRecord, list[LineItem]]:
    """
    Create a pending order from the user's cart. The cart itself is kept until the
    order is paid. If the line items cannot be saved the order is closed as failed.
    """
    items = await store.list_cart_lines(user_id)
    if not items:
        raise BadRequestError("Cart is empty")
    order = await store.create_order(user_id, order_total(items), currency)
    try:
        await store.insert_line_items(order.id, items)
    except StoreWriteFailed:
        await OrderLifecycle(store).mark_failed(order.id)
        raise
    log.info("order_placed", order_id=order.id, user_id=user_id, total_paise=order.total_paise, items=len(items))
    return order, items
