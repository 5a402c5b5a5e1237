from fastapi import APIRouter, Depends, Query, status

from storefront.core.config import get_settings
from storefront.core.exceptions import OrderNotFound
from storefront.core.pagination import Page, paginate
from storefront.deps import CurrentUser, get_current_user, get_order_store
from storefront.services import checkout as checkout_service
from storefront.services.order_store import LineItem, OrderRecord, OrderStore

router = APIRouter()


def _order_out(order: OrderRecord, items: list[LineItem] | None = None) -> dict:
    out = {
        "id": order.id,
        "status": order.status.value,
        "total_paise": order.total_paise,
        "currency": order.currency,
        "payment_id": order.payment_id,
        "created_at": order.created_at.isoformat(),
        "updated_at": order.updated_at.isoformat(),
    }
    if items is not None:
        out["items"] = [i.model_dump() for i in items]
    return out


@router.post("/checkout", status_code=status.HTTP_201_CREATED)
async def checkout(
    user: CurrentUser = Depends(get_current_user),
    store: OrderStore = Depends(get_order_store),
):
    """Snapshot the cart into a pending order; pay it via /payments/create-order with order_id."""
    order, items = await checkout_service.place_order(store, user.id, get_settings().default_currency)
    return {"success": True, "order": _order_out(order, items)}


@router.get("")
async def orders_list(
    user: CurrentUser = Depends(get_current_user),
    store: OrderStore = Depends(get_order_store),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
) -> Page[dict]:
    """Current user's orders, newest first."""
    limit, offset = paginate(limit, offset)
    orders = await store.list_orders(user.id, limit=limit, offset=offset)
    return Page[dict](items=[_order_out(o) for o in orders], limit=limit, offset=offset)


@router.get("/{order_id}")
async def order_detail(
    order_id: str,
    user: CurrentUser = Depends(get_current_user),
    store: OrderStore = Depends(get_order_store),
):
    order = await store.get_order(order_id)
    if order is None or order.user_id != user.id:
        raise OrderNotFound()
    items = await store.get_line_items(order.id)
    return {"success": True, "order": _order_out(order, items)}
