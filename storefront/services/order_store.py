"""Order persistence: narrow adapter over MongoDB (Beanie) used by checkout and the payment lifecycle."""

from datetime import datetime
from typing import Any, Protocol

from beanie import PydanticObjectId, UpdateResponse
from beanie.operators import NE, In
from bson import ObjectId
from pydantic import BaseModel, Field
from pymongo.errors import DuplicateKeyError, PyMongoError

from storefront.core.exceptions import BadRequestError, StoreWriteFailed
from storefront.core.logging import get_logger
from storefront.models.cart_item import CartItem
from storefront.models.order import Order, OrderStatus
from storefront.models.order_item import OrderItem
from storefront.models.payment_intent import PaymentIntent
from storefront.models.product import Product

log = get_logger(__name__)


class OrderRecord(BaseModel):
    id: str
    user_id: str
    total_paise: int
    currency: str = "INR"
    status: OrderStatus = OrderStatus.PENDING
    payment_id: str | None = None
    payment_order_id: str | None = None
    payment_signature: str | None = None
    cart_cleared: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @classmethod
    def from_document(cls, doc: Order) -> "OrderRecord":
        return cls(
            id=str(doc.id),
            user_id=doc.user_id,
            total_paise=doc.total_paise,
            currency=doc.currency,
            status=doc.status,
            payment_id=doc.payment_id,
            payment_order_id=doc.payment_order_id,
            payment_signature=doc.payment_signature,
            cart_cleared=doc.cart_cleared,
            created_at=doc.created_at,
            updated_at=doc.updated_at,
        )


class LineItem(BaseModel):
    product_id: str
    quantity: int = Field(gt=0)
    unit_price_paise: int = Field(ge=0)

    @property
    def subtotal_paise(self) -> int:
        return self.quantity * self.unit_price_paise


class IntentRecord(BaseModel):
    provider_order_id: str
    order_id: str
    amount_paise: int
    currency: str = "INR"


class OrderStore(Protocol):
    async def create_order(self, user_id: str, total_paise: int, currency: str = "INR") -> OrderRecord: ...

    async def insert_line_items(self, order_id: str, items: list[LineItem]) -> None: ...

    async def clear_cart(self, user_id: str) -> int: ...

    async def update_order_status(
        self,
        order_id: str,
        new_status: OrderStatus,
        provider_fields: dict[str, Any] | None = None,
        expected_status: OrderStatus = OrderStatus.PENDING,
    ) -> OrderRecord | None: ...

    async def get_order(self, order_id: str) -> OrderRecord | None: ...

    async def find_order_by_provider_payment_id(self, payment_id: str) -> OrderRecord | None: ...

    async def list_cart_lines(self, user_id: str) -> list[LineItem]: ...

    async def list_orders(self, user_id: str, limit: int = 20, offset: int = 0) -> list[OrderRecord]: ...

    async def get_line_items(self, order_id: str) -> list[LineItem]: ...

    async def claim_cart_clear(self, order_id: str) -> bool: ...

    async def release_cart_clear(self, order_id: str) -> None: ...

    async def record_intent(
        self, provider_order_id: str, order_id: str, amount_paise: int, currency: str = "INR"
    ) -> IntentRecord: ...

    async def get_intent(self, provider_order_id: str) -> IntentRecord | None: ...


# Only these columns may be written alongside a status change.
PROVIDER_FIELDS = ("payment_id", "payment_order_id", "payment_signature")


def _provider_update(provider_fields: dict[str, Any] | None) -> dict[str, Any]:
    out = {}
    for key, value in (provider_fields or {}).items():
        if key not in PROVIDER_FIELDS:
            raise ValueError(f"Not a provider field: {key}")
        if value is not None:
            out[key] = value
    return out


def _object_id(value: str) -> PydanticObjectId | None:
    if not isinstance(value, str) or not ObjectId.is_valid(value):
        return None
    return PydanticObjectId(value)


class BeanieOrderStore:
    """OrderStore backed by Beanie documents. Requires init_beanie to have run."""

    async def create_order(self, user_id: str, total_paise: int, currency: str = "INR") -> OrderRecord:
        order = Order(user_id=user_id, total_paise=total_paise, currency=currency, status=OrderStatus.PENDING)
        try:
            await order.insert()
        except PyMongoError as exc:
            log.error("order_create_failed", user_id=user_id, error=str(exc))
            raise StoreWriteFailed("Failed to create order") from exc
        return OrderRecord.from_document(order)

    async def insert_line_items(self, order_id: str, items: list[LineItem]) -> None:
        """All-or-nothing: a partially written batch is removed before the error is raised."""
        if not items:
            return
        docs = [
            OrderItem(
                order_id=order_id,
                product_id=i.product_id,
                quantity=i.quantity,
                unit_price_paise=i.unit_price_paise,
            )
            for i in items
        ]
        try:
            await OrderItem.insert_many(docs)
        except PyMongoError as exc:
            log.error("order_items_insert_failed", order_id=order_id, error=str(exc))
            try:
                await OrderItem.find(OrderItem.order_id == order_id).delete()
            except PyMongoError as cleanup_exc:
                log.error("order_items_cleanup_failed", order_id=order_id, error=str(cleanup_exc))
            raise StoreWriteFailed("Failed to save order items") from exc

    async def clear_cart(self, user_id: str) -> int:
        try:
            result = await CartItem.find(CartItem.user_id == user_id).delete()
        except PyMongoError as exc:
            log.error("cart_clear_failed", user_id=user_id, error=str(exc))
            raise StoreWriteFailed("Failed to clear cart") from exc
        return result.deleted_count if result else 0

    async def update_order_status(
        self,
        order_id: str,
        new_status: OrderStatus,
        provider_fields: dict[str, Any] | None = None,
        expected_status: OrderStatus = OrderStatus.PENDING,
    ) -> OrderRecord | None:
        """
        Conditional single-row update: applies only while the order is still in expected_status.
        Returns the updated order, or None when no row matched (unknown id or status moved on).
        """
        oid = _object_id(order_id)
        if oid is None:
            return None
        fields = {"status": new_status.value, "updated_at": datetime.utcnow()}
        fields.update(_provider_update(provider_fields))
        try:
            doc = await Order.find_one(Order.id == oid, Order.status == expected_status.value).update(
                {"$set": fields},
                response_type=UpdateResponse.NEW_DOCUMENT,
            )
        except PyMongoError as exc:
            log.error("order_status_update_failed", order_id=order_id, status=new_status.value, error=str(exc))
            raise StoreWriteFailed() from exc
        return OrderRecord.from_document(doc) if doc else None

    async def get_order(self, order_id: str) -> OrderRecord | None:
        oid = _object_id(order_id)
        if oid is None:
            return None
        doc = await Order.get(oid)
        return OrderRecord.from_document(doc) if doc else None

    async def find_order_by_provider_payment_id(self, payment_id: str) -> OrderRecord | None:
        if not payment_id:
            return None
        doc = await Order.find_one(Order.payment_id == payment_id)
        return OrderRecord.from_document(doc) if doc else None

    async def list_cart_lines(self, user_id: str) -> list[LineItem]:
        """Price the user's cart from the catalog at this instant."""
        cart = await CartItem.find(CartItem.user_id == user_id).to_list()
        if not cart:
            return []
        ids = [oid for oid in (_object_id(c.product_id) for c in cart) if oid is not None]
        products = await Product.find(In(Product.id, ids)).to_list() if ids else []
        by_id = {str(p.id): p for p in products}
        lines = []
        for c in cart:
            product = by_id.get(c.product_id)
            if product is None or not product.active:
                raise BadRequestError(f"Product {c.product_id} is no longer available")
            lines.append(LineItem(product_id=c.product_id, quantity=c.quantity, unit_price_paise=product.price_paise))
        return lines

    async def list_orders(self, user_id: str, limit: int = 20, offset: int = 0) -> list[OrderRecord]:
        docs = (
            await Order.find(Order.user_id == user_id)
            .sort(-Order.created_at)
            .skip(offset)
            .limit(limit)
            .to_list()
        )
        return [OrderRecord.from_document(d) for d in docs]

    async def get_line_items(self, order_id: str) -> list[LineItem]:
        docs = await OrderItem.find(OrderItem.order_id == order_id).to_list()
        return [
            LineItem(product_id=d.product_id, quantity=d.quantity, unit_price_paise=d.unit_price_paise)
            for d in docs
        ]

    async def claim_cart_clear(self, order_id: str) -> bool:
        """Set cart_cleared if unset. Only the caller that flips it may delete the cart."""
        oid = _object_id(order_id)
        if oid is None:
            return False
        try:
            doc = await Order.find_one(Order.id == oid, NE(Order.cart_cleared, True)).update(
                {"$set": {"cart_cleared": True, "updated_at": datetime.utcnow()}},
                response_type=UpdateResponse.NEW_DOCUMENT,
            )
        except PyMongoError as exc:
            log.error("cart_clear_claim_failed", order_id=order_id, error=str(exc))
            raise StoreWriteFailed("Failed to clear cart") from exc
        return doc is not None

    async def release_cart_clear(self, order_id: str) -> None:
        oid = _object_id(order_id)
        if oid is None:
            return
        try:
            await Order.find_one(Order.id == oid).update(
                {"$set": {"cart_cleared": False}},
                response_type=UpdateResponse.UPDATE_RESULT,
            )
        except PyMongoError as exc:
            log.error("cart_clear_release_failed", order_id=order_id, error=str(exc))
            raise StoreWriteFailed("Failed to clear cart") from exc

    async def record_intent(
        self, provider_order_id: str, order_id: str, amount_paise: int, currency: str = "INR"
    ) -> IntentRecord:
        intent = PaymentIntent(
            provider_order_id=provider_order_id,
            order_id=order_id,
            amount_paise=amount_paise,
            currency=currency,
        )
        try:
            await intent.insert()
        except DuplicateKeyError as exc:
            raise StoreWriteFailed("Payment order already recorded") from exc
        except PyMongoError as exc:
            log.error("intent_record_failed", provider_order_id=provider_order_id, order_id=order_id, error=str(exc))
            raise StoreWriteFailed("Failed to record payment order") from exc
        return IntentRecord(
            provider_order_id=provider_order_id,
            order_id=order_id,
            amount_paise=amount_paise,
            currency=currency,
        )

    async def get_intent(self, provider_order_id: str) -> IntentRecord | None:
        if not provider_order_id or not isinstance(provider_order_id, str):
            return None
        doc = await PaymentIntent.find_one(PaymentIntent.provider_order_id == provider_order_id)
        if doc is None:
            return None
        return IntentRecord(
            provider_order_id=doc.provider_order_id,
            order_id=doc.order_id,
            amount_paise=doc.amount_paise,
            currency=doc.currency,
        )
