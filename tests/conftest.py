import asyncio
import os
from datetime import datetime
from typing import Any, AsyncGenerator

import pytest
import pytest_asyncio
from bson import ObjectId
from httpx import ASGITransport, AsyncClient

os.environ.setdefault("MONGODB_URI", "mongodb://localhost:27017")
os.environ.setdefault("MONGODB_DB_NAME", "storefront_test")
os.environ.setdefault("SECRET_KEY", "test-secret-key-min-32-characters-long")

from storefront.core.exceptions import StoreWriteFailed  # noqa: E402
from storefront.core.security import compute_signature  # noqa: E402
from storefront.models.order import OrderStatus  # noqa: E402
from storefront.services.gateway import PaymentGateway  # noqa: E402
from storefront.services.order_store import IntentRecord, LineItem, OrderRecord  # noqa: E402
from storefront.services.payments import PaymentService  # noqa: E402

KEY_SECRET = "test_key_secret"
WEBHOOK_SECRET = "test_webhook_secret"
USER_ID = "user-1"


class InMemoryOrderStore:
    """OrderStore double. Every call yields to the loop so concurrent callers interleave."""

    def __init__(self):
        self.orders: dict[str, OrderRecord] = {}
        self.line_items: dict[str, list[LineItem]] = {}
        self.carts: dict[str, list[LineItem]] = {}
        self.clear_cart_calls: list[str] = []
        self.calls: list[str] = []
        self.intents: dict[str, IntentRecord] = {}
        self.fail_line_items = False
        self.fail_updates = False
        self.fail_clear_cart = False

    def add_cart_line(self, user_id: str, product_id: str, quantity: int, unit_price_paise: int) -> None:
        self.carts.setdefault(user_id, []).append(
            LineItem(product_id=product_id, quantity=quantity, unit_price_paise=unit_price_paise)
        )

    def seed_order(self, user_id: str = USER_ID, total_paise: int = 50000, **fields: Any) -> OrderRecord:
        order = OrderRecord(id=str(ObjectId()), user_id=user_id, total_paise=total_paise, **fields)
        self.orders[order.id] = order
        return order

    def bind_intent(self, provider_order_id: str, order: OrderRecord, amount_paise: int | None = None) -> IntentRecord:
        intent = IntentRecord(
            provider_order_id=provider_order_id,
            order_id=order.id,
            amount_paise=order.total_paise if amount_paise is None else amount_paise,
            currency=order.currency,
        )
        self.intents[provider_order_id] = intent
        return intent

    async def _tick(self, name: str) -> None:
        self.calls.append(name)
        await asyncio.sleep(0)

    async def create_order(self, user_id: str, total_paise: int, currency: str = "INR") -> OrderRecord:
        await self._tick("create_order")
        return self.seed_order(user_id, total_paise, currency=currency)

    async def insert_line_items(self, order_id: str, items: list[LineItem]) -> None:
        await self._tick("insert_line_items")
        if self.fail_line_items:
            raise StoreWriteFailed("Failed to save order items")
        self.line_items[order_id] = list(items)

    async def clear_cart(self, user_id: str) -> int:
        await self._tick("clear_cart")
        if self.fail_clear_cart:
            raise StoreWriteFailed("Failed to clear cart")
        self.clear_cart_calls.append(user_id)
        return len(self.carts.pop(user_id, []))

    async def update_order_status(
        self,
        order_id: str,
        new_status: OrderStatus,
        provider_fields: dict[str, Any] | None = None,
        expected_status: OrderStatus = OrderStatus.PENDING,
    ) -> OrderRecord | None:
        await self._tick("update_order_status")
        if self.fail_updates:
            raise StoreWriteFailed()
        current = self.orders.get(order_id)
        if current is None or current.status != expected_status:
            return None
        update = {k: v for k, v in (provider_fields or {}).items() if v is not None}
        updated = current.model_copy(update={"status": new_status, "updated_at": datetime.utcnow(), **update})
        self.orders[order_id] = updated
        return updated

    async def get_order(self, order_id: str) -> OrderRecord | None:
        await self._tick("get_order")
        return self.orders.get(order_id)

    async def find_order_by_provider_payment_id(self, payment_id: str) -> OrderRecord | None:
        await self._tick("find_order_by_provider_payment_id")
        for order in self.orders.values():
            if payment_id and order.payment_id == payment_id:
                return order
        return None

    async def list_cart_lines(self, user_id: str) -> list[LineItem]:
        await self._tick("list_cart_lines")
        return list(self.carts.get(user_id, []))

    async def list_orders(self, user_id: str, limit: int = 20, offset: int = 0) -> list[OrderRecord]:
        await self._tick("list_orders")
        mine = sorted(
            (o for o in self.orders.values() if o.user_id == user_id),
            key=lambda o: o.created_at,
            reverse=True,
        )
        return mine[offset:offset + limit]

    async def get_line_items(self, order_id: str) -> list[LineItem]:
        await self._tick("get_line_items")
        return list(self.line_items.get(order_id, []))

    async def claim_cart_clear(self, order_id: str) -> bool:
        await self._tick("claim_cart_clear")
        order = self.orders.get(order_id)
        if order is None or order.cart_cleared:
            return False
        self.orders[order_id] = order.model_copy(update={"cart_cleared": True})
        return True

    async def release_cart_clear(self, order_id: str) -> None:
        await self._tick("release_cart_clear")
        order = self.orders.get(order_id)
        if order is not None:
            self.orders[order_id] = order.model_copy(update={"cart_cleared": False})

    async def record_intent(
        self, provider_order_id: str, order_id: str, amount_paise: int, currency: str = "INR"
    ) -> IntentRecord:
        await self._tick("record_intent")
        if provider_order_id in self.intents:
            raise StoreWriteFailed("Payment order already recorded")
        intent = IntentRecord(
            provider_order_id=provider_order_id, order_id=order_id, amount_paise=amount_paise, currency=currency
        )
        self.intents[provider_order_id] = intent
        return intent

    async def get_intent(self, provider_order_id: str) -> IntentRecord | None:
        await self._tick("get_intent")
        return self.intents.get(provider_order_id)


class FakeOrders:
    def __init__(self):
        self.created: list[dict] = []
        self.error: Exception | None = None

    def create(self, data: dict) -> dict:
        if self.error:
            raise self.error
        self.created.append(data)
        return {
            "id": f"order_TEST{len(self.created)}",
            "entity": "order",
            "amount": data["amount"],
            "currency": data["currency"],
            "receipt": data.get("receipt"),
            "notes": data.get("notes", []),
            "status": "created",
        }


class FakePayments:
    def __init__(self):
        self.error: Exception | None = None

    def fetch(self, payment_id: str) -> dict:
        if self.error:
            raise self.error
        return {"id": payment_id, "entity": "payment", "status": "captured", "amount": 50000}


class FakeRazorpayClient:
    def __init__(self):
        self.order = FakeOrders()
        self.payment = FakePayments()


def sign(message: bytes, secret: str) -> str:
    return compute_signature(message, secret)


def confirmation_signature(provider_order_id: str, provider_payment_id: str, secret: str = KEY_SECRET) -> str:
    return sign(f"{provider_order_id}|{provider_payment_id}".encode(), secret)


@pytest.fixture
def store() -> InMemoryOrderStore:
    return InMemoryOrderStore()


@pytest.fixture
def razorpay_client() -> FakeRazorpayClient:
    return FakeRazorpayClient()


@pytest.fixture
def gateway(razorpay_client: FakeRazorpayClient) -> PaymentGateway:
    return PaymentGateway(razorpay_client, timeout_seconds=1.0)


@pytest.fixture
def payment_service(store: InMemoryOrderStore, gateway: PaymentGateway) -> PaymentService:
    return PaymentService(store, gateway, key_secret=KEY_SECRET, webhook_secret=WEBHOOK_SECRET)


@pytest.fixture
def current_user():
    from storefront.deps import CurrentUser
    return CurrentUser(id=USER_ID, email="shopper@example.com")


@pytest_asyncio.fixture
async def client(store, payment_service, current_user) -> AsyncGenerator[AsyncClient, None]:
    from storefront.deps import get_current_user, get_order_store, get_payment_service
    from storefront.main import app
    app.dependency_overrides[get_order_store] = lambda: store
    app.dependency_overrides[get_payment_service] = lambda: payment_service
    app.dependency_overrides[get_current_user] = lambda: current_user
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
    app.dependency_overrides.clear()
