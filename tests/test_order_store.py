"""BeanieOrderStore against a test MongoDB (MONGODB_URI / MONGODB_DB_NAME from conftest)."""

import pytest
import pytest_asyncio
from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import PyMongoError

from storefront.core.config import get_settings
from storefront.core.exceptions import BadRequestError, StoreWriteFailed
from storefront.db.init import DOCUMENT_MODELS, init_db
from storefront.models.cart_item import CartItem
from storefront.models.order import OrderStatus
from storefront.models.order_item import OrderItem
from storefront.models.product import Product
from storefront.services.order_store import BeanieOrderStore, LineItem
from tests.conftest import USER_ID

pytestmark = pytest.mark.asyncio


@pytest_asyncio.fixture
async def db():
    # Skip if no MongoDB
    ping = AsyncIOMotorClient(get_settings().mongodb_uri, serverSelectionTimeoutMS=1000)
    try:
        await ping.admin.command("ping")
    except PyMongoError:
        pytest.skip("MongoDB not available")
    finally:
        ping.close()
    client = await init_db()
    for model in DOCUMENT_MODELS:
        await model.delete_all()
    yield client
    client.close()


@pytest.fixture
def mongo_store(db) -> BeanieOrderStore:
    return BeanieOrderStore()


async def test_create_and_get_order(mongo_store):
    order = await mongo_store.create_order(USER_ID, 49900)

    loaded = await mongo_store.get_order(order.id)

    assert loaded.id == order.id
    assert loaded.total_paise == 49900
    assert loaded.status == OrderStatus.PENDING
    assert loaded.cart_cleared is False


async def test_conditional_update_loses_to_earlier_transition(mongo_store):
    order = await mongo_store.create_order(USER_ID, 1000)

    paid = await mongo_store.update_order_status(order.id, OrderStatus.PAID, {"payment_id": "pay_1"})
    failed = await mongo_store.update_order_status(order.id, OrderStatus.FAILED, {"payment_id": "pay_2"})

    assert paid.status == OrderStatus.PAID
    assert failed is None
    saved = await mongo_store.get_order(order.id)
    assert saved.status == OrderStatus.PAID
    assert saved.payment_id == "pay_1"


async def test_update_skips_unset_provider_fields(mongo_store):
    order = await mongo_store.create_order(USER_ID, 1000)

    updated = await mongo_store.update_order_status(
        order.id,
        OrderStatus.PAID,
        {"payment_id": "pay_1", "payment_order_id": "order_rzp_1", "payment_signature": None},
    )

    assert (updated.payment_id, updated.payment_order_id, updated.payment_signature) == ("pay_1", "order_rzp_1", None)
    assert (await mongo_store.find_order_by_provider_payment_id("pay_1")).id == order.id
    assert await mongo_store.find_order_by_provider_payment_id("") is None


async def test_update_rejects_non_provider_fields(mongo_store):
    order = await mongo_store.create_order(USER_ID, 1000)

    with pytest.raises(ValueError):
        await mongo_store.update_order_status(order.id, OrderStatus.PAID, {"total_paise": 1})

    saved = await mongo_store.get_order(order.id)
    assert saved.status == OrderStatus.PENDING
    assert saved.total_paise == 1000


@pytest.mark.parametrize("order_id", ["not-an-object-id", "", "123", str(ObjectId())])
async def test_unknown_or_invalid_order_ids(mongo_store, order_id):
    assert await mongo_store.get_order(order_id) is None
    assert await mongo_store.update_order_status(order_id, OrderStatus.PAID) is None
    assert await mongo_store.claim_cart_clear(order_id) is False


async def test_insert_line_items(mongo_store):
    order = await mongo_store.create_order(USER_ID, 2500)
    items = [
        LineItem(product_id="p1", quantity=2, unit_price_paise=1000),
        LineItem(product_id="p2", quantity=1, unit_price_paise=500),
    ]

    await mongo_store.insert_line_items(order.id, items)

    saved = sorted(await mongo_store.get_line_items(order.id), key=lambda i: i.product_id)
    assert saved == items


async def test_partial_line_item_write_is_removed(mongo_store, monkeypatch):
    order = await mongo_store.create_order(USER_ID, 2500)

    async def insert_first_then_fail(docs, *args, **kwargs):
        await docs[0].insert()
        raise PyMongoError("connection reset")

    monkeypatch.setattr(OrderItem, "insert_many", insert_first_then_fail)
    items = [
        LineItem(product_id="p1", quantity=2, unit_price_paise=1000),
        LineItem(product_id="p2", quantity=1, unit_price_paise=500),
    ]

    with pytest.raises(StoreWriteFailed):
        await mongo_store.insert_line_items(order.id, items)

    assert await OrderItem.find(OrderItem.order_id == order.id).count() == 0


async def test_list_cart_lines_prices_from_catalog(mongo_store):
    shirt = Product(name="Shirt", price_paise=79900)
    mug = Product(name="Mug", price_paise=24900)
    await shirt.insert()
    await mug.insert()
    await CartItem(user_id=USER_ID, product_id=str(shirt.id), quantity=2).insert()
    await CartItem(user_id=USER_ID, product_id=str(mug.id), quantity=1).insert()
    await CartItem(user_id="someone-else", product_id=str(mug.id), quantity=5).insert()

    lines = await mongo_store.list_cart_lines(USER_ID)

    by_product = {line.product_id: line for line in lines}
    assert by_product[str(shirt.id)].unit_price_paise == 79900
    assert by_product[str(shirt.id)].quantity == 2
    assert by_product[str(mug.id)].unit_price_paise == 24900
    assert len(lines) == 2
    assert await mongo_store.list_cart_lines("nobody") == []


async def test_list_cart_lines_rejects_inactive_product(mongo_store):
    retired = Product(name="Retired", price_paise=1000, active=False)
    await retired.insert()
    await CartItem(user_id=USER_ID, product_id=str(retired.id), quantity=1).insert()

    with pytest.raises(BadRequestError, match="no longer available"):
        await mongo_store.list_cart_lines(USER_ID)


async def test_list_cart_lines_rejects_missing_product(mongo_store):
    await CartItem(user_id=USER_ID, product_id="deleted-product", quantity=1).insert()

    with pytest.raises(BadRequestError):
        await mongo_store.list_cart_lines(USER_ID)


async def test_clear_cart_only_touches_one_user(mongo_store):
    await CartItem(user_id=USER_ID, product_id="p1", quantity=1).insert()
    await CartItem(user_id=USER_ID, product_id="p2", quantity=3).insert()
    await CartItem(user_id="someone-else", product_id="p1", quantity=1).insert()

    assert await mongo_store.clear_cart(USER_ID) == 2
    assert await CartItem.find(CartItem.user_id == USER_ID).count() == 0
    assert await CartItem.find(CartItem.user_id == "someone-else").count() == 1
    assert await mongo_store.clear_cart(USER_ID) == 0


async def test_cart_clear_claim_is_taken_once(mongo_store):
    order = await mongo_store.create_order(USER_ID, 1000)

    assert await mongo_store.claim_cart_clear(order.id) is True
    assert await mongo_store.claim_cart_clear(order.id) is False
    assert (await mongo_store.get_order(order.id)).cart_cleared is True

    await mongo_store.release_cart_clear(order.id)

    assert (await mongo_store.get_order(order.id)).cart_cleared is False
    assert await mongo_store.claim_cart_clear(order.id) is True


async def test_record_and_get_intent(mongo_store):
    order = await mongo_store.create_order(USER_ID, 49900)

    await mongo_store.record_intent("order_rzp_1", order.id, 49900, "INR")
    intent = await mongo_store.get_intent("order_rzp_1")

    assert (intent.order_id, intent.amount_paise, intent.currency) == (order.id, 49900, "INR")
    assert await mongo_store.get_intent("order_rzp_unknown") is None
    assert await mongo_store.get_intent("") is None


async def test_payment_order_binds_to_one_order(mongo_store):
    first = await mongo_store.create_order(USER_ID, 1000)
    second = await mongo_store.create_order(USER_ID, 5000000)
    await mongo_store.record_intent("order_rzp_1", first.id, 1000)

    with pytest.raises(StoreWriteFailed):
        await mongo_store.record_intent("order_rzp_1", second.id, 5000000)

    assert (await mongo_store.get_intent("order_rzp_1")).order_id == first.id


async def test_list_orders_is_per_user_and_paged(mongo_store):
    for total in (100, 200, 300):
        await mongo_store.create_order(USER_ID, total)
    await mongo_store.create_order("someone-else", 999)

    mine = await mongo_store.list_orders(USER_ID)
    page = await mongo_store.list_orders(USER_ID, limit=2, offset=2)

    assert sorted(o.total_paise for o in mine) == [100, 200, 300]
    assert len(page) == 1
