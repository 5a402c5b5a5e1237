import certifi
from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient

from storefront.core.config import get_settings
from storefront.models.cart_item import CartItem
from storefront.models.order import Order
from storefront.models.order_item import OrderItem
from storefront.models.payment_intent import PaymentIntent
from storefront.models.product import Product
from storefront.models.user import User

DOCUMENT_MODELS = [
    User,
    Product,
    CartItem,
    Order,
    OrderItem,
    PaymentIntent,
]


def _use_tls(uri: str) -> bool:
    """True if URI uses TLS (Atlas or explicit tls=true). Avoids TLS for plain mongodb:// in CI."""
    return "mongodb+srv://" in uri or "tls=true" in uri.lower()


async def init_db() -> AsyncIOMotorClient:
    """Connect and register document models. The caller owns the returned client."""
    settings = get_settings()
    kwargs = {}
    if _use_tls(settings.mongodb_uri):
        kwargs["tlsCAFile"] = certifi.where()
        kwargs["tlsDisableOCSPEndpointCheck"] = True
    client = AsyncIOMotorClient(settings.mongodb_uri, **kwargs)
    database = client[settings.mongodb_db_name]
    await init_beanie(database=database, document_models=DOCUMENT_MODELS)
    return client
