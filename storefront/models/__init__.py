from storefront.models.user import User
from storefront.models.product import Product
from storefront.models.cart_item import CartItem
from storefront.models.order import Order, OrderStatus
from storefront.models.order_item import OrderItem
from storefront.models.payment_intent import PaymentIntent

__all__ = [
    "User",
    "Product",
    "CartItem",
    "Order",
    "OrderStatus",
    "OrderItem",
    "PaymentIntent",
]
