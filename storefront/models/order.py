from datetime import datetime
from enum import Enum

from beanie import Document, Indexed
from pydantic import Field


class OrderStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class Order(Document):
    """Checkout order; status is only changed through the lifecycle service."""
    user_id: Indexed(str)
    total_paise: int = Field(ge=0)
    currency: str = "INR"
    status: OrderStatus = OrderStatus.PENDING
    payment_id: str | None = None  # Razorpay payment id, set on payment
    payment_order_id: str | None = None  # Razorpay order id
    payment_signature: str | None = None  # kept for audit
    cart_cleared: bool = False  # claimed before the cart is deleted
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "orders"
        indexes = [
            [("user_id", 1), ("created_at", -1)],
            [("payment_id", 1)],
        ]
