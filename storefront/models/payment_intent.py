from datetime import datetime

from beanie import Document, Indexed
from pydantic import Field


class PaymentIntent(Document):
    """Razorpay order_id -> local order and amount, written by this server when the intent is created."""
    provider_order_id: Indexed(str, unique=True)
    order_id: str
    amount_paise: int
    currency: str = "INR"
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "payment_intents"
