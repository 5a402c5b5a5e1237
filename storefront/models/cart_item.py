from datetime import datetime

from beanie import Document
from pydantic import Field


class CartItem(Document):
    """Owned by the cart subsystem; read at checkout, cleared once the order is paid."""
    user_id: str
    product_id: str
    quantity: int = Field(gt=0)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "cart_items"
        indexes = [[("user_id", 1), ("product_id", 1)]]
