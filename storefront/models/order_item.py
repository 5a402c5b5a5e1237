from beanie import Document
from pydantic import Field


class OrderItem(Document):
    """Line item snapshot; unit price is frozen at checkout."""
    order_id: str
    product_id: str
    quantity: int = Field(gt=0)
    unit_price_paise: int = Field(ge=0)

    class Settings:
        name = "order_items"
        indexes = [[("order_id", 1), ("product_id", 1)]]
