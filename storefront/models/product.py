from beanie import Document


class Product(Document):
    """Catalog product (read-only here)."""
    name: str
    price_paise: int
    active: bool = True

    class Settings:
        name = "products"
