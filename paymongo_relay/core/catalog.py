"""Static product catalog with canonical prices."""
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional


@dataclass(frozen=True)
class Product:
    """A purchasable product and its canonical pre-tax price."""

    name: str
    amount: Decimal
    currency: str = "PHP"


PRODUCTS: Dict[str, Product] = {
    product.name: product
    for product in (
        Product("START UP VA Course", Decimal("1500.00")),
        Product("GHL Practice Access", Decimal("500.00")),
        Product("Freelancer Plan", Decimal("3500.00")),
        Product("Dedicated Coaching", Decimal("999.00")),
        Product("Customization Plan", Decimal("5000.00")),
        Product("Client Finder Tool", Decimal("500.00")),
    )
}


def get_product(name: str) -> Optional[Product]:
    """Look up a product by its exact display name."""
    return PRODUCTS.get(name)


def list_products() -> List[Product]:
    """All catalog products."""
    return list(PRODUCTS.values())
