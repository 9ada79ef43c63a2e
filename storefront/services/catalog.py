from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from storefront.models.product import Product, ProductVariant


@dataclass(frozen=True)
class PricedLine:
    product_id: int
    variant_id: Optional[int]
    price_cents: int
    currency: str


class Catalog:
    """Read-only product/variant lookup used to price new cart lines."""

    def __init__(self, db: Session):
        self.db = db

    def get_product(self, product_id: int) -> Optional[Product]:
        return (
            self.db.query(Product)
            .filter(Product.id == product_id, Product.is_active == True)  # noqa: E712
            .first()
        )

    def get_variant(self, product_id: int, variant_id: int) -> Optional[ProductVariant]:
        return (
            self.db.query(ProductVariant)
            .filter(ProductVariant.id == variant_id, ProductVariant.product_id == product_id)
            .first()
        )

    def price_line(self, product_id: int, variant_id: Optional[int]) -> Optional[PricedLine]:
        """Current price: the variant's when one is given, else the product base price."""
        product = self.get_product(product_id)
        if product is None:
            return None

        if variant_id is not None:
            variant = self.get_variant(product_id, variant_id)
            if variant is None:
                return None
            return PricedLine(product.id, variant.id, variant.price_cents, product.currency)

        return PricedLine(product.id, None, product.price_cents, product.currency)
