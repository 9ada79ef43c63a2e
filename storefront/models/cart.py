from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, CheckConstraint, Index
from sqlalchemy.orm import relationship
from datetime import datetime
import uuid
from storefront.db.base_class import Base


def _new_cart_id() -> str:
    return str(uuid.uuid4())


class Cart(Base):
    __tablename__ = "carts"

    # Anonymous carts are addressed by this id alone (it is the cookie value)
    id = Column(String(64), primary_key=True, default=_new_cart_id)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    user = relationship("User", back_populates="carts")
    items = relationship(
        "CartItem",
        back_populates="cart",
        cascade="all, delete-orphan",
        order_by="CartItem.created_at",
    )


class CartItem(Base):
    __tablename__ = "cart_items"

    id = Column(Integer, primary_key=True, index=True)
    cart_id = Column(String(64), ForeignKey("carts.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    variant_id = Column(Integer, ForeignKey("product_variants.id"), nullable=True)

    qty = Column(Integer, nullable=False)
    price_cents = Column(Integer, nullable=False)  # Lock price when added

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    cart = relationship("Cart", back_populates="items")
    product = relationship("Product")
    variant = relationship("ProductVariant")

    __table_args__ = (
        CheckConstraint("qty > 0", name="ck_cart_items_qty_positive"),
    )


# Composite index for line lookups by (product, variant)
Index("idx_cart_item_line", CartItem.cart_id, CartItem.product_id, CartItem.variant_id)
