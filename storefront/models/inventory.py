from sqlalchemy import Column, Integer, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship
from storefront.db.base_class import Base


class Inventory(Base):
    """One row per product. Stock is tracked per product, not per variant."""
    __tablename__ = "inventory"

    product_id = Column(Integer, ForeignKey("products.id"), primary_key=True)
    in_stock = Column(Integer, default=0, nullable=False)
    low_stock_at = Column(Integer, nullable=True)  # alert threshold

    # Relationships
    product = relationship("Product", back_populates="inventory")

    __table_args__ = (
        CheckConstraint("in_stock >= 0", name="ck_inventory_in_stock_non_negative"),
    )
