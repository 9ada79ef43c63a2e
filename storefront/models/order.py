from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Enum
from sqlalchemy.orm import relationship
from datetime import datetime
import enum
import uuid
from storefront.db.base_class import Base


class OrderStatus(str, enum.Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    FULFILLING = "FULFILLING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class Order(Base):
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    status = Column(Enum(OrderStatus), default=OrderStatus.PENDING, nullable=False, index=True)

    # Immutable pricing snapshot
    subtotal_cents = Column(Integer, nullable=False)
    total_cents = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False)

    payment_ref = Column(String(255), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    user = relationship("User", back_populates="orders")
    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")
    shipping = relationship("ShippingRecord", back_populates="order", uselist=False, cascade="all, delete-orphan")
    payments = relationship("Payment", back_populates="order")


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(String(36), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, nullable=False)  # no FK: decoupled from the live catalog
    variant_id = Column(Integer, nullable=True)

    name = Column(String(300), nullable=False)  # Snapshot at order time
    sku = Column(String(100), nullable=True)
    qty = Column(Integer, nullable=False)
    price_cents = Column(Integer, nullable=False)

    # Relationships
    order = relationship("Order", back_populates="items")


class ShippingRecord(Base):
    __tablename__ = "shipping_records"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(String(36), ForeignKey("orders.id", ondelete="CASCADE"), unique=True, nullable=False)

    full_name = Column(String(100), nullable=False, default="")
    phone = Column(String(30), nullable=False, default="")
    address1 = Column(String(255), nullable=False, default="")
    address2 = Column(String(255), nullable=True)
    city = Column(String(100), nullable=False, default="")
    state = Column(String(100), nullable=True)
    postal_code = Column(String(20), nullable=False, default="")
    country = Column(String(2), nullable=False)

    carrier = Column(String(50), nullable=False)
    tracking_no = Column(String(50), nullable=False, index=True)
    status = Column(String(50), nullable=False, default="Preparing")

    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    order = relationship("Order", back_populates="shipping")
