from pydantic import BaseModel, ConfigDict
from datetime import datetime
from typing import List, Optional

from storefront.models.order import OrderStatus


class OrderItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: int
    variant_id: Optional[int] = None
    name: str
    sku: Optional[str] = None
    qty: int
    price_cents: int


class ShippingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    full_name: str
    phone: str
    address1: str
    address2: Optional[str] = None
    city: str
    state: Optional[str] = None
    postal_code: str
    country: str
    carrier: str
    tracking_no: str
    status: str


class OrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    status: OrderStatus
    subtotal_cents: int
    total_cents: int
    currency: str
    payment_ref: Optional[str] = None
    created_at: datetime
    items: List[OrderItemResponse]
    shipping: Optional[ShippingResponse] = None
