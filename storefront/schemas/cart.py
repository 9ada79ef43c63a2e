from pydantic import BaseModel, Field
from typing import Optional


class CartItemCreate(BaseModel):
    product_id: int
    variant_id: Optional[int] = None
    qty: int = Field(default=1, ge=1, le=99)


class CartItemUpdate(BaseModel):
    # 0 removes the line
    qty: int = Field(..., ge=0, le=99)
