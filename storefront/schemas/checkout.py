from pydantic import BaseModel, EmailStr, Field
from typing import Optional


class Address(BaseModel):
    full_name: str = Field(..., min_length=1, max_length=100)
    phone: str = Field(default="", max_length=30)
    address1: str = Field(..., min_length=1, max_length=255)
    address2: Optional[str] = Field(default=None, max_length=255)
    city: str = Field(default="", max_length=100)
    state: Optional[str] = Field(default=None, max_length=100)
    postal_code: str = Field(default="", max_length=20)
    country: Optional[str] = Field(default=None, min_length=2, max_length=2)


class CreateIntentRequest(BaseModel):
    email: EmailStr
    address: Optional[Address] = None
    locale: Optional[str] = None


class CompleteRequest(BaseModel):
    payment_intent_id: str = Field(..., min_length=1, max_length=255)
    address: Optional[Address] = None
    locale: Optional[str] = None


class TossCompleteRequest(BaseModel):
    payment_key: str = Field(..., min_length=1, max_length=255)
    order_id: str = Field(..., min_length=1, max_length=255)  # Toss-side order id
    amount: int = Field(..., gt=0)
    address: Optional[Address] = None
    locale: Optional[str] = None
