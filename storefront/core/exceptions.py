from fastapi import HTTPException, status
from typing import Any, List, Optional


def _error_detail(code: str, message: str, **fields: Any) -> dict:
    return {
        "message": message,
        "errors": [{"code": code, **fields}],
    }


class ProductNotFound(HTTPException):
    def __init__(self):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Product not found"
        )


class CartItemNotFound(HTTPException):
    def __init__(self):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Cart item not found"
        )


class OrderNotFound(HTTPException):
    def __init__(self):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Order not found"
        )


class StockExceededError(HTTPException):
    def __init__(self, available: int):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=_error_detail(
                "STOCK_EXCEEDED",
                f"Insufficient stock. Only {available} items available",
                available=available,
            ),
        )


class CartEmptyError(HTTPException):
    def __init__(self):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=_error_detail("EMPTY_CART", "Cart not found or empty"),
        )


class InsufficientStockError(HTTPException):
    def __init__(self, product_name: str):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=_error_detail(
                "INSUFFICIENT_STOCK",
                f"Insufficient stock for {product_name}",
                product_name=product_name,
            ),
        )


class PaymentNotConfirmed(HTTPException):
    def __init__(self, message: str = "Payment not successful yet"):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=_error_detail("PAYMENT_NOT_CONFIRMED", message),
        )


class InvalidWebhookSignature(HTTPException):
    def __init__(self):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid webhook signature"
        )


class APIError(Exception):
    def __init__(self, status_code: int, message: str, errors: Optional[List[Any]] = None):
        self.status_code = status_code
        self.message = message
        self.errors = errors or []


class CartNotFound(HTTPException):
    def __init__(self):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=_error_detail("CART_NOT_FOUND", "Cart not found"),
        )
