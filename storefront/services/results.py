"""
Outcome types returned by the checkout services.

Business failures that a caller is expected to branch on (stock limits, empty
carts) are returned as values instead of raised, so routers and webhook
handlers can match on them explicitly.
"""
from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class StockExceeded:
    """A cart mutation asked for more than the product has in stock."""
    available: int


@dataclass(frozen=True)
class EmptyCart:
    """Finalization was requested for a cart that is missing or has no lines."""


@dataclass(frozen=True)
class InsufficientStock:
    product_name: str


@dataclass(frozen=True)
class FinalizedOrder:
    order_id: str
    replayed: bool = False  # True when an earlier finalization already produced the order


@dataclass(frozen=True)
class SideEffectFailure:
    which: str
    error: str


FinalizeError = Union[EmptyCart, InsufficientStock]
FinalizeResult = Union[FinalizedOrder, EmptyCart, InsufficientStock]


class PaymentAlreadyRecorded(Exception):
    """Raised when a (provider, provider_ref) pair is inserted twice."""

    def __init__(self, provider: str, provider_ref: str):
        super().__init__(f"Payment {provider}:{provider_ref} already recorded")
        self.provider = provider
        self.provider_ref = provider_ref


class ProductNotFoundError(LookupError):
    """The catalog has no active product (or variant) for the given ids."""


class CartNotFoundError(LookupError):
    pass
