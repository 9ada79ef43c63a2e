from typing import Optional

from fastapi import APIRouter, Depends, Request, Response, status

from storefront.api.deps import (
    get_cart_identity,
    get_cart_identity_resolver,
    get_cart_store,
    get_current_user_id,
)
from storefront.core.config import settings
from storefront.core.exceptions import CartItemNotFound, CartNotFound, ProductNotFound, StockExceededError
from storefront.models.cart import Cart
from storefront.schemas.cart import CartItemCreate, CartItemUpdate
from storefront.services.cart_identity import CartIdentity, CartIdentityResolver
from storefront.services.cart_store import CartStore, cart_totals, item_count
from storefront.services.results import CartNotFoundError, ProductNotFoundError, StockExceeded
from storefront.utils.response import success

router = APIRouter()


def set_cart_cookie(response: Response, cart_id: str) -> None:
    response.set_cookie(
        key=settings.CART_COOKIE_NAME,
        value=cart_id,
        max_age=settings.CART_COOKIE_MAX_AGE_SECONDS,
        httponly=True,
        samesite="lax",
        secure=settings.CART_COOKIE_SECURE,
        path="/",
    )


def serialize_cart(cart: Optional[Cart], cart_id: str) -> dict:
    items = list(cart.items) if cart is not None else []
    totals = cart_totals(cart) if cart is not None else None

    return {
        "id": cart_id,
        "currency": items[0].product.currency if items else None,
        "items": [
            {
                "id": item.id,
                "product_id": item.product_id,
                "product_name": item.product.name,
                "product_slug": item.product.slug,
                "variant_id": item.variant_id,
                "variant_name": item.variant.name if item.variant else None,
                "qty": item.qty,
                "price_cents": item.price_cents,
                "line_total_cents": item.price_cents * item.qty,
            }
            for item in items
        ],
        "totals": {
            "subtotal": totals.subtotal if totals else 0,
            "shipping": totals.shipping if totals else 0,
            "discount": totals.discount if totals else 0,
            "total": totals.total if totals else 0,
        },
        "item_count": item_count(cart),
    }


def _raise_if_exceeded(result: Optional[StockExceeded]) -> None:
    if isinstance(result, StockExceeded):
        raise StockExceededError(result.available)


@router.get("")
def get_cart(
    response: Response,
    identity: CartIdentity = Depends(get_cart_identity),
    store: CartStore = Depends(get_cart_store),
):
    """Current cart with lines and totals."""
    cart_id = store.get_or_create_cart(identity)
    set_cart_cookie(response, cart_id)
    return success(data=serialize_cart(store.get_cart(cart_id), cart_id))


@router.get("/mini")
def get_mini_cart(
    response: Response,
    identity: CartIdentity = Depends(get_cart_identity),
    store: CartStore = Depends(get_cart_store),
):
    cart_id = store.get_or_create_cart(identity)
    set_cart_cookie(response, cart_id)
    cart = store.get_cart(cart_id)
    return success(
        data={
            "item_count": item_count(cart),
            "total": cart_totals(cart).total if cart is not None else 0,
        }
    )


@router.post("/items", status_code=status.HTTP_201_CREATED)
def add_to_cart(
    payload: CartItemCreate,
    response: Response,
    identity: CartIdentity = Depends(get_cart_identity),
    store: CartStore = Depends(get_cart_store),
):
    cart_id = store.get_or_create_cart(identity)
    set_cart_cookie(response, cart_id)

    try:
        result = store.add_item(cart_id, payload.product_id, payload.variant_id, payload.qty)
    except ProductNotFoundError:
        raise ProductNotFound()
    except CartNotFoundError:
        raise CartNotFound()
    _raise_if_exceeded(result)

    return success(data=serialize_cart(store.get_cart(cart_id), cart_id), message="Item added to cart")


@router.put("/items/{item_id}")
def update_cart_item(
    item_id: int,
    payload: CartItemUpdate,
    response: Response,
    identity: CartIdentity = Depends(get_cart_identity),
    store: CartStore = Depends(get_cart_store),
):
    cart_id = store.get_or_create_cart(identity)
    set_cart_cookie(response, cart_id)

    if store.get_item(item_id, cart_id) is None:
        raise CartItemNotFound()

    try:
        result = store.update_qty(item_id, payload.qty, cart_id)
    except CartNotFoundError:
        raise CartNotFound()
    _raise_if_exceeded(result)

    return success(data=serialize_cart(store.get_cart(cart_id), cart_id), message="Cart updated")


@router.delete("/items/{item_id}")
def remove_cart_item(
    item_id: int,
    response: Response,
    identity: CartIdentity = Depends(get_cart_identity),
    store: CartStore = Depends(get_cart_store),
):
    cart_id = store.get_or_create_cart(identity)
    set_cart_cookie(response, cart_id)

    if not store.remove_item(item_id, cart_id):
        raise CartItemNotFound()

    return success(data=serialize_cart(store.get_cart(cart_id), cart_id), message="Item removed from cart")


@router.post("/merge")
def merge_cart(
    request: Request,
    response: Response,
    user_id: int = Depends(get_current_user_id),
    resolver: CartIdentityResolver = Depends(get_cart_identity_resolver),
    store: CartStore = Depends(get_cart_store),
):
    """Called after login: fold the cookie cart into the user's cart."""
    anonymous_cart_id = request.cookies.get(settings.CART_COOKIE_NAME)
    cart_id = resolver.merge_on_login(anonymous_cart_id, user_id)
    set_cart_cookie(response, cart_id)
    return success(data=serialize_cart(store.get_cart(cart_id), cart_id), message="Cart merged")
