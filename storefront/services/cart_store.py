from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from storefront.models.cart import Cart, CartItem
from storefront.services.cart_identity import CartIdentity, latest_user_cart_query
from storefront.services.catalog import Catalog
from storefront.services.inventory_ledger import InventoryLedger
from storefront.services.results import CartNotFoundError, ProductNotFoundError, StockExceeded

logger = structlog.get_logger()

MAX_TOKEN_LENGTH = 64


@dataclass(frozen=True)
class CartTotals:
    subtotal: int
    shipping: int
    discount: int
    total: int


def cart_totals(cart: Cart) -> CartTotals:
    """Totals over the price snapshots; no shipping or discount engine."""
    subtotal = sum(item.price_cents * item.qty for item in cart.items)
    shipping = 0
    discount = 0
    return CartTotals(
        subtotal=subtotal,
        shipping=shipping,
        discount=discount,
        total=subtotal + shipping - discount,
    )


def item_count(cart: Optional[Cart]) -> int:
    if cart is None:
        return 0
    return sum(item.qty for item in cart.items)


class CartStore:
    """
    Cart and line-item persistence.

    Every mutation locks the cart row and then the product's inventory row
    before checking stock, so concurrent edits of one cart (two tabs, two
    devices) are applied one at a time against a fresh stock count.
    """

    def __init__(self, db: Session, catalog: Catalog, inventory: InventoryLedger):
        self.db = db
        self.catalog = catalog
        self.inventory = inventory

    # =====================================================
    # QUERY
    # =====================================================
    def get_cart(self, cart_id: str) -> Optional[Cart]:
        return (
            self.db.query(Cart)
            .options(
                selectinload(Cart.items).selectinload(CartItem.product),
                selectinload(Cart.items).selectinload(CartItem.variant),
            )
            .filter(Cart.id == cart_id)
            .populate_existing()
            .first()
        )

    def get_item(self, item_id: int, cart_id: Optional[str] = None) -> Optional[CartItem]:
        query = self.db.query(CartItem).filter(CartItem.id == item_id)
        if cart_id is not None:
            query = query.filter(CartItem.cart_id == cart_id)
        return query.first()

    # =====================================================
    # COMMANDS
    # =====================================================
    def get_or_create_cart(self, identity: CartIdentity) -> str:
        """
        Resolve the single active cart for `identity`, creating it lazily.

        1. user + unowned token cart  -> adopt the token cart for the user
        2. user                        -> user's most recently updated cart (or new)
        3. token only                  -> the token's cart (created with the token as id)
        """
        token = identity.anonymous_token
        if token is not None and (not token or len(token) > MAX_TOKEN_LENGTH):
            token = None

        if identity.user_id is not None:
            return self._resolve_user_cart(token, identity.user_id)
        return self._resolve_anonymous_cart(token)

    def add_item(
        self,
        cart_id: str,
        product_id: int,
        variant_id: Optional[int],
        qty: int,
    ) -> Optional[StockExceeded]:
        if qty <= 0:
            raise ValueError("qty must be greater than 0")

        priced = self.catalog.price_line(product_id, variant_id)
        if priced is None:
            raise ProductNotFoundError(f"Product {product_id} (variant {variant_id}) not found")

        try:
            cart = self._lock_cart(cart_id)
            existing = (
                self.db.query(CartItem)
                .filter(
                    CartItem.cart_id == cart.id,
                    CartItem.product_id == product_id,
                    CartItem.variant_id.is_(None) if variant_id is None else CartItem.variant_id == variant_id,
                )
                .first()
            )

            # Check the combined line quantity, not just this increment
            desired = existing.qty + qty if existing else qty
            exceeded = self.inventory.check(product_id, desired)
            if exceeded is not None:
                self.db.rollback()
                return exceeded

            if existing:
                existing.qty = desired
            else:
                self.db.add(
                    CartItem(
                        cart_id=cart.id,
                        product_id=product_id,
                        variant_id=priced.variant_id,
                        qty=qty,
                        price_cents=priced.price_cents,
                    )
                )
            cart.updated_at = datetime.utcnow()
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            "cart_item_added",
            cart_id=cart_id,
            product_id=product_id,
            variant_id=variant_id,
            qty=qty,
            line_qty=desired,
        )
        return None

    def update_qty(self, item_id: int, qty: int, cart_id: Optional[str] = None) -> Optional[StockExceeded]:
        """Set a line to an absolute quantity; `qty <= 0` deletes the line."""
        item = self.get_item(item_id, cart_id)
        if item is None:
            return None

        try:
            cart = self._lock_cart(item.cart_id)
            # The line may have been removed while waiting for the lock
            item = (
                self.db.query(CartItem)
                .filter(CartItem.id == item_id, CartItem.cart_id == cart.id)
                .populate_existing()
                .first()
            )
            if item is None:
                self.db.rollback()
                return None

            if qty <= 0:
                self.db.delete(item)
            else:
                exceeded = self.inventory.check(item.product_id, qty)
                if exceeded is not None:
                    self.db.rollback()
                    return exceeded
                item.qty = qty
            cart.updated_at = datetime.utcnow()
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info("cart_item_updated", item_id=item_id, qty=qty)
        return None

    def remove_item(self, item_id: int, cart_id: Optional[str] = None) -> bool:
        query = self.db.query(CartItem).filter(CartItem.id == item_id)
        if cart_id is not None:
            query = query.filter(CartItem.cart_id == cart_id)
        deleted = query.delete(synchronize_session="fetch")
        self.db.commit()

        logger.info("cart_item_removed", item_id=item_id, deleted=bool(deleted))
        return bool(deleted)

    # =====================================================
    # INTERNALS
    # =====================================================
    def _lock_cart(self, cart_id: str) -> Cart:
        cart = (
            self.db.query(Cart)
            .filter(Cart.id == cart_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if cart is None:
            raise CartNotFoundError(f"Cart {cart_id} not found")
        return cart

    def _resolve_user_cart(self, token: Optional[str], user_id: int) -> str:
        if token:
            cart = (
                self.db.query(Cart)
                .filter(Cart.id == token)
                .with_for_update()
                .populate_existing()
                .first()
            )
            if cart is not None and cart.user_id is None:
                cart.user_id = user_id
                cart.updated_at = datetime.utcnow()
                self.db.commit()
                logger.info("cart_adopted", cart_id=cart.id, user_id=user_id)
                return cart.id
            if cart is not None and cart.user_id == user_id:
                self.db.commit()
                return cart.id
            self.db.rollback()

        existing = latest_user_cart_query(self.db, user_id).first()
        if existing is not None:
            return existing.id

        cart = Cart(user_id=user_id)
        self.db.add(cart)
        self.db.commit()
        logger.info("cart_created", cart_id=cart.id, user_id=user_id)
        return cart.id

    def _resolve_anonymous_cart(self, token: Optional[str]) -> str:
        if token:
            cart = self.db.get(Cart, token)
            if cart is not None and cart.user_id is None:
                return cart.id
            if cart is None:
                return self._create_token_cart(token)
            # The token points at an owned cart; never hand it to an anonymous caller

        cart = Cart()
        self.db.add(cart)
        self.db.commit()
        logger.info("cart_created", cart_id=cart.id, user_id=None)
        return cart.id

    def _create_token_cart(self, token: str) -> str:
        try:
            self.db.add(Cart(id=token))
            self.db.commit()
        except IntegrityError:
            # A concurrent request created the same token cart first
            self.db.rollback()
        logger.info("cart_created", cart_id=token, user_id=None)
        return token
