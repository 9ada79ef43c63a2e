from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy.orm import Session, selectinload

from storefront.models.cart import Cart

logger = structlog.get_logger()


@dataclass(frozen=True)
class CartIdentity:
    """
    Who a cart request belongs to, built once at the request boundary.

    `anonymous_token` is the opaque value the client holds (the cart cookie);
    it is compared as a plain string and never parsed.
    """
    anonymous_token: Optional[str] = None
    user_id: Optional[int] = None


def latest_user_cart_query(db: Session, user_id: int, exclude_cart_id: Optional[str] = None):
    query = db.query(Cart).filter(Cart.user_id == user_id)
    if exclude_cart_id:
        query = query.filter(Cart.id != exclude_cart_id)
    return query.order_by(Cart.updated_at.desc(), Cart.created_at.desc())


class CartIdentityResolver:
    """
    Folds an anonymous cart into the authenticated user's cart on login.

    The whole merge is a single transaction with both cart rows locked, and
    it is keyed on the anonymous cart still existing unowned: once merged (and
    deleted) or adopted, running it again changes nothing.
    """

    def __init__(self, db: Session):
        self.db = db

    def merge_on_login(self, anonymous_cart_id: Optional[str], user_id: int) -> str:
        """Merge and return the cart id the client's cart pointer must now hold."""
        try:
            target_cart_id = self._merge(anonymous_cart_id, user_id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            "cart_merge_completed",
            user_id=user_id,
            anonymous_cart_id=anonymous_cart_id,
            cart_id=target_cart_id,
        )
        return target_cart_id

    def _merge(self, anonymous_cart_id: Optional[str], user_id: int) -> str:
        anonymous_cart = self._lock_anonymous_cart(anonymous_cart_id, user_id)
        if isinstance(anonymous_cart, str):
            return anonymous_cart

        user_cart = (
            latest_user_cart_query(self.db, user_id, exclude_cart_id=anonymous_cart_id)
            .options(selectinload(Cart.items))
            .with_for_update()
            .first()
        )

        if anonymous_cart is None:
            if user_cart is not None:
                return user_cart.id
            cart = Cart(user_id=user_id)
            self.db.add(cart)
            self.db.flush()
            return cart.id

        if not anonymous_cart.items:
            if user_cart is None:
                self._adopt(anonymous_cart, user_id)
                return anonymous_cart.id
            return user_cart.id

        if user_cart is None:
            self._adopt(anonymous_cart, user_id)
            return anonymous_cart.id

        user_lines = {(line.product_id, line.variant_id): line for line in user_cart.items}
        summed = moved = 0
        for line in list(anonymous_cart.items):
            match = user_lines.get((line.product_id, line.variant_id))
            if match is not None:
                match.qty += line.qty
                anonymous_cart.items.remove(line)
                summed += 1
            else:
                line.cart = user_cart
                user_lines[(line.product_id, line.variant_id)] = line
                moved += 1

        user_cart.updated_at = datetime.utcnow()
        self.db.flush()
        self.db.delete(anonymous_cart)
        self.db.flush()

        logger.info(
            "cart_lines_merged",
            user_id=user_id,
            cart_id=user_cart.id,
            summed_lines=summed,
            moved_lines=moved,
        )
        return user_cart.id

    def _lock_anonymous_cart(self, anonymous_cart_id: Optional[str], user_id: int):
        """Returns the unowned cart, None, or the id to short-circuit to."""
        if not anonymous_cart_id:
            return None

        cart = (
            self.db.query(Cart)
            .options(selectinload(Cart.items))
            .filter(Cart.id == anonymous_cart_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if cart is None:
            return None
        if cart.user_id == user_id:
            return cart.id
        if cart.user_id is not None:
            logger.warning(
                "cart_merge_foreign_cart_ignored",
                user_id=user_id,
                cart_id=cart.id,
            )
            return None
        return cart

    def _adopt(self, cart: Cart, user_id: int) -> None:
        cart.user_id = user_id
        cart.updated_at = datetime.utcnow()
        self.db.flush()
