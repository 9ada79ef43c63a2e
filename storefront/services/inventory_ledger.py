from typing import Optional

import structlog
from sqlalchemy import update
from sqlalchemy.orm import Session

from storefront.models.inventory import Inventory
from storefront.services.results import StockExceeded

logger = structlog.get_logger()


class InventoryLedger:
    """
    Source of truth for per-product available stock.

    None of these methods commit: every check or decrement belongs to the
    caller's transaction, next to the write that depends on it.
    """

    def __init__(self, db: Session):
        self.db = db

    def get_available(self, product_id: int) -> int:
        inventory = self.db.get(Inventory, product_id)
        return inventory.in_stock if inventory else 0

    def lock_available(self, product_id: int) -> int:
        """Read stock while holding the inventory row lock until commit/rollback."""
        inventory = (
            self.db.query(Inventory)
            .filter(Inventory.product_id == product_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        return inventory.in_stock if inventory else 0

    def check(self, product_id: int, desired_qty: int) -> Optional[StockExceeded]:
        """Gate a cart line at `desired_qty` (absolute, not incremental)."""
        available = self.lock_available(product_id)
        if desired_qty > available:
            logger.info(
                "stock_exceeded",
                product_id=product_id,
                requested=desired_qty,
                available=available,
            )
            return StockExceeded(available=available)
        return None

    def reserve_and_decrement(self, product_id: int, qty: int) -> Optional[StockExceeded]:
        """
        Decrement stock by `qty` only if at least `qty` is available.

        The availability test and the write are one conditional UPDATE, so two
        transactions that both read the same stale count cannot both succeed.
        """
        if qty <= 0:
            raise ValueError("qty must be positive")

        result = self.db.execute(
            update(Inventory)
            .where(Inventory.product_id == product_id, Inventory.in_stock >= qty)
            .values(in_stock=Inventory.in_stock - qty)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            available = self.get_available_fresh(product_id)
            logger.warning(
                "stock_decrement_rejected",
                product_id=product_id,
                requested=qty,
                available=available,
            )
            return StockExceeded(available=available)

        self._expire(product_id)
        return None

    def get_available_fresh(self, product_id: int) -> int:
        self._expire(product_id)
        return self.get_available(product_id)

    def _expire(self, product_id: int) -> None:
        cached = self.db.identity_map.get(self.db.identity_key(Inventory, product_id))
        if cached is not None:
            self.db.expire(cached)
