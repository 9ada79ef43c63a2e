import structlog
from sqlalchemy.orm import Session

from storefront.models.inventory import Inventory
from storefront.models.product import Product
from storefront.services.notifications import NotificationService, low_stock_template

logger = structlog.get_logger()


def is_low_stock(in_stock: int, low_stock_at) -> bool:
    if low_stock_at is None:
        return False
    return 0 < in_stock <= low_stock_at


class LowStockMonitor:
    """Post-commit threshold check; raises are isolated by the caller."""

    def __init__(self, db: Session, notifications: NotificationService):
        self.db = db
        self.notifications = notifications

    def check_and_notify(self, product_id: int) -> bool:
        inventory = (
            self.db.query(Inventory)
            .filter(Inventory.product_id == product_id)
            .populate_existing()
            .first()
        )
        if inventory is None or not is_low_stock(inventory.in_stock, inventory.low_stock_at):
            if inventory is not None and inventory.in_stock == 0:
                logger.warning("stock_depleted", product_id=product_id)
            return False

        product = self.db.get(Product, product_id)
        if product is None:
            return False

        logger.warning(
            "stock_depletion_warning",
            product_id=product_id,
            in_stock=inventory.in_stock,
            low_stock_at=inventory.low_stock_at,
        )
        self.notifications.create_system_notification(**low_stock_template(product.name, product.slug))
        return True
