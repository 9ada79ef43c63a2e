import json
from typing import Optional

import structlog
from sqlalchemy.orm import Session

from storefront.models.notification import Notification, NotificationType
from storefront.models.order import OrderItem, OrderStatus
from storefront.models.product import Product

logger = structlog.get_logger()


# Titles/messages are i18n keys resolved by the client; params follow "|".
def order_confirmed_template(order_id: str, user_email: Optional[str], first_product_slug: Optional[str]) -> dict:
    return {
        "type": NotificationType.ORDER_UPDATE,
        "title": "i18n.notification.orderConfirmed",
        "message": f"i18n.notification.orderConfirmedMsg|{order_id[:8].upper()}",
        "data": {
            "orderId": order_id,
            "orderStatus": OrderStatus.PAID.value,
            "userEmail": user_email,
            "firstProductSlug": first_product_slug,
        },
    }


def low_stock_template(product_name: str, product_slug: str) -> dict:
    return {
        "type": NotificationType.PRODUCT_ALERT,
        "title": "i18n.notification.lowStock",
        "message": f"i18n.notification.lowStockMsg|{product_name}",
        "data": {"productSlug": product_slug, "productName": product_name},
    }


class NotificationService:
    """In-app notifications. Each call is its own short transaction."""

    def __init__(self, db: Session):
        self.db = db

    def create_user_notification(
        self,
        user_id: int,
        type: NotificationType,
        title: str,
        message: str,
        data: Optional[dict] = None,
    ) -> Notification:
        return self._create(user_id, type, title, message, data)

    def create_system_notification(
        self,
        type: NotificationType,
        title: str,
        message: str,
        data: Optional[dict] = None,
    ) -> Notification:
        return self._create(None, type, title, message, data)

    def order_confirmed(self, order_id: str, user_id: int, user_email: Optional[str] = None) -> Notification:
        template = order_confirmed_template(order_id, user_email, self._first_product_slug(order_id))
        return self.create_user_notification(user_id, **template)

    def _first_product_slug(self, order_id: str) -> Optional[str]:
        first_item = (
            self.db.query(OrderItem)
            .filter(OrderItem.order_id == order_id)
            .order_by(OrderItem.id.asc())
            .first()
        )
        if first_item is None:
            return None
        product = self.db.get(Product, first_item.product_id)
        return product.slug if product else None

    def _create(
        self,
        user_id: Optional[int],
        type: NotificationType,
        title: str,
        message: str,
        data: Optional[dict],
    ) -> Notification:
        notification = Notification(
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            data=json.dumps(data) if data is not None else None,
        )
        try:
            self.db.add(notification)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            "notification_created",
            notification_id=notification.id,
            user_id=user_id,
            notification_type=type.value,
        )
        return notification
