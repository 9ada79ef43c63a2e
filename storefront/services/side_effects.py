"""
Post-commit work for a finalized order.

Everything here runs after the order transaction has committed. A failure in
one step is logged and reported back, never raised: the order already exists
and the payment has already been taken.
"""
from dataclasses import asdict, dataclass, field
from typing import Callable, List, Optional

import structlog

from storefront.services.low_stock import LowStockMonitor
from storefront.services.notifications import NotificationService
from storefront.services.recommendation_cache import RecommendationCache
from storefront.services.results import SideEffectFailure

logger = structlog.get_logger()


@dataclass(frozen=True)
class ReceiptLine:
    product_id: int
    name: str
    qty: int
    price_cents: int
    sku: Optional[str] = None


@dataclass(frozen=True)
class OrderReceipt:
    order_id: str
    user_id: int
    buyer_email: str
    currency: str
    subtotal_cents: int
    total_cents: int
    items: List[ReceiptLine] = field(default_factory=list)
    buyer_name: Optional[str] = None
    shipping: Optional[dict] = None
    carrier: Optional[str] = None
    tracking_no: Optional[str] = None
    payment_provider: Optional[str] = None
    locale: Optional[str] = None
    created_at: Optional[str] = None

    @property
    def product_ids(self) -> List[int]:
        return sorted({line.product_id for line in self.items})

    def to_payload(self) -> dict:
        """JSON-safe form handed to the email worker."""
        return asdict(self)

    @classmethod
    def from_payload(cls, payload: dict) -> "OrderReceipt":
        data = dict(payload)
        data["items"] = [ReceiptLine(**line) for line in data.get("items", [])]
        return cls(**data)


EmailSender = Callable[[OrderReceipt], None]


class SideEffectDispatcher:
    def __init__(
        self,
        email_sender: EmailSender,
        notifications: NotificationService,
        low_stock: LowStockMonitor,
        recommendation_cache: Optional[RecommendationCache] = None,
    ):
        self.email_sender = email_sender
        self.notifications = notifications
        self.low_stock = low_stock
        self.recommendation_cache = recommendation_cache

    def dispatch(self, receipt: OrderReceipt) -> List[SideEffectFailure]:
        steps = (
            ("email", self._send_email),
            ("low_stock", self._check_low_stock),
            ("notification", self._notify_buyer),
            ("recommendations", self._invalidate_recommendations),
        )
        failures: List[SideEffectFailure] = []
        for which, step in steps:
            try:
                step(receipt)
            except Exception as exc:
                logger.exception("side_effect_failed", which=which, order_id=receipt.order_id)
                failures.append(SideEffectFailure(which=which, error=str(exc)))

        logger.info(
            "side_effects_dispatched",
            order_id=receipt.order_id,
            failed=[f.which for f in failures],
        )
        return failures

    def _send_email(self, receipt: OrderReceipt) -> None:
        self.email_sender(receipt)

    def _check_low_stock(self, receipt: OrderReceipt) -> None:
        for product_id in receipt.product_ids:
            self.low_stock.check_and_notify(product_id)

    def _notify_buyer(self, receipt: OrderReceipt) -> None:
        self.notifications.order_confirmed(receipt.order_id, receipt.user_id, receipt.buyer_email)

    def _invalidate_recommendations(self, receipt: OrderReceipt) -> None:
        if self.recommendation_cache is None:
            return
        self.recommendation_cache.invalidate_user(receipt.user_id)
