from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Tuple

import structlog
from sqlalchemy.orm import Session, selectinload

from storefront.core.config import settings
from storefront.models.cart import Cart, CartItem
from storefront.models.order import Order, OrderItem, OrderStatus, ShippingRecord
from storefront.models.payment import PaymentProvider, PaymentStatus
from storefront.services.inventory_ledger import InventoryLedger
from storefront.services.payment_ledger import PaymentLedger
from storefront.services.results import (
    EmptyCart,
    FinalizedOrder,
    FinalizeResult,
    InsufficientStock,
    PaymentAlreadyRecorded,
)
from storefront.services.side_effects import OrderReceipt, ReceiptLine, SideEffectDispatcher
from storefront.services.tracking import generate_carrier, generate_tracking_number
from storefront.services.user_directory import UserDirectory

logger = structlog.get_logger()

ADDRESS_FIELDS = ("full_name", "phone", "address1", "address2", "city", "state", "postal_code", "country")


@dataclass(frozen=True)
class FinalizeRequest:
    cart_id: str
    buyer_email: str
    provider: PaymentProvider
    provider_ref: str
    buyer_name: Optional[str] = None
    address: Optional[dict] = None
    locale: Optional[str] = None


def line_name(item: CartItem) -> str:
    if item.variant is not None:
        return f"{item.product.name} ({item.variant.name})"
    return item.product.name


class OrderFinalizer:
    """
    Turns a paid cart into an order exactly once per (provider, provider_ref).

    The order, its items and shipping record, the payment row, the inventory
    decrement and the cart clear are committed together. Side effects are
    dispatched only after that commit.
    """

    def __init__(
        self,
        db: Session,
        inventory: InventoryLedger,
        payments: PaymentLedger,
        users: UserDirectory,
        dispatcher: SideEffectDispatcher,
    ):
        self.db = db
        self.inventory = inventory
        self.payments = payments
        self.users = users
        self.dispatcher = dispatcher

    def finalize(self, request: FinalizeRequest) -> FinalizeResult:
        log = logger.bind(
            cart_id=request.cart_id,
            provider=request.provider.value,
            provider_ref=request.provider_ref,
        )

        # 1. Idempotency gate
        existing_order_id = self.payments.find_existing_order_for(request.provider, request.provider_ref)
        if existing_order_id:
            log.info("order_finalize_replayed", order_id=existing_order_id)
            return FinalizedOrder(order_id=existing_order_id, replayed=True)

        # 2. Cart
        cart = self._load_cart(request.cart_id)
        if cart is None or not cart.items:
            log.info("order_finalize_empty_cart")
            return EmptyCart()

        per_product = self._quantities_by_product(list(cart.items))

        # 3. Stock, in product-id order, before anything is written
        for product_id, (name, qty) in per_product.items():
            if self.inventory.get_available_fresh(product_id) < qty:
                log.warning("order_finalize_insufficient_stock", product_id=product_id, requested=qty)
                return InsufficientStock(product_name=name)

        # 4. Buyer (commits on its own, expiring everything loaded above)
        buyer = self.users.get_or_create_by_email(request.buyer_email, request.buyer_name)
        buyer_id = buyer.id

        # A concurrent finalizer may have won while the buyer was upserted
        existing_order_id = self.payments.find_existing_order_for(request.provider, request.provider_ref)
        if existing_order_id:
            log.info("order_finalize_race_lost", order_id=existing_order_id)
            return FinalizedOrder(order_id=existing_order_id, replayed=True)

        # 5-7. One transaction
        try:
            receipt = self._write_order(request, buyer_id)
        except (PaymentAlreadyRecorded, _CartEmptied) as lost:
            self.db.rollback()
            winner = self.payments.find_existing_order_for(request.provider, request.provider_ref)
            if winner is not None:
                log.info("order_finalize_race_lost", order_id=winner)
                return FinalizedOrder(order_id=winner, replayed=True)
            if isinstance(lost, _CartEmptied):
                log.info("order_finalize_empty_cart")
                return EmptyCart()
            raise
        except _DecrementRejected as rejected:
            self.db.rollback()
            log.warning("order_finalize_decrement_rejected", product_name=rejected.product_name)
            return InsufficientStock(product_name=rejected.product_name)
        except Exception:
            self.db.rollback()
            log.exception("order_finalize_failed")
            raise

        log.info(
            "order_finalized",
            order_id=receipt.order_id,
            user_id=buyer_id,
            total_cents=receipt.total_cents,
            currency=receipt.currency,
        )

        # 8. Best-effort, outside the transaction
        self.dispatcher.dispatch(receipt)
        return FinalizedOrder(order_id=receipt.order_id)

    def _load_cart(self, cart_id: str) -> Optional[Cart]:
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

    def _lock_cart_lines(self, cart_id: str) -> Tuple[Optional[Cart], List[CartItem]]:
        """Cart row lock first, then inventory rows: the same order cart mutations use."""
        cart = (
            self.db.query(Cart)
            .filter(Cart.id == cart_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if cart is None:
            return None, []

        lines = (
            self.db.query(CartItem)
            .options(selectinload(CartItem.product), selectinload(CartItem.variant))
            .filter(CartItem.cart_id == cart.id)
            .order_by(CartItem.id.asc())
            .populate_existing()
            .all()
        )
        return cart, lines

    @staticmethod
    def _quantities_by_product(lines: List[CartItem]) -> "OrderedDict[int, tuple]":
        totals: Dict[int, list] = {}
        for item in lines:
            entry = totals.setdefault(item.product_id, [item.product.name, 0])
            entry[1] += item.qty
        # Sorted so concurrent finalizers take inventory row locks in the same order
        return OrderedDict((pid, tuple(totals[pid])) for pid in sorted(totals))

    def _write_order(self, request: FinalizeRequest, buyer_id: int) -> OrderReceipt:
        cart, lines = self._lock_cart_lines(request.cart_id)
        if cart is None or not lines:
            raise _CartEmptied()
        per_product = self._quantities_by_product(lines)

        currency = lines[0].product.currency
        subtotal = sum(item.price_cents * item.qty for item in lines)

        order = Order(
            user_id=buyer_id,
            status=OrderStatus.PAID,
            subtotal_cents=subtotal,
            total_cents=subtotal,
            currency=currency,
            payment_ref=request.provider_ref,
        )
        self.db.add(order)
        self.db.flush()

        # The unique (provider, provider_ref) insert decides a concurrent race
        self.payments.record(
            order_id=order.id,
            provider=request.provider,
            provider_ref=request.provider_ref,
            amount_cents=subtotal,
            currency=currency,
            status=PaymentStatus.SUCCEEDED,
        )

        receipt_lines = []
        for item in lines:
            name = line_name(item)
            sku = item.variant.sku if item.variant is not None else None
            self.db.add(
                OrderItem(
                    order_id=order.id,
                    product_id=item.product_id,
                    variant_id=item.variant_id,
                    name=name,
                    sku=sku,
                    qty=item.qty,
                    price_cents=item.price_cents,
                )
            )
            receipt_lines.append(
                ReceiptLine(
                    product_id=item.product_id,
                    name=name,
                    qty=item.qty,
                    price_cents=item.price_cents,
                    sku=sku,
                )
            )

        shipping = None
        carrier = tracking_no = None
        if request.address:
            shipping = self._shipping_snapshot(request.address)
            carrier = generate_carrier()
            tracking_no = generate_tracking_number(carrier)
            self.db.add(
                ShippingRecord(
                    order_id=order.id,
                    carrier=carrier,
                    tracking_no=tracking_no,
                    status="Preparing",
                    **shipping,
                )
            )

        for product_id, (name, qty) in per_product.items():
            if self.inventory.reserve_and_decrement(product_id, qty) is not None:
                raise _DecrementRejected(name)

        ordered_ids = [item.id for item in lines]
        self.db.query(CartItem).filter(CartItem.id.in_(ordered_ids)).delete(synchronize_session="fetch")
        cart.updated_at = datetime.utcnow()

        order_id = order.id
        created_at = order.created_at
        self.db.commit()

        return OrderReceipt(
            order_id=order_id,
            user_id=buyer_id,
            buyer_email=request.buyer_email.strip().lower(),
            buyer_name=request.buyer_name,
            currency=currency,
            subtotal_cents=subtotal,
            total_cents=subtotal,
            items=receipt_lines,
            shipping=shipping,
            carrier=carrier,
            tracking_no=tracking_no,
            payment_provider=request.provider.value,
            locale=request.locale,
            created_at=created_at.isoformat() if created_at else None,
        )

    @staticmethod
    def _shipping_snapshot(address: dict) -> dict:
        snapshot = {key: address.get(key) for key in ADDRESS_FIELDS}
        for key in ("full_name", "phone", "address1", "city", "postal_code"):
            snapshot[key] = snapshot[key] or ""
        snapshot["country"] = (snapshot["country"] or settings.DEFAULT_SHIPPING_COUNTRY).upper()
        return snapshot


class _DecrementRejected(Exception):
    def __init__(self, product_name: str):
        super().__init__(product_name)
        self.product_name = product_name


class _CartEmptied(Exception):
    pass
