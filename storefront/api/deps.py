from typing import Optional

import structlog
from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from storefront.core.config import settings
from storefront.core.security import decode_token
from storefront.db.session import get_db
from storefront.models.user import User
from storefront.services.cart_identity import CartIdentity, CartIdentityResolver
from storefront.services.cart_store import CartStore
from storefront.services.catalog import Catalog
from storefront.services.inventory_ledger import InventoryLedger
from storefront.services.low_stock import LowStockMonitor
from storefront.services.notifications import NotificationService
from storefront.services.order_finalizer import OrderFinalizer
from storefront.services.payment_gateways import StripeGateway, TossGateway
from storefront.services.payment_ledger import PaymentLedger
from storefront.services.recommendation_cache import RecommendationCache
from storefront.services.side_effects import EmailSender, SideEffectDispatcher
from storefront.services.user_directory import UserDirectory
from storefront.utils.email import queue_order_confirmation_email

logger = structlog.get_logger()


def _read_token(request: Request) -> Optional[str]:
    if request.cookies.get("access_token"):
        return request.cookies.get("access_token")

    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header.split(" ", 1)[1]
    return None


def _user_id_from_payload(payload: dict) -> Optional[int]:
    try:
        return int(payload.get("sub"))
    except (TypeError, ValueError):
        return None


def get_optional_user_id(request: Request) -> Optional[int]:
    """User id from a valid access token; anonymous (None) otherwise."""
    token = _read_token(request)
    if not token:
        return None
    try:
        payload = decode_token(token)
    except HTTPException:
        logger.info("access_token_ignored", path=request.url.path)
        return None
    return _user_id_from_payload(payload)


def get_current_user_id(request: Request) -> int:
    token = _read_token(request)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )

    user_id = _user_id_from_payload(decode_token(token))
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
        )
    return user_id


def get_current_user(
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> User:
    user = UserDirectory(db).get_by_id(user_id)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found",
        )
    return user


async def get_raw_body(request: Request) -> bytes:
    """Unparsed request body, read on the event loop so handlers can stay sync."""
    return await request.body()


def get_cart_identity(
    request: Request,
    user_id: Optional[int] = Depends(get_optional_user_id),
) -> CartIdentity:
    return CartIdentity(
        anonymous_token=request.cookies.get(settings.CART_COOKIE_NAME),
        user_id=user_id,
    )


# --------------------------------------------------
# SERVICES (overridable in tests)
# --------------------------------------------------
def get_cart_store(db: Session = Depends(get_db)) -> CartStore:
    return CartStore(db, Catalog(db), InventoryLedger(db))


def get_cart_identity_resolver(db: Session = Depends(get_db)) -> CartIdentityResolver:
    return CartIdentityResolver(db)


def get_email_sender() -> EmailSender:
    return queue_order_confirmation_email


def get_recommendation_cache() -> Optional[RecommendationCache]:
    if not settings.REDIS_URL:
        return None
    return RecommendationCache.from_url(settings.REDIS_URL, settings.RECOMMENDATION_CACHE_TTL_SECONDS)


def get_side_effect_dispatcher(
    db: Session = Depends(get_db),
    email_sender: EmailSender = Depends(get_email_sender),
    recommendation_cache: Optional[RecommendationCache] = Depends(get_recommendation_cache),
) -> SideEffectDispatcher:
    notifications = NotificationService(db)
    return SideEffectDispatcher(
        email_sender=email_sender,
        notifications=notifications,
        low_stock=LowStockMonitor(db, notifications),
        recommendation_cache=recommendation_cache,
    )


def get_order_finalizer(
    db: Session = Depends(get_db),
    dispatcher: SideEffectDispatcher = Depends(get_side_effect_dispatcher),
) -> OrderFinalizer:
    return OrderFinalizer(
        db,
        inventory=InventoryLedger(db),
        payments=PaymentLedger(db),
        users=UserDirectory(db),
        dispatcher=dispatcher,
    )


def get_stripe_gateway() -> StripeGateway:
    return StripeGateway.from_settings()


def get_toss_gateway() -> TossGateway:
    return TossGateway.from_settings()


def get_payment_ledger(db: Session = Depends(get_db)) -> PaymentLedger:
    return PaymentLedger(db)
