import json
from typing import Any, Dict, Optional

import structlog

from storefront.models.payment import PaymentProvider
from storefront.services.order_finalizer import FinalizeRequest

logger = structlog.get_logger()

CHECKOUT_COMPLETED = "checkout.session.completed"


def _parse_address(raw: Any) -> Optional[dict]:
    if not raw:
        return None
    if isinstance(raw, dict):
        return raw
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("webhook_address_unparseable")
        return None
    return parsed if isinstance(parsed, dict) else None


def parse_checkout_completed(event: Dict[str, Any]) -> Optional[FinalizeRequest]:
    """
    Map a Stripe `checkout.session.completed` event to a finalize request.

    Returns None for other event types and for sessions that cannot be tied to
    a cart and a buyer; those are acknowledged without action.
    """
    if event.get("type") != CHECKOUT_COMPLETED:
        return None

    session = (event.get("data") or {}).get("object") or {}
    metadata = session.get("metadata") or {}

    cart_id = metadata.get("cartId")
    buyer_email = session.get("customer_email") or metadata.get("userEmail")
    provider_ref = session.get("payment_intent") or session.get("id")

    if not cart_id or not buyer_email or not provider_ref:
        logger.warning(
            "webhook_checkout_incomplete",
            event_id=event.get("id"),
            has_cart=bool(cart_id),
            has_email=bool(buyer_email),
        )
        return None

    customer = session.get("customer_details") or {}
    return FinalizeRequest(
        cart_id=cart_id,
        buyer_email=buyer_email,
        buyer_name=customer.get("name"),
        provider=PaymentProvider.STRIPE,
        provider_ref=provider_ref,
        address=_parse_address(metadata.get("address")),
        locale=metadata.get("locale"),
    )
