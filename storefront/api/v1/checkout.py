import json

import structlog
from fastapi import APIRouter, Depends, Request, Response, status

from storefront.api.deps import (
    get_cart_identity,
    get_cart_store,
    get_current_user,
    get_raw_body,
    get_order_finalizer,
    get_payment_ledger,
    get_stripe_gateway,
    get_toss_gateway,
)
from storefront.core.config import settings
from storefront.core.exceptions import (
    APIError,
    CartEmptyError,
    InsufficientStockError,
    InvalidWebhookSignature,
    PaymentNotConfirmed,
)
from storefront.core.rate_limiter import limiter
from storefront.models.payment import PaymentProvider
from storefront.models.user import User
from storefront.schemas.checkout import CompleteRequest, CreateIntentRequest, TossCompleteRequest
from storefront.services.cart_identity import CartIdentity
from storefront.services.cart_store import CartStore, cart_totals
from storefront.services.order_finalizer import FinalizeRequest, OrderFinalizer
from storefront.services.payment_gateways import (
    PaymentGatewayError,
    StripeGateway,
    TossGateway,
    WebhookSignatureError,
)
from storefront.services.payment_ledger import PaymentLedger
from storefront.services.results import EmptyCart, FinalizedOrder, InsufficientStock
from storefront.services.webhooks import parse_checkout_completed
from storefront.utils.response import success

logger = structlog.get_logger()

router = APIRouter()


def _payment_error(code: str, message: str, status_code: int) -> APIError:
    return APIError(status_code, message, errors=[{"code": code}])


def _finalized_response(result) -> dict:
    if isinstance(result, EmptyCart):
        raise CartEmptyError()
    if isinstance(result, InsufficientStock):
        raise InsufficientStockError(result.product_name)
    return success(
        data={"order_id": result.order_id, "replayed": result.replayed},
        message="Order confirmed",
    )


@router.post("/create-intent")
@limiter.limit("10/minute")
def create_payment_intent(
    request: Request,
    payload: CreateIntentRequest,
    identity: CartIdentity = Depends(get_cart_identity),
    store: CartStore = Depends(get_cart_store),
    stripe: StripeGateway = Depends(get_stripe_gateway),
):
    """Stripe PaymentIntent for the current cart total."""
    cart_id = store.get_or_create_cart(identity)
    cart = store.get_cart(cart_id)
    if cart is None or not cart.items:
        raise CartEmptyError()

    totals = cart_totals(cart)
    currency = cart.items[0].product.currency
    metadata = {"cartId": cart_id, "userEmail": payload.email}
    if payload.address is not None:
        metadata["address"] = json.dumps(payload.address.model_dump())
    if payload.locale:
        metadata["locale"] = payload.locale

    try:
        intent = stripe.create_payment_intent(totals.total, currency, metadata)
    except PaymentGatewayError:
        logger.exception("payment_intent_create_failed", cart_id=cart_id)
        raise _payment_error("PAYMENT_GATEWAY_ERROR", "Could not start payment", status.HTTP_502_BAD_GATEWAY)

    return success(
        data={
            "payment_intent_id": intent.get("id"),
            "client_secret": intent.get("client_secret"),
            "amount": totals.total,
            "currency": currency,
        }
    )


@router.post("/complete")
@limiter.limit("10/minute")
def complete_checkout(
    request: Request,
    payload: CompleteRequest,
    current_user: User = Depends(get_current_user),
    identity: CartIdentity = Depends(get_cart_identity),
    store: CartStore = Depends(get_cart_store),
    stripe: StripeGateway = Depends(get_stripe_gateway),
    finalizer: OrderFinalizer = Depends(get_order_finalizer),
):
    """Client-side completion of a Stripe payment. Safe to race the webhook."""
    try:
        intent = stripe.retrieve_payment_intent(payload.payment_intent_id)
    except PaymentGatewayError:
        logger.exception("payment_intent_retrieve_failed", payment_intent_id=payload.payment_intent_id)
        raise _payment_error("PAYMENT_GATEWAY_ERROR", "Could not verify payment", status.HTTP_502_BAD_GATEWAY)

    if intent.get("status") != "succeeded":
        logger.warning(
            "payment_not_confirmed",
            payment_intent_id=payload.payment_intent_id,
            intent_status=intent.get("status"),
        )
        raise PaymentNotConfirmed()

    metadata = intent.get("metadata") or {}
    cart_id = metadata.get("cartId") or store.get_or_create_cart(identity)
    address = payload.address.model_dump() if payload.address is not None else None

    result = finalizer.finalize(
        FinalizeRequest(
            cart_id=cart_id,
            buyer_email=current_user.email,
            buyer_name=current_user.name,
            provider=PaymentProvider.STRIPE,
            provider_ref=payload.payment_intent_id,
            address=address,
            locale=payload.locale or metadata.get("locale"),
        )
    )
    return _finalized_response(result)


@router.post("/toss/complete")
@limiter.limit("10/minute")
def complete_toss_checkout(
    request: Request,
    payload: TossCompleteRequest,
    current_user: User = Depends(get_current_user),
    identity: CartIdentity = Depends(get_cart_identity),
    store: CartStore = Depends(get_cart_store),
    toss: TossGateway = Depends(get_toss_gateway),
    payments: PaymentLedger = Depends(get_payment_ledger),
    finalizer: OrderFinalizer = Depends(get_order_finalizer),
):
    # A replay must not re-confirm with Toss or compare against the cleared cart
    existing_order_id = payments.find_existing_order_for(PaymentProvider.TOSS, payload.order_id)
    if existing_order_id:
        return _finalized_response(FinalizedOrder(order_id=existing_order_id, replayed=True))

    cart_id = store.get_or_create_cart(identity)
    cart = store.get_cart(cart_id)
    if cart is None or not cart.items:
        raise CartEmptyError()

    expected = cart_totals(cart).total
    if payload.amount != expected:
        logger.warning(
            "toss_amount_mismatch",
            cart_id=cart_id,
            expected=expected,
            received=payload.amount,
        )
        raise _payment_error("AMOUNT_MISMATCH", "Payment amount does not match cart total", 400)

    try:
        toss.confirm(payload.payment_key, payload.order_id, payload.amount)
    except PaymentGatewayError:
        logger.exception("toss_confirm_failed", toss_order_id=payload.order_id)
        raise _payment_error("PAYMENT_VERIFICATION_FAILED", "Payment could not be confirmed", 400)

    result = finalizer.finalize(
        FinalizeRequest(
            cart_id=cart_id,
            buyer_email=current_user.email,
            buyer_name=current_user.name,
            provider=PaymentProvider.TOSS,
            provider_ref=payload.order_id,
            address=payload.address.model_dump() if payload.address is not None else None,
            locale=payload.locale,
        )
    )
    return _finalized_response(result)


@router.post("/webhooks/stripe")
@limiter.limit("120/minute")
def stripe_webhook(
    request: Request,
    payload: bytes = Depends(get_raw_body),
    stripe: StripeGateway = Depends(get_stripe_gateway),
    finalizer: OrderFinalizer = Depends(get_order_finalizer),
):
    """Handle Stripe webhooks"""
    if not settings.STRIPE_WEBHOOK_ENABLED:
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    try:
        event = stripe.verify_webhook(payload, request.headers.get("Stripe-Signature"))
    except WebhookSignatureError as exc:
        logger.warning("webhook_signature_invalid", reason=str(exc))
        raise InvalidWebhookSignature()

    logger.info("webhook_received", webhook_event=event.get("type"), event_id=event.get("id"))

    finalize_request = parse_checkout_completed(event)
    if finalize_request is None:
        return success(data={"received": True})

    result = finalizer.finalize(finalize_request)
    if isinstance(result, FinalizedOrder):
        return success(data={"received": True, "order_id": result.order_id, "replayed": result.replayed})

    # Paid but not fulfillable; acknowledged so the provider stops retrying
    logger.error(
        "webhook_finalize_rejected",
        event_id=event.get("id"),
        cart_id=finalize_request.cart_id,
        outcome=type(result).__name__,
    )
    return success(data={"received": True, "outcome": type(result).__name__})
