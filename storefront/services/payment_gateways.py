import hashlib
import hmac
import json
import time
from typing import Any, Dict, Optional

import httpx
import structlog

from storefront.core.config import settings

logger = structlog.get_logger()


class PaymentGatewayError(RuntimeError):
    pass


class WebhookSignatureError(ValueError):
    pass


def _json_or_text(response: httpx.Response) -> Any:
    try:
        return response.json()
    except Exception:
        return response.text


def _require_success(response: httpx.Response, context: str) -> Dict[str, Any]:
    payload = _json_or_text(response)
    if response.status_code >= 400:
        raise PaymentGatewayError(f"{context} failed ({response.status_code}): {payload}")
    if not isinstance(payload, dict):
        raise PaymentGatewayError(f"{context} returned non-JSON payload: {payload}")
    return payload


def _flatten_metadata(metadata: Dict[str, str]) -> Dict[str, str]:
    return {f"metadata[{key}]": value for key, value in metadata.items()}


class StripeGateway:
    """Thin client over the Stripe REST API (form-encoded, basic auth)."""

    def __init__(
        self,
        secret_key: str,
        webhook_secret: str = "",
        *,
        api_base: str = "https://api.stripe.com",
        timeout: float = 10.0,
        tolerance_seconds: int = 300,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.tolerance_seconds = tolerance_seconds
        self.transport = transport

    @classmethod
    def from_settings(cls) -> "StripeGateway":
        return cls(
            settings.STRIPE_SECRET_KEY,
            settings.STRIPE_WEBHOOK_SECRET,
            api_base=settings.STRIPE_API_BASE,
            timeout=settings.PAYMENT_HTTP_TIMEOUT_SECONDS,
            tolerance_seconds=settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS,
        )

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.api_base,
            auth=(self.secret_key, ""),
            timeout=self.timeout,
            transport=self.transport,
        )

    def retrieve_payment_intent(self, payment_intent_id: str) -> Dict[str, Any]:
        try:
            with self._client() as client:
                response = client.get(f"/v1/payment_intents/{payment_intent_id}")
        except httpx.HTTPError as exc:
            raise PaymentGatewayError(f"Stripe request failed: {exc}") from exc
        return _require_success(response, "retrieve payment intent")

    def create_payment_intent(self, amount: int, currency: str, metadata: Dict[str, str]) -> Dict[str, Any]:
        data = {
            "amount": str(amount),
            "currency": currency.lower(),
            "automatic_payment_methods[enabled]": "true",
            **_flatten_metadata(metadata),
        }
        try:
            with self._client() as client:
                response = client.post("/v1/payment_intents", data=data)
        except httpx.HTTPError as exc:
            raise PaymentGatewayError(f"Stripe request failed: {exc}") from exc

        intent = _require_success(response, "create payment intent")
        logger.info("payment_intent_created", payment_intent_id=intent.get("id"), amount=amount)
        return intent

    def verify_webhook(self, payload: bytes, signature_header: Optional[str], now: Optional[int] = None) -> Dict[str, Any]:
        """
        Check a `Stripe-Signature` header (t=<ts>,v1=<hex>) and return the event.

        The signed message is "<t>.<raw body>" under HMAC-SHA256.
        """
        if not self.webhook_secret:
            raise WebhookSignatureError("Webhook secret not configured")
        if not signature_header:
            raise WebhookSignatureError("Missing signature header")

        timestamp = None
        signatures = []
        for part in signature_header.split(","):
            key, _, value = part.strip().partition("=")
            if key == "t":
                timestamp = value
            elif key == "v1":
                signatures.append(value)

        if not timestamp or not signatures:
            raise WebhookSignatureError("Malformed signature header")

        expected = compute_stripe_signature(self.webhook_secret, timestamp, payload)
        if not any(hmac.compare_digest(expected, candidate) for candidate in signatures):
            raise WebhookSignatureError("Signature mismatch")

        now = int(time.time()) if now is None else now
        try:
            age = abs(now - int(timestamp))
        except ValueError as exc:
            raise WebhookSignatureError("Malformed timestamp") from exc
        if age > self.tolerance_seconds:
            raise WebhookSignatureError("Timestamp outside tolerance")

        try:
            return json.loads(payload)
        except ValueError as exc:
            raise WebhookSignatureError("Invalid JSON payload") from exc


def compute_stripe_signature(secret: str, timestamp: str, payload: bytes) -> str:
    message = f"{timestamp}.".encode() + payload
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


class TossGateway:
    def __init__(
        self,
        secret_key: str,
        *,
        api_base: str = "https://api.tosspayments.com",
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.secret_key = secret_key
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_settings(cls) -> "TossGateway":
        return cls(
            settings.TOSS_SECRET_KEY,
            api_base=settings.TOSS_API_BASE,
            timeout=settings.PAYMENT_HTTP_TIMEOUT_SECONDS,
        )

    def confirm(self, payment_key: str, order_id: str, amount: int) -> Dict[str, Any]:
        """Confirm an authorized payment; a confirmed payment has status DONE."""
        try:
            with httpx.Client(
                base_url=self.api_base,
                auth=(self.secret_key, ""),
                timeout=self.timeout,
                transport=self.transport,
            ) as client:
                response = client.post(
                    "/v1/payments/confirm",
                    json={"paymentKey": payment_key, "orderId": order_id, "amount": amount},
                )
        except httpx.HTTPError as exc:
            raise PaymentGatewayError(f"Toss request failed: {exc}") from exc

        payment = _require_success(response, "confirm toss payment")
        if payment.get("status") != "DONE":
            raise PaymentGatewayError(f"Toss payment not completed: {payment.get('status')}")

        logger.info("toss_payment_confirmed", toss_order_id=order_id, amount=amount)
        return payment
