import json
import time

import httpx
from fastapi.testclient import TestClient

from storefront.api.deps import get_stripe_gateway, get_toss_gateway
from storefront.core.config import settings
from storefront.main import app
from storefront.models.order import Order
from storefront.models.user import User
from storefront.services.payment_gateways import StripeGateway, TossGateway, compute_stripe_signature


def _stripe_with_intents(intents: dict) -> StripeGateway:
    """Gateway whose REST calls are answered from an in-memory intent table."""
    def handler(request: httpx.Request) -> httpx.Response:
        intent_id = request.url.path.rsplit("/", 1)[-1]
        if intent_id not in intents:
            return httpx.Response(404, json={"error": {"message": "No such payment_intent"}})
        return httpx.Response(200, json={"id": intent_id, **intents[intent_id]})

    return StripeGateway("sk_test", "whsec_test", transport=httpx.MockTransport(handler))


def _add_item(client: TestClient, product, qty: int = 1, headers=None):
    return client.post("/api/v1/cart/items", json={"product_id": product.id, "qty": qty}, headers=headers or {})


# --------------------------------------------------
# CART
# --------------------------------------------------
def test_add_to_cart_sets_cookie_and_returns_cart(client: TestClient, make_product):
    product = make_product(price_cents=1500)

    response = _add_item(client, product, qty=2)

    assert response.status_code == 201
    assert "cart_id" in response.cookies
    body = response.json()
    assert body["success"] is True
    assert body["data"]["id"] == response.cookies["cart_id"]
    assert body["data"]["item_count"] == 2
    assert body["data"]["totals"]["total"] == 3000
    assert body["data"]["items"][0]["price_cents"] == 1500

    # The cookie keeps the same cart across requests
    assert client.get("/api/v1/cart").json()["data"]["id"] == body["data"]["id"]
    assert client.get("/api/v1/cart/mini").json()["data"] == {"item_count": 2, "total": 3000}


def test_add_beyond_stock_is_conflict(client: TestClient, make_product):
    product = make_product(stock=2)

    response = _add_item(client, product, qty=3)

    assert response.status_code == 409
    body = response.json()
    assert body["success"] is False
    assert body["errors"] == [{"code": "STOCK_EXCEEDED", "available": 2}]


def test_unknown_product_is_not_found(client: TestClient):
    response = client.post("/api/v1/cart/items", json={"product_id": 999, "qty": 1})
    assert response.status_code == 404


def test_update_to_zero_removes_and_unknown_delete_is_not_found(client: TestClient, make_product):
    product = make_product()
    item_id = _add_item(client, product).json()["data"]["items"][0]["id"]

    response = client.put(f"/api/v1/cart/items/{item_id}", json={"qty": 0})

    assert response.status_code == 200
    assert response.json()["data"]["items"] == []
    assert client.delete(f"/api/v1/cart/items/{item_id}").status_code == 404


def test_merge_after_login(client: TestClient, make_product, make_user, make_cart, auth_headers):
    a, b = make_product("A"), make_product("B")
    user = make_user()
    user_cart = make_cart([(a, 1)], user=user)
    _add_item(client, a, qty=2)
    _add_item(client, b, qty=1)

    response = client.post("/api/v1/cart/merge", headers=auth_headers(user))

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["id"] == user_cart.id
    assert sorted((item["product_id"], item["qty"]) for item in data["items"]) == sorted([(a.id, 3), (b.id, 1)])
    assert response.cookies["cart_id"] == user_cart.id


def test_merge_requires_authentication(client: TestClient):
    assert client.post("/api/v1/cart/merge").status_code == 401


# --------------------------------------------------
# STRIPE COMPLETION
# --------------------------------------------------
def test_complete_finalizes_then_replays(
    client: TestClient, db_session, make_product, make_user, auth_headers, email_outbox
):
    user = make_user()
    product = make_product("Product A", price_cents=1500, stock=10)
    cart_id = _add_item(client, product, qty=2).json()["data"]["id"]
    app.dependency_overrides[get_stripe_gateway] = lambda: _stripe_with_intents(
        {"pi_123": {"status": "succeeded", "metadata": {"cartId": cart_id}}}
    )

    first = client.post(
        "/api/v1/checkout/complete",
        json={"payment_intent_id": "pi_123"},
        headers=auth_headers(user),
    )

    assert first.status_code == 200
    order_id = first.json()["data"]["order_id"]
    assert first.json()["data"]["replayed"] is False
    assert len(email_outbox.receipts) == 1

    again = client.post(
        "/api/v1/checkout/complete",
        json={"payment_intent_id": "pi_123"},
        headers=auth_headers(user),
    )

    assert again.status_code == 200
    assert again.json()["data"] == {"order_id": order_id, "replayed": True}
    assert db_session.query(Order).count() == 1
    assert len(email_outbox.receipts) == 1

    order = client.get(f"/api/v1/orders/{order_id}", headers=auth_headers(user))
    assert order.status_code == 200
    assert order.json()["data"]["total_cents"] == 3000
    assert order.json()["data"]["status"] == "PAID"
    assert [item["qty"] for item in order.json()["data"]["items"]] == [2]

    stranger = make_user("stranger@example.com")
    assert client.get(f"/api/v1/orders/{order_id}", headers=auth_headers(stranger)).status_code == 404


def test_create_intent_gateway_failure_is_bad_gateway(client: TestClient, make_product):
    _add_item(client, make_product())
    app.dependency_overrides[get_stripe_gateway] = lambda: StripeGateway(
        "sk_test",
        transport=httpx.MockTransport(lambda request: httpx.Response(500, json={"error": {"message": "down"}})),
    )

    response = client.post("/api/v1/checkout/create-intent", json={"email": "buyer@example.com"})

    assert response.status_code == 502
    body = response.json()
    assert body["success"] is False
    assert body["errors"] == [{"code": "PAYMENT_GATEWAY_ERROR"}]


def test_complete_rejects_unconfirmed_payment(client: TestClient, make_product, make_user, auth_headers):
    user = make_user()
    _add_item(client, make_product())
    app.dependency_overrides[get_stripe_gateway] = lambda: _stripe_with_intents(
        {"pi_pending": {"status": "processing", "metadata": {}}}
    )

    response = client.post(
        "/api/v1/checkout/complete",
        json={"payment_intent_id": "pi_pending"},
        headers=auth_headers(user),
    )

    assert response.status_code == 400
    assert response.json()["errors"][0]["code"] == "PAYMENT_NOT_CONFIRMED"


def test_complete_with_empty_cart(client: TestClient, make_user, auth_headers):
    user = make_user()
    app.dependency_overrides[get_stripe_gateway] = lambda: _stripe_with_intents(
        {"pi_empty": {"status": "succeeded", "metadata": {}}}
    )

    response = client.post(
        "/api/v1/checkout/complete",
        json={"payment_intent_id": "pi_empty"},
        headers=auth_headers(user),
    )

    assert response.status_code == 400
    assert response.json()["errors"][0]["code"] == "EMPTY_CART"


def test_complete_requires_authentication(client: TestClient):
    response = client.post("/api/v1/checkout/complete", json={"payment_intent_id": "pi_123"})
    assert response.status_code == 401


# --------------------------------------------------
# TOSS COMPLETION
# --------------------------------------------------
def test_toss_checks_amount_then_confirms_once(
    client: TestClient, db_session, make_product, make_user, auth_headers
):
    user = make_user()
    product = make_product(price_cents=1500, stock=10)
    confirmations = []

    def handler(request: httpx.Request) -> httpx.Response:
        confirmations.append(json.loads(request.content))
        return httpx.Response(200, json={"status": "DONE"})

    app.dependency_overrides[get_toss_gateway] = lambda: TossGateway(
        "test_sk", transport=httpx.MockTransport(handler)
    )
    _add_item(client, product, qty=2, headers=auth_headers(user))
    body = {"payment_key": "pk_1", "order_id": "toss-order-1", "amount": 2999}

    mismatch = client.post("/api/v1/checkout/toss/complete", json=body, headers=auth_headers(user))

    assert mismatch.status_code == 400
    assert mismatch.json()["errors"][0]["code"] == "AMOUNT_MISMATCH"
    assert mismatch.json()["success"] is False
    assert "timestamp" in mismatch.json()
    assert confirmations == []

    body["amount"] = 3000
    confirmed = client.post("/api/v1/checkout/toss/complete", json=body, headers=auth_headers(user))

    assert confirmed.status_code == 200
    assert confirmations == [{"paymentKey": "pk_1", "orderId": "toss-order-1", "amount": 3000}]
    order_id = confirmed.json()["data"]["order_id"]

    replay = client.post("/api/v1/checkout/toss/complete", json=body, headers=auth_headers(user))

    assert replay.json()["data"] == {"order_id": order_id, "replayed": True}
    assert len(confirmations) == 1
    assert db_session.query(Order).count() == 1


def test_toss_confirm_failure(client: TestClient, make_product, make_user, auth_headers):
    user = make_user()
    product = make_product(price_cents=1000)
    app.dependency_overrides[get_toss_gateway] = lambda: TossGateway(
        "test_sk",
        transport=httpx.MockTransport(lambda request: httpx.Response(400, json={"code": "REJECT_CARD_COMPANY"})),
    )
    _add_item(client, product, headers=auth_headers(user))

    response = client.post(
        "/api/v1/checkout/toss/complete",
        json={"payment_key": "pk_2", "order_id": "toss-order-2", "amount": 1000},
        headers=auth_headers(user),
    )

    assert response.status_code == 400
    assert response.json()["errors"][0]["code"] == "PAYMENT_VERIFICATION_FAILED"


# --------------------------------------------------
# STRIPE WEBHOOK
# --------------------------------------------------
def _signed(payload: bytes, secret: str = "whsec_test") -> dict:
    timestamp = str(int(time.time()))
    signature = compute_stripe_signature(secret, timestamp, payload)
    return {"Stripe-Signature": f"t={timestamp},v1={signature}", "Content-Type": "application/json"}


def _checkout_event(cart_id: str, email: str = "hook@example.com") -> bytes:
    return json.dumps(
        {
            "id": "evt_1",
            "type": "checkout.session.completed",
            "data": {
                "object": {
                    "id": "cs_1",
                    "payment_intent": "pi_hook",
                    "customer_email": email,
                    "customer_details": {"name": "Hook Buyer"},
                    "metadata": {"cartId": cart_id, "locale": "ko"},
                }
            },
        }
    ).encode()


def test_webhook_disabled_is_no_content(client: TestClient):
    assert client.post("/api/v1/checkout/webhooks/stripe", content=b"{}").status_code == 204


def test_webhook_rejects_bad_signature(client: TestClient, monkeypatch):
    monkeypatch.setattr(settings, "STRIPE_WEBHOOK_ENABLED", True)
    app.dependency_overrides[get_stripe_gateway] = lambda: StripeGateway("sk_test", "whsec_test")
    payload = b'{"type": "checkout.session.completed"}'

    response = client.post(
        "/api/v1/checkout/webhooks/stripe",
        content=payload,
        headers=_signed(payload, secret="whsec_other"),
    )

    assert response.status_code == 400
    assert response.json()["message"] == "Invalid webhook signature"


def test_webhook_finalizes_and_replays(
    client: TestClient, db_session, make_product, make_cart, monkeypatch, email_outbox
):
    monkeypatch.setattr(settings, "STRIPE_WEBHOOK_ENABLED", True)
    app.dependency_overrides[get_stripe_gateway] = lambda: StripeGateway("sk_test", "whsec_test")
    product = make_product(price_cents=2500, stock=4)
    cart = make_cart([(product, 1)])
    payload = _checkout_event(cart.id)

    first = client.post("/api/v1/checkout/webhooks/stripe", content=payload, headers=_signed(payload))

    assert first.status_code == 200
    data = first.json()["data"]
    assert data["received"] is True
    assert data["replayed"] is False
    buyer = db_session.query(User).filter(User.email == "hook@example.com").one()
    assert db_session.get(Order, data["order_id"]).user_id == buyer.id
    assert email_outbox.receipts[0].locale == "ko"

    again = client.post("/api/v1/checkout/webhooks/stripe", content=payload, headers=_signed(payload))

    assert again.json()["data"] == {"received": True, "order_id": data["order_id"], "replayed": True}
    assert db_session.query(Order).count() == 1


def test_webhook_acknowledges_other_events(client: TestClient, monkeypatch):
    monkeypatch.setattr(settings, "STRIPE_WEBHOOK_ENABLED", True)
    app.dependency_overrides[get_stripe_gateway] = lambda: StripeGateway("sk_test", "whsec_test")
    payload = json.dumps({"id": "evt_2", "type": "payment_intent.created", "data": {"object": {}}}).encode()

    response = client.post("/api/v1/checkout/webhooks/stripe", content=payload, headers=_signed(payload))

    assert response.status_code == 200
    assert response.json()["data"] == {"received": True}


def test_health(client: TestClient):
    response = client.get("/health")
    assert response.status_code == 200
