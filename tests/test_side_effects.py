import fnmatch
import json

from sqlalchemy.orm import Session

from storefront.models.inventory import Inventory
from storefront.models.notification import Notification, NotificationType
from storefront.services.low_stock import LowStockMonitor, is_low_stock
from storefront.services.notifications import NotificationService, order_confirmed_template
from storefront.services.recommendation_cache import RecommendationCache
from storefront.services.results import SideEffectFailure
from storefront.services.side_effects import OrderReceipt, ReceiptLine, SideEffectDispatcher
from storefront.tasks import email_tasks
from storefront.utils.email_templates import format_money, order_confirmation_subject


class DictRedis:
    def __init__(self):
        self.data = {}
        self.expiry = {}

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value, ex=None):
        self.data[key] = value
        self.expiry[key] = ex

    def scan_iter(self, match="*"):
        return [key for key in list(self.data) if fnmatch.fnmatch(key, match)]

    def delete(self, *keys):
        for key in keys:
            self.data.pop(key, None)
        return len(keys)


def _receipt(**overrides) -> OrderReceipt:
    fields = dict(
        order_id="3f2a9c1e-0000-4000-8000-000000000000",
        user_id=1,
        buyer_email="buyer@example.com",
        currency="KRW",
        subtotal_cents=3000,
        total_cents=3000,
        items=[ReceiptLine(product_id=1, name="Product A", qty=2, price_cents=1500)],
    )
    fields.update(overrides)
    return OrderReceipt(**fields)


class Recorder:
    def __init__(self, fail=False):
        self.calls = []
        self.fail = fail

    def __call__(self, *args):
        self.calls.append(args)
        if self.fail:
            raise RuntimeError("boom")


class FakeNotifications:
    def __init__(self, fail=False):
        self.order_confirmed = Recorder(fail)


class FakeLowStock:
    def __init__(self, fail=False):
        self.check_and_notify = Recorder(fail)


class FakeCache:
    def __init__(self, fail=False):
        self.invalidate_user = Recorder(fail)


def test_dispatch_runs_every_step_in_order():
    email, notifications, low_stock, cache = Recorder(), FakeNotifications(), FakeLowStock(), FakeCache()
    receipt = _receipt(items=[
        ReceiptLine(product_id=7, name="B", qty=1, price_cents=100),
        ReceiptLine(product_id=3, name="A", qty=1, price_cents=100),
        ReceiptLine(product_id=7, name="B (L)", qty=1, price_cents=100),
    ])

    failures = SideEffectDispatcher(email, notifications, low_stock, cache).dispatch(receipt)

    assert failures == []
    assert email.calls == [(receipt,)]
    assert low_stock.check_and_notify.calls == [(3,), (7,)]
    assert notifications.order_confirmed.calls == [(receipt.order_id, 1, "buyer@example.com")]
    assert cache.invalidate_user.calls == [(1,)]


def test_dispatch_isolates_failures():
    email, notifications, low_stock, cache = Recorder(fail=True), FakeNotifications(), FakeLowStock(fail=True), FakeCache()

    failures = SideEffectDispatcher(email, notifications, low_stock, cache).dispatch(_receipt())

    assert failures == [
        SideEffectFailure(which="email", error="boom"),
        SideEffectFailure(which="low_stock", error="boom"),
    ]
    assert len(notifications.order_confirmed.calls) == 1
    assert len(cache.invalidate_user.calls) == 1


def test_dispatch_never_raises_even_if_everything_fails():
    dispatcher = SideEffectDispatcher(
        Recorder(fail=True), FakeNotifications(fail=True), FakeLowStock(fail=True), FakeCache(fail=True)
    )

    failures = dispatcher.dispatch(_receipt())

    assert [f.which for f in failures] == ["email", "low_stock", "notification", "recommendations"]


def test_low_stock_threshold():
    assert is_low_stock(3, 5) is True
    assert is_low_stock(5, 5) is True
    assert is_low_stock(6, 5) is False
    assert is_low_stock(0, 5) is False
    assert is_low_stock(3, None) is False


def test_low_stock_monitor_creates_system_alert(db_session: Session, make_product):
    product = make_product("Mug", stock=10, low_stock_at=3)
    monitor = LowStockMonitor(db_session, NotificationService(db_session))

    assert monitor.check_and_notify(product.id) is False

    db_session.get(Inventory, product.id).in_stock = 2
    db_session.commit()
    assert monitor.check_and_notify(product.id) is True

    alert = db_session.query(Notification).one()
    assert alert.user_id is None
    assert alert.type == NotificationType.PRODUCT_ALERT
    assert alert.title == "i18n.notification.lowStock"
    assert alert.message == "i18n.notification.lowStockMsg|Mug"
    assert json.loads(alert.data) == {"productSlug": product.slug, "productName": "Mug"}


def test_order_confirmed_notification(db_session: Session, make_user):
    user = make_user()

    template = order_confirmed_template("3f2a9c1e-aaaa", "buyer@example.com", "mug-1")
    assert template["message"] == "i18n.notification.orderConfirmedMsg|3F2A9C1E"
    assert template["data"]["orderStatus"] == "PAID"

    notification = NotificationService(db_session).create_user_notification(user.id, **template)
    assert notification.user_id == user.id
    assert notification.type == NotificationType.ORDER_UPDATE


def test_recommendation_cache_keys_and_invalidation():
    client = DictRedis()
    cache = RecommendationCache(client, ttl_seconds=3600)

    cache.set(1, "home", 10, 0, {"ids": [1, 2]})
    cache.set(1, "product", 4, 0, {"ids": [3]}, current_product_id=99)
    cache.set(12, "home", 10, 0, {"ids": [5]})

    assert "rec:1:product:4:0:99" in client.data
    assert client.expiry["rec:1:home:10:0"] == 3600
    assert cache.get(1, "home", 10, 0) == {"ids": [1, 2]}

    assert cache.invalidate_user(1) == 2
    assert cache.get(1, "home", 10, 0) is None
    assert cache.get(12, "home", 10, 0) == {"ids": [5]}

    assert cache.invalidate_all() == 1
    assert client.data == {}


def test_email_templates_are_localized():
    assert order_confirmation_subject(_receipt(locale="ko")) == "주문 확인 - #3F2A9C1E"
    assert order_confirmation_subject(_receipt(locale="en-US")) == "Order Confirmed - #3F2A9C1E"
    assert format_money(3000, "KRW") == "3,000 KRW"
    assert format_money(1999, "usd") == "19.99 USD"


def test_order_confirmation_task_sends_built_message(monkeypatch):
    sent = []
    monkeypatch.setattr(email_tasks, "_send_email_smtp", sent.append)
    receipt = _receipt(buyer_name="Minji", tracking_no="CJ12345678001", carrier="CJ대한통운")

    email_tasks.send_order_confirmation.apply(args=(receipt.to_payload(),)).get()

    [message] = sent
    assert message["To"] == "buyer@example.com"
    assert message["Subject"] == "Order Confirmed - #3F2A9C1E"
    assert "CJ12345678001" in message.get_body(preferencelist=("plain",)).get_content()
