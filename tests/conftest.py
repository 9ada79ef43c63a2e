import itertools
import os
import tempfile
from collections.abc import Generator
from typing import Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

os.environ["ENVIRONMENT"] = "development"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-the-checkout-suite")
os.environ["CELERY_BROKER_URL"] = "memory://"
os.environ["CELERY_RESULT_BACKEND"] = "cache+memory://"
os.environ["REDIS_URL"] = ""

import storefront.models  # noqa: F401,E402
from storefront.api.deps import get_email_sender, get_recommendation_cache  # noqa: E402
from storefront.core.security import create_access_token  # noqa: E402
from storefront.db.base_class import Base  # noqa: E402
from storefront.db.session import get_db  # noqa: E402
from storefront.main import app  # noqa: E402
from storefront.models.cart import Cart, CartItem  # noqa: E402
from storefront.models.inventory import Inventory  # noqa: E402
from storefront.models.product import Product, ProductVariant  # noqa: E402
from storefront.models.user import User  # noqa: E402


class RecordingEmailSender:
    def __init__(self, error: Optional[Exception] = None):
        self.receipts = []
        self.error = error

    def __call__(self, receipt) -> None:
        if self.error is not None:
            raise self.error
        self.receipts.append(receipt)


class RecordingRecommendationCache:
    def __init__(self):
        self.invalidated = []

    def invalidate_user(self, user_id: int) -> int:
        self.invalidated.append(user_id)
        return 0


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    db_file = tempfile.NamedTemporaryFile(suffix=".db", delete=False)
    db_file.close()

    engine = create_engine(
        f"sqlite:///{db_file.name}",
        connect_args={"check_same_thread": False},
    )
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()
        os.unlink(db_file.name)


@pytest.fixture()
def other_session(db_session: Session) -> Generator[Session, None, None]:
    """A second connection to the same database, standing in for a concurrent request."""
    session = sessionmaker(autocommit=False, autoflush=False, bind=db_session.get_bind())()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def email_outbox() -> RecordingEmailSender:
    return RecordingEmailSender()


@pytest.fixture()
def recommendation_cache() -> RecordingRecommendationCache:
    return RecordingRecommendationCache()


@pytest.fixture()
def client(
    db_session: Session,
    email_outbox: RecordingEmailSender,
    recommendation_cache: RecordingRecommendationCache,
) -> Generator[TestClient, None, None]:
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_email_sender] = lambda: email_outbox
    app.dependency_overrides[get_recommendation_cache] = lambda: recommendation_cache
    app.state.limiter.reset()
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


_slugs = itertools.count(1)


@pytest.fixture()
def make_product(db_session: Session):
    def _make(
        name: str = "Widget",
        *,
        price_cents: int = 1500,
        stock: int = 10,
        currency: str = "KRW",
        low_stock_at: Optional[int] = None,
    ) -> Product:
        product = Product(
            name=name,
            slug=f"{name.lower().replace(' ', '-')}-{next(_slugs)}",
            price_cents=price_cents,
            currency=currency,
            is_active=True,
        )
        db_session.add(product)
        db_session.flush()
        db_session.add(Inventory(product_id=product.id, in_stock=stock, low_stock_at=low_stock_at))
        db_session.commit()
        db_session.refresh(product)
        return product

    return _make


@pytest.fixture()
def make_variant(db_session: Session):
    def _make(product: Product, name: str = "Large", *, price_cents: int = 2000, sku: Optional[str] = None):
        variant = ProductVariant(product_id=product.id, name=name, price_cents=price_cents, sku=sku)
        db_session.add(variant)
        db_session.commit()
        db_session.refresh(variant)
        return variant

    return _make


@pytest.fixture()
def make_user(db_session: Session):
    def _make(email: str = "buyer@example.com", name: str = "Buyer") -> User:
        user = User(email=email, name=name)
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make


@pytest.fixture()
def make_cart(db_session: Session):
    """Cart with raw lines, bypassing stock checks: lines are (product, qty[, variant])."""
    def _make(lines=(), *, user: Optional[User] = None, cart_id: Optional[str] = None) -> Cart:
        cart = Cart(user_id=user.id if user else None)
        if cart_id:
            cart.id = cart_id
        db_session.add(cart)
        db_session.flush()
        for line in lines:
            product, qty = line[0], line[1]
            variant = line[2] if len(line) > 2 else None
            db_session.add(
                CartItem(
                    cart_id=cart.id,
                    product_id=product.id,
                    variant_id=variant.id if variant else None,
                    qty=qty,
                    price_cents=variant.price_cents if variant else product.price_cents,
                )
            )
        db_session.commit()
        db_session.refresh(cart)
        return cart

    return _make


@pytest.fixture()
def auth_headers():
    def _headers(user: User) -> dict:
        token = create_access_token({"sub": str(user.id)})
        return {"Authorization": f"Bearer {token}"}

    return _headers
