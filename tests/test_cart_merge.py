from sqlalchemy.orm import Session

from storefront.models.cart import Cart, CartItem
from storefront.services.cart_identity import CartIdentityResolver


def _contents(db: Session, cart_id: str) -> dict:
    db.expire_all()
    lines = db.query(CartItem).filter(CartItem.cart_id == cart_id).all()
    return {(line.product_id, line.variant_id): line.qty for line in lines}


def test_merge_sums_matching_lines_and_moves_the_rest(db_session: Session, make_product, make_user, make_cart):
    a, b, c = make_product("A"), make_product("B"), make_product("C")
    user = make_user()
    user_cart = make_cart([(a, 1), (c, 3)], user=user)
    anonymous = make_cart([(a, 2), (b, 1)])
    anonymous_id, user_cart_id = anonymous.id, user_cart.id

    result = CartIdentityResolver(db_session).merge_on_login(anonymous_id, user.id)

    assert result == user_cart_id
    assert _contents(db_session, user_cart_id) == {(a.id, None): 3, (b.id, None): 1, (c.id, None): 3}
    assert db_session.get(Cart, anonymous_id) is None
    assert db_session.query(CartItem).count() == 3


def test_merge_rerun_is_a_noop(db_session: Session, make_product, make_user, make_cart):
    a, b = make_product("A"), make_product("B")
    user = make_user()
    user_cart = make_cart([(a, 1)], user=user)
    anonymous = make_cart([(a, 2), (b, 1)])
    anonymous_id, user_cart_id = anonymous.id, user_cart.id
    resolver = CartIdentityResolver(db_session)

    first = resolver.merge_on_login(anonymous_id, user.id)
    before = _contents(db_session, user_cart_id)
    second = resolver.merge_on_login(anonymous_id, user.id)

    assert first == second == user_cart_id
    assert _contents(db_session, user_cart_id) == before == {(a.id, None): 3, (b.id, None): 1}


def test_user_without_cart_adopts_anonymous_cart(db_session: Session, make_product, make_user, make_cart):
    a = make_product("A")
    user = make_user()
    anonymous = make_cart([(a, 2)])
    anonymous_id = anonymous.id
    resolver = CartIdentityResolver(db_session)

    assert resolver.merge_on_login(anonymous_id, user.id) == anonymous_id
    db_session.expire_all()
    assert db_session.get(Cart, anonymous_id).user_id == user.id

    # Already owned by the same user: retry returns the same cart untouched
    assert resolver.merge_on_login(anonymous_id, user.id) == anonymous_id
    assert _contents(db_session, anonymous_id) == {(a.id, None): 2}


def test_variants_are_distinct_lines(db_session: Session, make_product, make_variant, make_user, make_cart):
    shirt = make_product("Shirt")
    large = make_variant(shirt, "Large")
    user = make_user()
    user_cart = make_cart([(shirt, 1, large)], user=user)
    anonymous = make_cart([(shirt, 2), (shirt, 1, large)])
    user_cart_id = user_cart.id

    CartIdentityResolver(db_session).merge_on_login(anonymous.id, user.id)

    assert _contents(db_session, user_cart_id) == {(shirt.id, large.id): 2, (shirt.id, None): 2}


def test_empty_or_missing_anonymous_cart(db_session: Session, make_product, make_user, make_cart):
    a = make_product("A")
    user = make_user()
    user_cart = make_cart([(a, 1)], user=user)
    empty = make_cart()
    user_cart_id = user_cart.id
    resolver = CartIdentityResolver(db_session)

    assert resolver.merge_on_login(empty.id, user.id) == user_cart_id
    assert resolver.merge_on_login(None, user.id) == user_cart_id
    assert resolver.merge_on_login("gone", user.id) == user_cart_id
    assert _contents(db_session, user_cart_id) == {(a.id, None): 1}


def test_no_carts_at_all_creates_one(db_session: Session, make_user):
    user = make_user()

    cart_id = CartIdentityResolver(db_session).merge_on_login(None, user.id)

    assert db_session.get(Cart, cart_id).user_id == user.id


def test_foreign_cart_is_never_merged(db_session: Session, make_product, make_user, make_cart):
    a = make_product("A")
    owner = make_user("owner@example.com")
    intruder = make_user("intruder@example.com")
    owners_cart = make_cart([(a, 4)], user=owner)
    owners_cart_id = owners_cart.id

    result = CartIdentityResolver(db_session).merge_on_login(owners_cart_id, intruder.id)

    assert result != owners_cart_id
    assert _contents(db_session, owners_cart_id) == {(a.id, None): 4}
    assert db_session.get(Cart, owners_cart_id).user_id == owner.id
