from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from storefront.model import Cart, CartItem
from storefront.services.identity import Authenticated, Guest
from storefront.services.results import ErrorCode
from storefront.utils.db import utcnow


def assert_total_invariant(cart):
    assert cart.total_amount == cart.subtotal + cart.tax_amount - cart.discount_amount


class TestGetOrCreateCart:
    def test_repeated_calls_return_the_same_cart(self, services, session, guest):
        ids = {services.carts.get_or_create_cart(guest).id for _ in range(5)}
        assert len(ids) == 1
        active = session.query(Cart).filter_by(session_id=guest.session_id, status="active").count()
        assert active == 1

    def test_guest_and_user_get_separate_carts(self, services, guest, user):
        guest_cart = services.carts.get_or_create_cart(guest)
        user_cart = services.carts.get_or_create_cart(user)
        assert guest_cart.id != user_cart.id
        assert user_cart.user_id == 42 and user_cart.session_id is None
        assert guest_cart.session_id == guest.session_id and guest_cart.user_id is None

    def test_guest_ttl_is_shorter(self, services, guest, user):
        now = utcnow()
        guest_cart = services.carts.get_or_create_cart(guest)
        user_cart = services.carts.get_or_create_cart(user)
        assert guest_cart.expires_at - now <= timedelta(days=7, minutes=1)
        assert user_cart.expires_at - now > timedelta(days=29)

    def test_expired_cart_is_replaced(self, services, session, guest):
        old = services.carts.get_or_create_cart(guest)
        old.expires_at = utcnow() - timedelta(minutes=1)
        session.commit()

        fresh = services.carts.get_or_create_cart(guest)
        assert fresh.id != old.id
        assert session.get(Cart, old.id).status == "expired"

    def test_database_rejects_second_active_cart(self, session, guest):
        session.add(Cart(status="active", session_id=guest.session_id))
        session.commit()
        session.add(Cart(status="active", session_id=guest.session_id))
        with pytest.raises(IntegrityError):
            session.commit()
        session.rollback()

    def test_converted_cart_does_not_block_a_new_one(self, services, session, guest):
        cart = services.carts.get_or_create_cart(guest)
        cart.status = "converted"
        session.commit()
        assert services.carts.get_or_create_cart(guest).id != cart.id

    def test_cart_row_requires_exactly_one_identity(self, session):
        session.add(Cart(status="active", user_id=1, session_id="both"))
        with pytest.raises(IntegrityError):
            session.commit()
        session.rollback()


class TestItems:
    def test_add_snapshots_price_and_totals(self, services, guest, make_product):
        product = make_product(price="1000.00", gst="18")
        cart = services.carts.get_or_create_cart(guest)

        result = services.carts.add_item(cart.id, product.id, quantity=2, identity=guest)

        assert result.success
        item = result.value
        assert item.unit_price == Decimal("1000.00")
        assert item.unit_gst_percent == Decimal("18.00")
        assert cart.subtotal == Decimal("2000.00")
        assert cart.tax_amount == Decimal("360.00")
        assert cart.total_amount == Decimal("2360.00")
        assert cart.item_count == 2

    def test_same_product_merges_into_one_line(self, services, session, guest, make_product):
        product = make_product()
        cart = services.carts.get_or_create_cart(guest)
        services.carts.add_item(cart.id, product.id, quantity=2, identity=guest)
        services.carts.add_item(cart.id, product.id, quantity=3, identity=guest)

        lines = session.query(CartItem).filter_by(cart_id=cart.id).all()
        assert len(lines) == 1
        assert lines[0].quantity == 5

    def test_variants_are_separate_lines(self, services, guest, make_product, make_variant):
        product = make_product(price="1000.00", gst="18")
        variant = make_variant(product, price="1200.00")
        cart = services.carts.get_or_create_cart(guest)
        services.carts.add_item(cart.id, product.id, quantity=1, identity=guest)
        result = services.carts.add_item(cart.id, product.id, variant_id=variant.id, quantity=1, identity=guest)

        assert len(cart.items) == 2
        # variant price wins, gst falls back to the product's
        assert result.value.unit_price == Decimal("1200.00")
        assert result.value.unit_gst_percent == Decimal("18.00")

    def test_unknown_or_inactive_product(self, services, guest, make_product):
        cart = services.carts.get_or_create_cart(guest)
        assert services.carts.add_item(cart.id, 999, identity=guest).code == ErrorCode.PRODUCT_NOT_FOUND

        hidden = make_product(is_active=False)
        assert services.carts.add_item(cart.id, hidden.id, identity=guest).code == ErrorCode.PRODUCT_NOT_FOUND

    def test_variant_must_belong_to_product(self, services, guest, make_product, make_variant):
        product = make_product()
        other = make_product()
        variant = make_variant(other)
        cart = services.carts.get_or_create_cart(guest)

        result = services.carts.add_item(cart.id, product.id, variant_id=variant.id, identity=guest)
        assert result.code == ErrorCode.VARIANT_NOT_FOUND

    def test_quantity_must_be_positive(self, services, guest, make_product):
        product = make_product()
        cart = services.carts.get_or_create_cart(guest)
        assert services.carts.add_item(cart.id, product.id, quantity=0, identity=guest).code == ErrorCode.INVALID_QUANTITY

    def test_update_uses_stored_unit_price(self, services, session, guest, make_product):
        product = make_product(price="1000.00", gst="0")
        cart = services.carts.get_or_create_cart(guest)
        item = services.carts.add_item(cart.id, product.id, quantity=1, identity=guest).value

        product.price = Decimal("5000.00")
        session.commit()

        services.carts.update_item_quantity(item.id, 3, cart_id=cart.id, identity=guest)
        assert item.line_total == Decimal("3000.00")
        assert cart.subtotal == Decimal("3000.00")

    def test_zero_quantity_removes_line(self, services, guest, make_product):
        product = make_product()
        cart = services.carts.get_or_create_cart(guest)
        item = services.carts.add_item(cart.id, product.id, quantity=2, identity=guest).value

        result = services.carts.update_item_quantity(item.id, 0, cart_id=cart.id, identity=guest)

        assert result.success
        assert cart.items == []
        assert cart.total_amount == Decimal("0.00")

    def test_remove_and_clear(self, services, guest, make_product):
        a, b = make_product(), make_product()
        cart = services.carts.get_or_create_cart(guest)
        item = services.carts.add_item(cart.id, a.id, identity=guest).value
        services.carts.add_item(cart.id, b.id, identity=guest)

        assert services.carts.remove_item(item.id, cart_id=cart.id, identity=guest).success
        assert len(cart.items) == 1

        assert services.carts.clear(cart.id, identity=guest).success
        assert cart.items == []
        assert cart.item_count == 0

    def test_items_of_another_identity_are_invisible(self, services, guest, make_product):
        product = make_product()
        cart = services.carts.get_or_create_cart(guest)
        item = services.carts.add_item(cart.id, product.id, identity=guest).value

        intruder = Guest(session_id="someone-else")
        result = services.carts.update_item_quantity(item.id, 9, identity=intruder)
        assert result.code == ErrorCode.CART_ITEM_NOT_FOUND
        assert services.carts.get_cart(cart.id, intruder).code == ErrorCode.CART_NOT_FOUND

    def test_total_invariant_after_every_mutation(self, services, guest, make_product, make_coupon):
        a = make_product(price="499.00", gst="12", mrp="599.00")
        b = make_product(price="75.50", gst="5")
        make_coupon(code="TENOFF", ctype="percentage", value="10", stackable=True)
        cart = services.carts.get_or_create_cart(guest)

        services.carts.add_item(cart.id, a.id, quantity=3, identity=guest)
        assert_total_invariant(cart)
        item = services.carts.add_item(cart.id, b.id, quantity=4, identity=guest).value
        assert_total_invariant(cart)
        services.coupons.apply_coupon("TENOFF", cart.id, guest)
        assert_total_invariant(cart)
        services.carts.update_item_quantity(item.id, 1, cart_id=cart.id, identity=guest)
        assert_total_invariant(cart)


class TestCouponRevalidation:
    def test_coupon_detached_when_cart_drops_below_minimum(self, services, guest, make_product, make_coupon):
        product = make_product(price="1000.00", gst="0")
        make_coupon(code="BIG", value="100", min_order_amount=Decimal("1500"))
        cart = services.carts.get_or_create_cart(guest)
        item = services.carts.add_item(cart.id, product.id, quantity=2, identity=guest).value
        assert services.coupons.apply_coupon("BIG", cart.id, guest).success
        assert cart.discount_amount == Decimal("100.00")

        services.carts.update_item_quantity(item.id, 1, cart_id=cart.id, identity=guest)

        assert cart.coupons == []
        assert cart.discount_amount == Decimal("0.00")
        assert cart.total_amount == Decimal("1000.00")

    def test_percentage_discount_follows_subtotal(self, services, guest, make_product, make_coupon):
        product = make_product(price="1000.00", gst="0")
        make_coupon(code="PCT10", ctype="percentage", value="10")
        cart = services.carts.get_or_create_cart(guest)
        item = services.carts.add_item(cart.id, product.id, quantity=1, identity=guest).value
        services.coupons.apply_coupon("PCT10", cart.id, guest)

        services.carts.update_item_quantity(item.id, 3, cart_id=cart.id, identity=guest)

        assert cart.coupons[0].discount_amount == Decimal("300.00")
        assert cart.total_amount == Decimal("2700.00")


class TestLifecycle:
    def test_merge_guest_cart_into_user_cart(self, services, session, guest, user, make_product, make_coupon):
        a, b = make_product(), make_product()
        make_coupon(code="WELCOME", value="50")
        guest_cart = services.carts.get_or_create_cart(guest)
        services.carts.add_item(guest_cart.id, a.id, quantity=1, identity=guest)
        services.carts.add_item(guest_cart.id, b.id, quantity=2, identity=guest)
        services.coupons.apply_coupon("WELCOME", guest_cart.id, guest)

        user_cart = services.carts.get_or_create_cart(user)
        services.carts.add_item(user_cart.id, a.id, quantity=2, identity=user)

        result = services.carts.merge_guest_cart(guest.session_id, user)

        assert result.success
        merged = result.value
        assert merged.id == user_cart.id
        quantities = {it.product_id: it.quantity for it in merged.items}
        assert quantities == {a.id: 3, b.id: 2}
        assert merged.coupons == []
        assert session.get(Cart, guest_cart.id).status == "abandoned"
        assert session.get(Cart, guest_cart.id).coupons == []

    def test_merge_without_guest_cart(self, services, user):
        result = services.carts.merge_guest_cart("nobody", user)
        assert result.success
        assert result.value.user_id == 42

    def test_merge_requires_authenticated_target(self, services, guest):
        result = services.carts.merge_guest_cart("x", guest)
        assert result.code == ErrorCode.AUTHENTICATION_REQUIRED

    def test_expire_stale_carts(self, services, session):
        fresh = services.carts.get_or_create_cart(Guest(session_id="fresh"))
        stale = services.carts.get_or_create_cart(Authenticated(user_id=7))
        stale.expires_at = utcnow() - timedelta(days=1)
        session.commit()

        assert services.carts.expire_stale_carts() == 1
        assert session.get(Cart, stale.id).status == "expired"
        assert session.get(Cart, fresh.id).status == "active"

    def test_coupon_larger_than_cart_keeps_only_its_share(self, services, guest, make_product, make_coupon):
        product = make_product(price="100.00", gst="0")
        make_coupon(code="HUGE", value="500")
        cart = services.carts.get_or_create_cart(guest)
        services.carts.add_item(cart.id, product.id, quantity=1, identity=guest)

        assert services.coupons.apply_coupon("HUGE", cart.id, guest).success

        assert cart.coupons[0].discount_amount == Decimal("100.00")
        assert cart.discount_amount == Decimal("100.00")
        assert cart.total_amount == Decimal("0.00")

    def test_stacked_shares_sum_to_cart_discount(self, services, guest, make_product, make_coupon):
        product = make_product(price="100.00", gst="0")
        make_coupon(code="EIGHTY", value="80", stackable=True)
        make_coupon(code="FIFTY", value="50", stackable=True)
        cart = services.carts.get_or_create_cart(guest)
        services.carts.add_item(cart.id, product.id, quantity=1, identity=guest)

        services.coupons.apply_coupon("EIGHTY", cart.id, guest)
        services.coupons.apply_coupon("FIFTY", cart.id, guest)

        assert [c.discount_amount for c in cart.coupons] == [Decimal("80.00"), Decimal("20.00")]
        assert cart.total_amount == Decimal("0.00")
        assert_total_invariant(cart)
