from datetime import datetime, timedelta
from decimal import Decimal
from types import SimpleNamespace

from storefront.services.coupon_rules import (
    check_activity,
    check_applicability,
    check_minimum_order,
    coupon_discount,
    eligible_items,
)
from storefront.services.pricing import allocate_coupon_discount, compute_totals, price_line
from storefront.services.results import ErrorCode


def line(price, qty, gst="0", mrp=None, discount="0", product_id=1):
    return SimpleNamespace(
        product_id=product_id,
        unit_price=Decimal(price),
        quantity=qty,
        unit_mrp=Decimal(mrp) if mrp is not None else None,
        unit_discount_percent=Decimal(discount),
        unit_gst_percent=Decimal(gst),
    )


def applied(amount):
    return SimpleNamespace(discount_amount=Decimal(amount))


NOW = datetime(2025, 6, 1, 12, 0, 0)


def coupon(**kw):
    values = dict(
        code="TEST",
        ctype="percentage",
        value=Decimal("10"),
        max_discount_amount=None,
        min_order_amount=Decimal("0"),
        buy_quantity=None,
        get_quantity=None,
        is_active=True,
        valid_from=NOW - timedelta(days=1),
        valid_until=NOW + timedelta(days=1),
        usage_limit=None,
        usage_count=0,
        applicable_to="all",
        applicable_categories=None,
        applicable_products=None,
        applicable_brands=None,
        excluded_categories=None,
        excluded_products=None,
        excluded_brands=None,
    )
    values.update(kw)
    return SimpleNamespace(**values)


class TestComputeTotals:
    def test_tax_on_plain_line(self):
        totals = compute_totals([line("1000", 2, gst="18")])
        assert totals.subtotal == Decimal("2000.00")
        assert totals.tax_amount == Decimal("360.00")
        assert totals.discount_amount == Decimal("0.00")
        assert totals.total_amount == Decimal("2360.00")
        assert totals.item_count == 2

    def test_coupon_amount_is_subtracted(self):
        totals = compute_totals([line("1000", 2, gst="18")], [applied("200")])
        assert totals.coupon_discount == Decimal("200.00")
        assert totals.discount_amount == Decimal("200.00")
        assert totals.total_amount == Decimal("2160.00")

    def test_discount_percent_derived_from_mrp(self):
        # mrp 1000 vs price 800 -> 20%, the stored 5% is ignored
        totals = compute_totals([line("800", 1, gst="18", mrp="1000", discount="5")])
        assert totals.item_discount == Decimal("160.00")
        assert totals.tax_amount == Decimal("115.20")
        assert totals.total_amount == Decimal("755.20")

    def test_stored_percent_used_without_mrp(self):
        totals = compute_totals([line("100", 3, discount="10")])
        assert totals.item_discount == Decimal("30.00")
        assert totals.total_amount == Decimal("270.00")

    def test_stored_percent_used_when_mrp_not_above_price(self):
        pricing = price_line(Decimal("100"), 1, unit_mrp=Decimal("100"), discount_percent=Decimal("5"))
        assert pricing.line_discount == Decimal("5.00")

    def test_coupon_cannot_push_total_below_zero(self):
        totals = compute_totals([line("100", 1)], [applied("500")])
        assert totals.coupon_discount == Decimal("100.00")
        assert totals.total_amount == Decimal("0.00")

    def test_coupon_shares_fill_the_ceiling_in_order(self):
        shares = allocate_coupon_discount([Decimal("80"), Decimal("50")], Decimal("100"))
        assert shares == [Decimal("80.00"), Decimal("20.00")]
        assert allocate_coupon_discount([Decimal("30")], Decimal("100")) == [Decimal("30.00")]
        assert allocate_coupon_discount([Decimal("30")], Decimal("-5")) == [Decimal("0.00")]

    def test_empty_cart(self):
        totals = compute_totals([])
        assert totals.subtotal == Decimal("0")
        assert totals.total_amount == Decimal("0.00")
        assert totals.item_count == 0

    def test_total_invariant_holds(self):
        cases = [
            ([line("199.99", 3, gst="12", mrp="249.99")], [applied("50")]),
            ([line("0.10", 3, gst="18"), line("5", 7, discount="3")], []),
            ([line("1000", 1, gst="28")], [applied("100"), applied("2000")]),
        ]
        for items, coupons in cases:
            t = compute_totals(items, coupons)
            assert t.total_amount == t.subtotal + t.tax_amount - t.discount_amount
            assert t.total_amount >= 0

    def test_rounding_is_half_up_per_line(self):
        totals = compute_totals([line("0.10", 3, gst="18")])
        assert totals.subtotal == Decimal("0.30")
        assert totals.tax_amount == Decimal("0.05")


class TestCouponDiscount:
    def test_percentage_capped_by_max_discount(self):
        c = coupon(ctype="percentage", value=Decimal("20"), max_discount_amount=Decimal("500"))
        assert coupon_discount(c, Decimal("10000")) == Decimal("500.00")

    def test_percentage_uncapped(self):
        c = coupon(ctype="percentage", value=Decimal("10"))
        assert coupon_discount(c, Decimal("2000")) == Decimal("200.00")

    def test_fixed_amount_may_exceed_subtotal(self):
        c = coupon(ctype="fixed_amount", value=Decimal("300"))
        assert coupon_discount(c, Decimal("100")) == Decimal("300.00")

    def test_free_shipping_equals_shipping(self):
        c = coupon(ctype="free_shipping", value=Decimal("0"))
        assert coupon_discount(c, Decimal("1000"), Decimal("49")) == Decimal("49.00")

    def test_buy_x_get_y(self):
        c = coupon(ctype="buy_x_get_y", value=Decimal("0"), buy_quantity=2, get_quantity=1)
        items = [line("100", 7)]
        assert coupon_discount(c, Decimal("700"), items=items) == Decimal("200.00")

    def test_buy_x_get_y_below_threshold(self):
        c = coupon(ctype="buy_x_get_y", value=Decimal("0"), buy_quantity=2, get_quantity=1)
        assert coupon_discount(c, Decimal("200"), items=[line("100", 2)]) == Decimal("0.00")


class TestCouponGates:
    def test_minimum_order_reports_shortfall(self):
        failure = check_minimum_order(coupon(min_order_amount=Decimal("500")), Decimal("400"))
        assert failure.code == ErrorCode.MINIMUM_ORDER_NOT_MET
        assert failure.details["shortfall"] == "100.00"

    def test_minimum_order_met(self):
        assert check_minimum_order(coupon(min_order_amount=Decimal("500")), Decimal("500")) is None

    def test_activity(self):
        assert check_activity(coupon(), NOW) is None
        assert check_activity(coupon(is_active=False), NOW).code == ErrorCode.COUPON_INACTIVE
        assert check_activity(coupon(valid_from=NOW + timedelta(hours=1)), NOW).code == ErrorCode.COUPON_NOT_STARTED
        assert check_activity(coupon(valid_until=NOW - timedelta(hours=1)), NOW).code == ErrorCode.COUPON_EXPIRED


class TestApplicability:
    products = {
        1: SimpleNamespace(id=1, brand="Acme", category_id=10),
        2: SimpleNamespace(id=2, brand="Other", category_id=20),
    }

    def test_all_applies_to_everything(self):
        items = [line("10", 1, product_id=1), line("10", 1, product_id=2)]
        assert len(eligible_items(coupon(), items, self.products)) == 2

    def test_brand_scope(self):
        c = coupon(applicable_to="brands", applicable_brands=["acme"])
        items = [line("10", 1, product_id=1), line("10", 1, product_id=2)]
        assert [it.product_id for it in eligible_items(c, items, self.products)] == [1]

    def test_exclusion_beats_scope(self):
        c = coupon(applicable_to="categories", applicable_categories=[10], excluded_products=[1])
        items = [line("10", 1, product_id=1)]
        assert check_applicability(c, items, self.products).code == ErrorCode.NOT_APPLICABLE_TO_CART

    def test_excluded_brand_with_all(self):
        c = coupon(excluded_brands=["Other"])
        items = [line("10", 1, product_id=2)]
        assert check_applicability(c, items, self.products) is not None
