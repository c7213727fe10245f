"""Coupon rules that need no database: activity window, minimum order,
applicability scope and the discount each coupon type is worth.

Shared by the coupon engine (on apply) and the cart store (when a cart
mutation forces attached coupons to be re-checked).
"""

from __future__ import annotations

from decimal import Decimal

from ..utils.money import D, HUNDRED, ZERO, Money, round_money
from .results import ErrorCode, Failure, fail


def check_activity(coupon, now) -> Failure | None:
    if not coupon.is_active:
        return fail(ErrorCode.COUPON_INACTIVE, "Coupon is not active", coupon_code=coupon.code)
    if coupon.valid_from and now < coupon.valid_from:
        return fail(ErrorCode.COUPON_NOT_STARTED, "Coupon is not valid yet",
                    coupon_code=coupon.code, valid_from=coupon.valid_from.isoformat())
    if coupon.valid_until and now > coupon.valid_until:
        return fail(ErrorCode.COUPON_EXPIRED, "Coupon has expired",
                    coupon_code=coupon.code, valid_until=coupon.valid_until.isoformat())
    return None


def check_total_usage(coupon) -> Failure | None:
    if coupon.usage_limit is not None and (coupon.usage_count or 0) >= coupon.usage_limit:
        return fail(ErrorCode.TOTAL_USAGE_LIMIT_EXCEEDED, "Coupon usage limit exceeded", coupon_code=coupon.code)
    return None


def check_minimum_order(coupon, subtotal) -> Failure | None:
    minimum = D(coupon.min_order_amount)
    subtotal = D(subtotal)
    if subtotal < minimum:
        shortfall = round_money(minimum - subtotal)
        return fail(
            ErrorCode.MINIMUM_ORDER_NOT_MET,
            f"Minimum order amount of {round_money(minimum)} required",
            coupon_code=coupon.code,
            min_order_amount=str(round_money(minimum)),
            shortfall=str(shortfall),
        )
    return None


def _ids(values) -> set[str]:
    return {str(v) for v in (values or [])}


def _brands(values) -> set[str]:
    return {str(v).strip().lower() for v in (values or [])}


def is_item_eligible(coupon, item, product) -> bool:
    if product is None:
        return False
    product_id = str(item.product_id)
    category_id = str(product.category_id) if product.category_id is not None else None
    brand = (product.brand or "").strip().lower()

    if product_id in _ids(coupon.excluded_products):
        return False
    if category_id is not None and category_id in _ids(coupon.excluded_categories):
        return False
    if brand and brand in _brands(coupon.excluded_brands):
        return False

    if (coupon.applicable_to or "all") == "all":
        return True

    allowed_products = _ids(coupon.applicable_products)
    allowed_categories = _ids(coupon.applicable_categories)
    allowed_brands = _brands(coupon.applicable_brands)

    if allowed_products and product_id not in allowed_products:
        return False
    if allowed_categories and category_id not in allowed_categories:
        return False
    if allowed_brands and brand not in allowed_brands:
        return False
    return True


def eligible_items(coupon, items, products: dict) -> list:
    return [it for it in items if is_item_eligible(coupon, it, products.get(it.product_id))]


def check_applicability(coupon, items, products: dict) -> Failure | None:
    if not eligible_items(coupon, items, products):
        return fail(
            ErrorCode.NOT_APPLICABLE_TO_CART,
            "Coupon is not applicable to any items in your cart",
            coupon_code=coupon.code,
        )
    return None


def buy_x_get_y_discount(coupon, items) -> Money:
    buy = int(coupon.buy_quantity or 0)
    get = int(coupon.get_quantity or 0)
    if buy <= 0 or get <= 0:
        return ZERO
    total = ZERO
    for it in items:
        free_units = (int(it.quantity) // (buy + get)) * get
        total += D(it.unit_price) * Decimal(free_units)
    return round_money(total)


def coupon_discount(coupon, subtotal, shipping_amount=ZERO, items=()) -> Money:
    """Discount a coupon is worth against the given cart figures.

    ``items`` must already be filtered down to the eligible lines; only
    buy_x_get_y looks at them.
    """
    ctype = (coupon.ctype or "").lower()
    value = D(coupon.value)

    if ctype == "percentage":
        amount = D(subtotal) * value / HUNDRED
        if coupon.max_discount_amount is not None and amount > D(coupon.max_discount_amount):
            amount = D(coupon.max_discount_amount)
        return round_money(amount)
    if ctype == "fixed_amount":
        return round_money(value)
    if ctype == "free_shipping":
        return round_money(shipping_amount)
    if ctype == "buy_x_get_y":
        return buy_x_get_y_discount(coupon, items)
    return ZERO
