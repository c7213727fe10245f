from __future__ import annotations

import structlog
from sqlalchemy import func

from ..model import Cart, CartCoupon, Coupon
from ..utils.db import transactional, utcnow
from ..utils.money import to_string_money
from .coupon_rules import (
    check_activity,
    check_applicability,
    check_minimum_order,
    check_total_usage,
    coupon_discount,
    eligible_items,
)
from .identity import Authenticated, Identity, identity_of
from .results import ErrorCode, Ok, Result, fail

logger = structlog.get_logger(__name__)


def normalize_code(code) -> str:
    return (code or "").strip().upper()


class CouponEngine:
    """Validates coupons against a cart and attaches or detaches them.

    Attaching never touches the usage ledger; consumption happens when the
    order is confirmed.
    """

    def __init__(self, session, cart_store, ledger, clock=utcnow):
        self.session = session
        self.carts = cart_store
        self.ledger = ledger
        self.clock = clock

    def find_by_code(self, code) -> Coupon | None:
        code = normalize_code(code)
        if not code:
            return None
        return self.session.query(Coupon).filter(func.upper(Coupon.code) == code).first()

    def validate_coupon(self, code, cart_id, identity: Identity, *,
                        skip_usage_checks=False, allow_already_applied=False) -> Result:
        """Run the gate checks in order and stop at the first failure."""
        coupon = self.find_by_code(code)
        if coupon is None:
            return fail(ErrorCode.COUPON_NOT_FOUND, "Invalid coupon code", coupon_code=normalize_code(code))

        failure = check_activity(coupon, self.clock()) or check_total_usage(coupon)
        if failure is not None:
            return failure

        if not skip_usage_checks:
            failure = self.ledger.check_identity_cap(coupon, identity)
            if failure is not None:
                return failure

        found = self.carts.active_cart(cart_id, identity)
        if not found.success:
            return found
        cart = found.value

        failure = check_minimum_order(coupon, cart.subtotal)
        if failure is not None:
            return failure

        attached = [link for link in cart.coupons if link.coupon_id == coupon.id]
        if attached:
            if allow_already_applied:
                return Ok(coupon, "Coupon already applied")
            return fail(ErrorCode.ALREADY_APPLIED, "Coupon is already applied to this cart", coupon_code=coupon.code)

        others = [link for link in cart.coupons if link.coupon_id != coupon.id]
        if others and (not coupon.stackable or any(not link.coupon.stackable for link in others)):
            conflicting = [link.coupon_code for link in others]
            return fail(
                ErrorCode.NOT_STACKABLE,
                f"Coupon cannot be combined with {', '.join(conflicting)}",
                coupon_code=coupon.code,
                conflicting_codes=conflicting,
            )

        products = self.carts.catalog.products_by_ids(it.product_id for it in cart.items)
        failure = check_applicability(coupon, cart.items, products)
        if failure is not None:
            return failure

        return Ok(coupon, "Coupon is valid")

    def discount_for(self, coupon: Coupon, cart: Cart):
        products = self.carts.catalog.products_by_ids(it.product_id for it in cart.items)
        return coupon_discount(
            coupon, cart.subtotal, cart.shipping_amount, eligible_items(coupon, cart.items, products)
        )

    def quote(self, code, cart_id, identity: Identity) -> Result:
        """Dry run of apply: no row is written."""
        checked = self.validate_coupon(code, cart_id, identity)
        if not checked.success:
            return checked
        coupon = checked.value
        cart = self.carts.active_cart(cart_id, identity).value
        return Ok({
            "coupon": coupon.as_public_api(),
            "discount_amount": to_string_money(self.discount_for(coupon, cart)),
        }, checked.message)

    @transactional
    def apply_coupon(self, code, cart_id, identity: Identity) -> Result:
        checked = self.validate_coupon(code, cart_id, identity, allow_already_applied=True)
        if not checked.success:
            return checked
        coupon = checked.value
        cart = self.carts.active_cart(cart_id, identity).value

        link = next((c for c in cart.coupons if c.coupon_id == coupon.id), None)
        if link is None:
            link = CartCoupon(
                coupon=coupon,
                coupon_code=coupon.code,
                discount_type=coupon.ctype,
                discount_value=coupon.value,
                applied_by=identity.user_id if isinstance(identity, Authenticated) else None,
            )
            cart.coupons.append(link)
        link.discount_amount = self.discount_for(coupon, cart)

        self.carts.refresh(cart)
        logger.info("coupon applied", cart_id=cart.id, coupon_code=coupon.code,
                    discount_amount=str(link.discount_amount))
        return Ok(cart, "Coupon applied successfully")

    @transactional
    def remove_coupon(self, cart_coupon_id, cart_id, identity: Identity | None = None) -> Result:
        found = self.carts.active_cart(cart_id, identity)
        if not found.success:
            return found
        cart = found.value
        link = next((c for c in cart.coupons if c.id == int(cart_coupon_id)), None)
        if link is None:
            return fail(ErrorCode.COUPON_NOT_ATTACHED, "Coupon is not applied to this cart",
                        cart_id=cart.id, cart_coupon_id=cart_coupon_id)
        cart.coupons.remove(link)
        self.carts.refresh(cart)
        logger.info("coupon removed", cart_id=cart.id, coupon_code=link.coupon_code)
        return Ok(cart, "Coupon removed")

    @transactional
    def clear_coupons(self, cart_id, identity: Identity | None = None) -> Result:
        found = self.carts.active_cart(cart_id, identity)
        if not found.success:
            return found
        cart = found.value
        removed = len(cart.coupons)
        cart.coupons.clear()
        self.carts.refresh(cart)
        logger.info("coupons cleared", cart_id=cart.id, removed=removed)
        return Ok(cart, "Coupons cleared")

    @transactional
    def prune_attached_coupons(self) -> int:
        """Detach coupons that can no longer be honoured from every active cart."""
        now = self.clock()
        links = (
            self.session.query(CartCoupon)
            .join(Cart, Cart.id == CartCoupon.cart_id)
            .filter(Cart.status == "active")
            .all()
        )
        touched = {}
        removed = 0
        for link in links:
            cart = link.cart
            failure = check_activity(link.coupon, now) or self.ledger.check_identity_cap(
                link.coupon, identity_of(cart)
            )
            if failure is None:
                continue
            cart.coupons.remove(link)
            touched[cart.id] = cart
            removed += 1
            logger.info("stale coupon pruned", cart_id=cart.id, coupon_code=link.coupon_code,
                        reason=failure.code.value)

        for cart in touched.values():
            self.carts.refresh(cart)
        return removed
