from __future__ import annotations

from datetime import timedelta

import structlog
from sqlalchemy.exc import IntegrityError

from ..model import Cart, CartItem
from ..utils.db import transactional, utcnow
from .coupon_rules import (
    check_activity,
    check_applicability,
    check_minimum_order,
    coupon_discount,
    eligible_items,
)
from .identity import Guest, Identity
from .pricing import CartTotals, allocate_coupon_discount, compute_totals
from .results import ErrorCode, Ok, Result, fail

logger = structlog.get_logger(__name__)


def _variant_key(variant_id) -> int:
    return int(variant_id) if variant_id else 0


class CartStore:
    """Owns the shopping cart of one identity and keeps its totals honest.

    Every item mutation ends with ``refresh`` so the persisted totals always
    match the line snapshots and the attached coupons.
    """

    def __init__(self, session, catalog, *, currency="INR",
                 guest_ttl=timedelta(days=7), user_ttl=timedelta(days=30), clock=utcnow):
        self.session = session
        self.catalog = catalog
        self.currency = currency
        self.guest_ttl = guest_ttl
        self.user_ttl = user_ttl
        self.clock = clock

    # ---- lookup ---------------------------------------------------------

    def _find_active(self, identity: Identity) -> Cart | None:
        return (
            self.session.query(Cart)
            .filter(identity.filter(Cart), Cart.status == "active")
            .first()
        )

    def _get_or_create(self, identity: Identity) -> Cart:
        now = self.clock()
        cart = self._find_active(identity)
        if cart is not None and cart.expires_at is not None and cart.expires_at < now:
            cart.status = "expired"
            self.session.flush()
            logger.info("cart expired on access", cart_id=cart.id, identity=str(identity))
            cart = None
        if cart is not None:
            return cart

        ttl = self.guest_ttl if identity.is_guest else self.user_ttl
        cart = Cart(status="active", currency=self.currency, expires_at=now + ttl, **identity.columns())
        try:
            with self.session.begin_nested():
                self.session.add(cart)
        except IntegrityError:
            # lost the race: the partial unique index already holds an active cart
            logger.info("concurrent cart creation, reusing winner", identity=str(identity))
            return self._find_active(identity)

        logger.info("cart created", cart_id=cart.id, identity=str(identity))
        return cart

    @transactional
    def get_or_create_cart(self, identity: Identity) -> Cart:
        return self._get_or_create(identity)

    def get_cart(self, cart_id, identity: Identity | None = None) -> Result:
        cart = self.session.get(Cart, cart_id) if cart_id is not None else None
        if cart is None or (identity is not None and not identity.matches(cart)):
            return fail(ErrorCode.CART_NOT_FOUND, "Cart not found", cart_id=cart_id)
        return Ok(cart, "cart")

    def active_cart(self, cart_id, identity: Identity | None = None) -> Result:
        found = self.get_cart(cart_id, identity)
        if not found.success:
            return found
        if not found.value.is_active:
            return fail(ErrorCode.CART_NOT_FOUND, "Cart is no longer active",
                        cart_id=cart_id, status=found.value.status)
        return found

    def _find_line(self, cart: Cart, product_id, variant_id) -> CartItem | None:
        key = _variant_key(variant_id)
        return next(
            (i for i in cart.items if i.product_id == int(product_id) and i.variant_key == key),
            None,
        )

    def _item_in_cart(self, item_id, cart_id=None, identity: Identity | None = None) -> Result:
        item = self.session.get(CartItem, item_id) if item_id is not None else None
        if item is None or (cart_id is not None and item.cart_id != int(cart_id)):
            return fail(ErrorCode.CART_ITEM_NOT_FOUND, "Cart item not found", item_id=item_id)
        cart = item.cart
        if identity is not None and not identity.matches(cart):
            return fail(ErrorCode.CART_ITEM_NOT_FOUND, "Cart item not found", item_id=item_id)
        if not cart.is_active:
            return fail(ErrorCode.CART_NOT_FOUND, "Cart is no longer active", cart_id=cart.id)
        return Ok(item)

    # ---- item mutations ---------------------------------------------------

    @transactional
    def add_item(self, cart_id, product_id, variant_id=None, quantity=1,
                 attributes=None, identity: Identity | None = None) -> Result:
        quantity = int(quantity)
        if quantity < 1:
            return fail(ErrorCode.INVALID_QUANTITY, "quantity must be >= 1", quantity=quantity)

        found = self.active_cart(cart_id, identity)
        if not found.success:
            return found
        cart = found.value

        product = self.catalog.get_product(product_id)
        if product is None:
            return fail(ErrorCode.PRODUCT_NOT_FOUND, "Product not found", product_id=product_id)
        variant = None
        if variant_id:
            variant = self.catalog.get_variant(variant_id, product_id=product.id)
            if variant is None:
                return fail(ErrorCode.VARIANT_NOT_FOUND, "Product variant not found",
                            product_id=product_id, variant_id=variant_id)

        item = self._find_line(cart, product.id, variant_id)
        if item is not None:
            item.quantity += quantity
        else:
            item = self._insert_line(cart, product, variant, quantity, attributes)

        self.refresh(cart)
        logger.info("cart item added", cart_id=cart.id, product_id=product.id,
                    variant_id=variant_id, quantity=quantity)
        return Ok(item, "Item added to cart")

    def _insert_line(self, cart, product, variant, quantity, attributes) -> CartItem:
        snap = self.catalog.price_snapshot(product, variant)
        item = CartItem(
            product_id=product.id,
            variant_id=variant.id if variant is not None else None,
            variant_key=_variant_key(variant.id if variant is not None else None),
            title=snap.title,
            sku=snap.sku,
            quantity=quantity,
            selected_attributes=attributes,
            unit_price=snap.unit_price,
            unit_mrp=snap.unit_mrp,
            unit_discount_percent=snap.discount_percent,
            unit_gst_percent=snap.gst_percent,
        )
        try:
            with self.session.begin_nested():
                cart.items.append(item)
        except IntegrityError:
            # a concurrent add created the same line; merge into it instead
            self.session.expire(cart, ["items"])
            existing = self._find_line(cart, product.id, item.variant_id)
            if existing is None:
                raise
            existing.quantity += quantity
            return existing
        return item

    @transactional
    def update_item_quantity(self, item_id, quantity, cart_id=None, identity: Identity | None = None) -> Result:
        found = self._item_in_cart(item_id, cart_id, identity)
        if not found.success:
            return found
        item = found.value
        cart = item.cart

        quantity = int(quantity)
        if quantity <= 0:
            cart.items.remove(item)
            self.refresh(cart)
            logger.info("cart item removed", cart_id=cart.id, item_id=item_id)
            return Ok(None, "Item removed from cart")

        item.quantity = quantity
        self.refresh(cart)
        return Ok(item, "Cart item updated")

    @transactional
    def remove_item(self, item_id, cart_id=None, identity: Identity | None = None) -> Result:
        found = self._item_in_cart(item_id, cart_id, identity)
        if not found.success:
            return found
        cart = found.value.cart
        cart.items.remove(found.value)
        self.refresh(cart)
        logger.info("cart item removed", cart_id=cart.id, item_id=item_id)
        return Ok(None, "Item removed from cart")

    @transactional
    def clear(self, cart_id, identity: Identity | None = None) -> Result:
        found = self.active_cart(cart_id, identity)
        if not found.success:
            return found
        cart = found.value
        cart.items.clear()
        self.refresh(cart)
        logger.info("cart cleared", cart_id=cart.id)
        return Ok(cart, "Cart cleared")

    # ---- totals -----------------------------------------------------------

    def refresh(self, cart: Cart) -> CartTotals:
        """Reprice every line, re-check attached coupons and persist the totals.

        Runs inside the caller's transaction; it only flushes.
        """
        base = compute_totals(cart.items)
        for item, pricing in zip(cart.items, base.lines):
            item.line_total = pricing.line_total
            item.line_discount = pricing.line_discount
            item.line_tax = pricing.line_tax

        self._revalidate_coupons(cart, base.subtotal)
        # each link carries its capped share of the coupon discount
        ceiling = base.subtotal + base.tax_amount - base.item_discount
        shares = allocate_coupon_discount((link.discount_amount for link in cart.coupons), ceiling)
        for link, share in zip(cart.coupons, shares):
            link.discount_amount = share

        totals = compute_totals(cart.items, cart.coupons)
        cart.subtotal = totals.subtotal
        cart.tax_amount = totals.tax_amount
        cart.discount_amount = totals.discount_amount
        cart.total_amount = totals.total_amount
        cart.item_count = totals.item_count
        self.session.flush()
        return totals

    def _revalidate_coupons(self, cart: Cart, subtotal) -> None:
        if not cart.coupons:
            return
        now = self.clock()
        products = self.catalog.products_by_ids(it.product_id for it in cart.items)
        for link in list(cart.coupons):
            coupon = link.coupon
            failure = (
                check_activity(coupon, now)
                or check_minimum_order(coupon, subtotal)
                or check_applicability(coupon, cart.items, products)
            )
            if failure is not None:
                cart.coupons.remove(link)
                logger.info("coupon detached after cart change", cart_id=cart.id,
                            coupon_code=link.coupon_code, reason=failure.code.value)
                continue
            link.discount_amount = coupon_discount(
                coupon, subtotal, cart.shipping_amount, eligible_items(coupon, cart.items, products)
            )

    # ---- lifecycle --------------------------------------------------------

    @transactional
    def merge_guest_cart(self, session_id, user_identity: Identity) -> Result:
        if user_identity.is_guest:
            return fail(ErrorCode.AUTHENTICATION_REQUIRED, "Authentication required")
        guest = self._find_active(Guest(session_id=session_id))
        user_cart = self._get_or_create(user_identity)
        if guest is None or not guest.items:
            return Ok(user_cart, "No guest cart to merge")

        merged = 0
        for line in guest.items:
            target = self._find_line(user_cart, line.product_id, line.variant_id)
            if target is not None:
                target.quantity += line.quantity
            else:
                user_cart.items.append(CartItem(
                    product_id=line.product_id,
                    variant_id=line.variant_id,
                    variant_key=line.variant_key,
                    title=line.title,
                    sku=line.sku,
                    quantity=line.quantity,
                    selected_attributes=line.selected_attributes,
                    unit_price=line.unit_price,
                    unit_mrp=line.unit_mrp,
                    unit_discount_percent=line.unit_discount_percent,
                    unit_gst_percent=line.unit_gst_percent,
                ))
            merged += 1

        # coupons must be re-applied under the user's own quota
        guest.coupons.clear()
        guest.status = "abandoned"
        self.refresh(guest)
        self.refresh(user_cart)
        logger.info("guest cart merged", guest_cart_id=guest.id, cart_id=user_cart.id, items_merged=merged)
        return Ok(user_cart, "Carts merged")

    def convert(self, cart: Cart) -> None:
        """Empty a cart whose order was confirmed and retire it. Caller commits."""
        cart.items.clear()
        cart.coupons.clear()
        cart.status = "converted"
        self.refresh(cart)

    @transactional
    def expire_stale_carts(self) -> int:
        now = self.clock()
        stale = (
            self.session.query(Cart)
            .filter(Cart.status == "active", Cart.expires_at.isnot(None), Cart.expires_at < now)
            .all()
        )
        for cart in stale:
            cart.status = "expired"
        if stale:
            logger.info("stale carts expired", count=len(stale))
        return len(stale)
