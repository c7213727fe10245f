"""Checkout: turns an active cart into an order and drives its payment.

init -> pay -> confirm, with cancel and fail as the exits. Every step is
one database transaction; the payment gateway call in ``pay`` happens
inside it, so a provider timeout leaves the order pending and unpaid.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import uuid4

import structlog

from ..gateway import PaymentIntent, PaymentProviderError
from ..model import Cart, Order, OrderCoupon, OrderItem, Payment
from ..utils.db import transactional, utcnow
from ..utils.money import to_minor_units
from .coupon_rules import check_total_usage
from .identity import Identity, identity_of
from .results import ErrorCode, Ok, Result, fail

logger = structlog.get_logger(__name__)

GATEWAY_METHODS = ("online", "razorpay")


@dataclass(frozen=True)
class CheckoutStep:
    order: Order
    intent: PaymentIntent | None = None
    newly_confirmed: bool = False

    def as_api(self):
        data = {
            "order_id": self.order.id,
            "order_code": self.order.code,
            "status": self.order.status,
            "payment_status": self.order.payment_status,
            "totals": self.order.totals_api(),
        }
        if self.intent is not None:
            data["payment"] = {
                "provider": self.intent.provider,
                "provider_ref": self.intent.provider_ref,
                "amount": self.intent.amount_minor,
                "currency": self.intent.currency,
                **self.intent.client_params,
            }
        return data


class CheckoutOrchestrator:
    def __init__(self, session, cart_store, ledger, addresses, gateway, notifier, clock=utcnow):
        self.session = session
        self.carts = cart_store
        self.catalog = cart_store.catalog
        self.ledger = ledger
        self.addresses = addresses
        self.gateway = gateway
        self.notifier = notifier
        self.clock = clock

    def _order_code(self) -> str:
        return f"ORD-{self.clock():%Y%m%d}-{uuid4().hex[:8]}"

    def _owned_order(self, order_id, identity: Identity | None, lock=False) -> Result:
        q = self.session.query(Order).filter(Order.id == order_id)
        if lock:
            q = q.with_for_update()
        order = q.one_or_none()
        if order is None or (identity is not None and not identity.matches(order)):
            return fail(ErrorCode.ORDER_NOT_FOUND, "Order not found", order_id=order_id)
        return Ok(order)

    # ---- init -------------------------------------------------------------

    @transactional
    def init(self, cart_id, identity: Identity, billing_address=None, shipping_address=None,
             shipping_method=None) -> Result:
        found = self.carts.active_cart(cart_id, identity)
        if not found.success:
            return found
        cart = found.value
        if not cart.items:
            return fail(ErrorCode.EMPTY_CART, "Cart is empty", cart_id=cart.id)

        pending = (
            self.session.query(Order)
            .filter(Order.cart_id == cart.id, Order.status == "pending")
            .first()
        )
        if pending is not None:
            return fail(ErrorCode.INVALID_ORDER_STATE,
                        "Cart already has a pending order; pay or cancel it first",
                        cart_id=cart.id, order_id=pending.id, order_code=pending.code)

        # never trust the persisted totals at this point
        self.carts.refresh(cart)

        for link in cart.coupons:
            over = self.ledger.check_identity_cap(link.coupon, identity) or check_total_usage(link.coupon)
            if over is not None:
                return over

        for item in cart.items:
            available = self.catalog.available_stock(item.product_id, item.variant_id)
            if available < item.quantity:
                return fail(
                    ErrorCode.INSUFFICIENT_STOCK,
                    f"Insufficient stock for {item.title}",
                    product_id=item.product_id,
                    variant_id=item.variant_id,
                    requested=item.quantity,
                    available=available,
                )

        if not shipping_address:
            return fail(ErrorCode.SHIPPING_ADDRESS_REQUIRED, "Shipping address is required")
        shipping = self.addresses.resolve(identity, shipping_address, kind="shipping")
        if not shipping.success:
            return shipping
        if billing_address:
            billing = self.addresses.resolve(identity, billing_address, kind="billing")
            if not billing.success:
                return billing
        else:
            billing = shipping

        order = Order(
            code=self._order_code(),
            cart_id=cart.id,
            status="pending",
            payment_status="unpaid",
            shipping_method=shipping_method,
            currency=cart.currency,
            subtotal=cart.subtotal,
            tax_amount=cart.tax_amount,
            discount_amount=cart.discount_amount,
            shipping_amount=cart.shipping_amount,
            total_amount=cart.total_amount,
            billing_address_id=billing.value.id,
            shipping_address_id=shipping.value.id,
            billing_address_json=billing.value.as_api(),
            shipping_address_json=shipping.value.as_api(),
            **identity.columns(),
        )
        for item in cart.items:
            order.items.append(OrderItem(
                product_id=item.product_id,
                variant_id=item.variant_id,
                title=item.title,
                sku=item.sku,
                quantity=item.quantity,
                unit_price=item.unit_price,
                unit_mrp=item.unit_mrp,
                unit_gst_percent=item.unit_gst_percent,
                line_total=item.line_total,
                line_discount=item.line_discount,
                line_tax=item.line_tax,
            ))
        for link in cart.coupons:
            order.coupons.append(OrderCoupon(
                coupon_id=link.coupon_id,
                coupon_code=link.coupon_code,
                discount_type=link.discount_type,
                discount_amount=link.discount_amount,
            ))
        self.session.add(order)
        self.session.flush()
        logger.info("order created", order_id=order.id, order_code=order.code, cart_id=cart.id,
                    total_amount=str(order.total_amount))
        return Ok(CheckoutStep(order), "Order created")

    # ---- pay ----------------------------------------------------------------

    def pay(self, order_id, method, identity: Identity | None = None) -> Result:
        method = (method or "").strip().lower()
        if method == "cod":
            result = self._pay_cod(order_id, identity)
            self._notify(result)
            return result
        if method in GATEWAY_METHODS or method == self.gateway.name:
            return self._pay_gateway(order_id, method, identity)
        return fail(ErrorCode.UNSUPPORTED_PAYMENT_METHOD, "Unsupported payment method", payment_method=method)

    @transactional
    def _pay_cod(self, order_id, identity):
        found = self._owned_order(order_id, identity, lock=True)
        if not found.success:
            return found
        order = found.value
        if order.status == "confirmed":
            return Ok(CheckoutStep(order), "Order already confirmed")
        if order.status != "pending" or not order.can_pay_to("authorized"):
            return fail(ErrorCode.INVALID_ORDER_STATE, "Order cannot be paid in its current state",
                        status=order.status, payment_status=order.payment_status)

        order.payment_method = "cod"
        order.payment_status = "authorized"
        order.payments.append(Payment(
            provider="cod",
            amount=order.total_amount,
            currency=order.currency,
            status="authorized",
        ))
        self.session.flush()
        return self._confirm_order(order, None)

    @transactional
    def _pay_gateway(self, order_id, method, identity):
        found = self._owned_order(order_id, identity, lock=True)
        if not found.success:
            return found
        order = found.value
        if order.status != "pending" or order.payment_status != "unpaid":
            return fail(ErrorCode.INVALID_ORDER_STATE, "Order cannot be paid in its current state",
                        status=order.status, payment_status=order.payment_status)

        amount_minor = to_minor_units(order.total_amount)
        try:
            intent = self.gateway.create_intent(amount_minor, order.currency, reference=order.code)
        except PaymentProviderError as exc:
            return fail(ErrorCode.PAYMENT_PROVIDER_ERROR, str(exc), status_code=exc.status_code)
        if intent.amount_minor != amount_minor:
            logger.error("payment intent amount mismatch", order_id=order.id,
                         expected=amount_minor, got=intent.amount_minor)
            return fail(ErrorCode.PAYMENT_PROVIDER_ERROR, "Payment amount mismatch",
                        expected=amount_minor, got=intent.amount_minor)

        order.payment_method = method
        order.payments.append(Payment(
            provider=intent.provider,
            amount=order.total_amount,
            currency=intent.currency,
            status="created",
            provider_ref=intent.provider_ref,
            payload=intent.raw or None,
        ))
        logger.info("payment intent created", order_id=order.id, provider=intent.provider,
                    provider_ref=intent.provider_ref, amount_minor=amount_minor)
        return Ok(CheckoutStep(order, intent=intent), "Payment initiated")

    # ---- confirm --------------------------------------------------------------

    def confirm(self, order_id, identity: Identity | None = None, provider_payload=None) -> Result:
        result = self._confirm(order_id, identity, provider_payload)
        self._notify(result)
        return result

    @transactional
    def _confirm(self, order_id, identity, provider_payload):
        found = self._owned_order(order_id, identity, lock=True)
        if not found.success:
            return found
        return self._confirm_order(found.value, provider_payload)

    def _confirm_order(self, order: Order, provider_payload) -> Result:
        if order.status == "confirmed":
            return Ok(CheckoutStep(order), "Order already confirmed")
        if order.status != "pending":
            return fail(ErrorCode.INVALID_ORDER_STATE, "Order cannot be confirmed in its current state",
                        status=order.status)

        payment = order.latest_payment()
        if payment is None:
            return fail(ErrorCode.INVALID_ORDER_STATE, "Order has no payment yet", status=order.status)
        if payment.provider != "cod":
            if not self.gateway.verify_signature(payment.provider_ref, provider_payload or {}):
                logger.warning("payment signature rejected", order_id=order.id, provider_ref=payment.provider_ref)
                return fail(ErrorCode.INVALID_PAYMENT_SIGNATURE, "Invalid payment signature", order_id=order.id)
            payment.payload = dict(provider_payload)

        for item in order.items:
            self.catalog.decrement_stock(item.product_id, item.variant_id, item.quantity)

        order.status = "confirmed"
        order.payment_status = "paid"
        order.confirmed_at = self.clock()
        payment.status = "captured"

        self.ledger.record_usage_for_order(order.id, identity_of(order))

        cart = self.session.get(Cart, order.cart_id)
        if cart is not None:
            self.carts.convert(cart)

        self.session.flush()
        logger.info("order confirmed", order_id=order.id, order_code=order.code, provider=payment.provider)
        return Ok(CheckoutStep(order, newly_confirmed=True), "Order confirmed")

    def _notify(self, result: Result) -> None:
        if result.success and result.value.newly_confirmed:
            self.notifier.order_confirmed(result.value.order)

    # ---- exits ------------------------------------------------------------------

    @transactional
    def cancel(self, order_id, identity: Identity | None = None) -> Result:
        found = self._owned_order(order_id, identity, lock=True)
        if not found.success:
            return found
        order = found.value
        if not order.can_move_to("cancelled"):
            return fail(ErrorCode.INVALID_ORDER_STATE, f"Order cannot be cancelled from {order.status}",
                        status=order.status)
        order.status = "cancelled"
        order.cancelled_at = self.clock()
        logger.info("order cancelled", order_id=order.id)
        return Ok(CheckoutStep(order), "Order cancelled")

    @transactional
    def fail(self, order_id, identity: Identity | None = None, reason=None) -> Result:
        found = self._owned_order(order_id, identity, lock=True)
        if not found.success:
            return found
        order = found.value
        if not order.can_move_to("failed"):
            return fail(ErrorCode.INVALID_ORDER_STATE, f"Order cannot fail from {order.status}",
                        status=order.status)
        order.status = "failed"
        if order.can_pay_to("failed"):
            order.payment_status = "failed"
        payment = order.latest_payment()
        if payment is not None:
            payment.status = "failed"
            payment.payload = {**(payment.payload or {}), "failure_reason": reason}
        logger.info("order payment failed", order_id=order.id, reason=reason)
        return Ok(CheckoutStep(order), "Order marked as failed")
