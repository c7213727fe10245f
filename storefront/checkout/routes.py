# storefront/checkout/routes.py
from flask import request

from ..container import get_services
from ..utils.api import err, int_arg, pick, respond
from ..utils.decorators import with_identity
from . import bp


def _body():
    return request.get_json(silent=True) or {}


def _order_id(data):
    return int_arg(pick(data, "order_id", "orderId"), "order_id")


@bp.post("/init")
@with_identity
def init_checkout(identity):
    """
    Body: { "cart_id"?: int, "shipping_address": {...} | {"id": n},
            "billing_address"?: {...} | {"id": n}, "shipping_method"?: str }
    Without cart_id the caller's active cart is used.
    """
    data = _body()
    services = get_services()
    cart_id = int_arg(pick(data, "cart_id", "cartId"), "cart_id")
    if cart_id is None:
        cart_id = services.carts.get_or_create_cart(identity).id
    result = services.checkout.init(
        cart_id,
        identity,
        billing_address=pick(data, "billing_address", "billingAddress"),
        shipping_address=pick(data, "shipping_address", "shippingAddress"),
        shipping_method=pick(data, "shipping_method", "shippingMethod"),
    )
    return respond(result, status=201)


@bp.post("/pay")
@with_identity
def pay(identity):
    data = _body()
    order_id = _order_id(data)
    if order_id is None:
        return err("order_id is required", 422, code="ValidationError")
    method = pick(data, "payment_method", "paymentMethod")
    return respond(get_services().checkout.pay(order_id, method, identity))


@bp.post("/confirm")
@with_identity
def confirm(identity):
    data = _body()
    order_id = _order_id(data)
    if order_id is None:
        return err("order_id is required", 422, code="ValidationError")
    payload = pick(data, "provider_payload", "providerPayload")
    return respond(get_services().checkout.confirm(order_id, identity, provider_payload=payload))


@bp.post("/cancel")
@with_identity
def cancel(identity):
    order_id = _order_id(_body())
    if order_id is None:
        return err("order_id is required", 422, code="ValidationError")
    return respond(get_services().checkout.cancel(order_id, identity))


@bp.post("/fail")
@with_identity
def fail_payment(identity):
    data = _body()
    order_id = _order_id(data)
    if order_id is None:
        return err("order_id is required", 422, code="ValidationError")
    return respond(get_services().checkout.fail(order_id, identity, reason=data.get("reason")))
