# storefront/cart/routes.py
from flask import request

from ..container import get_services
from ..utils.api import err, int_arg, ok, pick, respond
from ..utils.decorators import guest_session_id, user_required, with_identity
from . import bp


def _current_cart(identity):
    return get_services().carts.get_or_create_cart(identity)


@bp.get("")
@with_identity
def get_cart(identity):
    cart = _current_cart(identity)
    return ok("cart", cart.as_api())


@bp.get("/summary")
@with_identity
def get_summary(identity):
    cart = _current_cart(identity)
    return ok("cart summary", {"id": cart.id, "currency": cart.currency, **cart.totals_api()})


@bp.post("/add")
@with_identity
def add_item(identity):
    """
    Body: { "product_id": int, "variant_id"?: int, "quantity": int, "selected_attributes"?: {} }
    """
    data = request.get_json(silent=True) or {}
    product_id = int_arg(pick(data, "product_id", "productId"), "product_id")
    if product_id is None:
        return err("product_id is required", 422, code="ValidationError")
    variant_id = int_arg(pick(data, "variant_id", "variantId"), "variant_id")
    quantity = int_arg(pick(data, "quantity", "qty"), "quantity", default=1)

    cart = _current_cart(identity)
    result = get_services().carts.add_item(
        cart.id,
        product_id,
        variant_id=variant_id,
        quantity=quantity,
        attributes=pick(data, "selected_attributes", "selectedAttributes"),
        identity=identity,
    )
    return respond(result, lambda _item: cart.as_api(), status=201)


@bp.put("/items/<int:item_id>")
@bp.patch("/items/<int:item_id>")
@with_identity
def update_item(item_id: int, identity):
    data = request.get_json(silent=True) or {}
    quantity = int_arg(pick(data, "quantity", "qty"), "quantity")
    if quantity is None:
        return err("quantity is required", 422, code="ValidationError")
    cart = _current_cart(identity)
    result = get_services().carts.update_item_quantity(item_id, quantity, cart_id=cart.id, identity=identity)
    return respond(result, lambda _item: cart.as_api())


@bp.delete("/items/<int:item_id>")
@with_identity
def remove_item(item_id: int, identity):
    cart = _current_cart(identity)
    result = get_services().carts.remove_item(item_id, cart_id=cart.id, identity=identity)
    return respond(result, lambda _none: cart.as_api())


@bp.delete("/clear")
@with_identity
def clear_cart(identity):
    cart = _current_cart(identity)
    return respond(get_services().carts.clear(cart.id, identity=identity))


@bp.post("/coupon")
@with_identity
def apply_coupon(identity):
    data = request.get_json(silent=True) or {}
    code = pick(data, "coupon_code", "couponCode", "code")
    if not code:
        return err("coupon_code is required", 422, code="ValidationError")
    cart = _current_cart(identity)
    return respond(get_services().coupons.apply_coupon(code, cart.id, identity))


@bp.post("/merge")
@user_required
def merge_guest_cart(identity):
    """Fold the caller's guest cart (X-Session-Id / sessionId cookie) into their user cart."""
    session_id = guest_session_id()
    if not session_id:
        return err("X-Session-Id header or sessionId cookie is required", 422, code="ValidationError")
    return respond(get_services().carts.merge_guest_cart(session_id, identity))
