# storefront/coupon/routes.py
from flask import request
from flask_jwt_extended import get_jwt_identity

from ..container import get_services
from ..services.coupon_admin import parse_iso8601
from ..utils.api import err, int_arg, page_api, pick, respond
from ..utils.decorators import admin_required, with_identity
from . import bp


def _code_from_body():
    data = request.get_json(silent=True) or {}
    return pick(data, "code", "coupon_code", "couponCode")


def _flag(name):
    raw = request.args.get(name)
    if raw is None or raw == "":
        return None
    return raw.strip().lower() in ("1", "true", "yes")


# ---- cart side -------------------------------------------------------------

@bp.post("/validate/<int:cart_id>")
@with_identity
def validate_coupon(cart_id: int, identity):
    """Dry run: reports whether the coupon would apply and for how much."""
    code = _code_from_body()
    if not code:
        return err("code is required", 422, code="ValidationError")
    return respond(get_services().coupons.quote(code, cart_id, identity))


@bp.post("/apply/<int:cart_id>")
@with_identity
def apply_coupon(cart_id: int, identity):
    code = _code_from_body()
    if not code:
        return err("code is required", 422, code="ValidationError")
    return respond(get_services().coupons.apply_coupon(code, cart_id, identity))


@bp.delete("/remove/<int:cart_id>/<int:cart_coupon_id>")
@with_identity
def remove_coupon(cart_id: int, cart_coupon_id: int, identity):
    return respond(get_services().coupons.remove_coupon(cart_coupon_id, cart_id, identity))


@bp.delete("/clear/<int:cart_id>")
@with_identity
def clear_coupons(cart_id: int, identity):
    return respond(get_services().coupons.clear_coupons(cart_id, identity))


@bp.get("/public")
def public_coupons():
    page = int_arg(request.args.get("page"), "page", default=1)
    per_page = int_arg(request.args.get("per_page"), "per_page", default=20)
    result = get_services().coupon_admin.public_list(page, per_page)
    return respond(result, lambda p: {**p, "items": [c.as_public_api() for c in p["items"]]})


# ---- admin -----------------------------------------------------------------

@bp.post("")
@admin_required
def create_coupon():
    data = request.get_json(silent=True) or {}
    uid = get_jwt_identity()
    result = get_services().coupon_admin.create(data, created_by=int(uid) if uid else None)
    return respond(result, status=201)


@bp.get("")
@admin_required
def list_coupons():
    """
    Query params: page, per_page, q, type, is_active, is_public
    """
    result = get_services().coupon_admin.list(
        page=int_arg(request.args.get("page"), "page", default=1),
        per_page=int_arg(request.args.get("per_page"), "per_page", default=20),
        search=request.args.get("q"),
        ctype=request.args.get("type"),
        is_active=_flag("is_active"),
        is_public=_flag("is_public"),
    )
    return respond(result, page_api)


@bp.get("/<int:coupon_id>")
@admin_required
def get_coupon(coupon_id: int):
    return respond(get_services().coupon_admin.get(coupon_id))


@bp.put("/<int:coupon_id>")
@bp.patch("/<int:coupon_id>")
@admin_required
def update_coupon(coupon_id: int):
    data = request.get_json(silent=True) or {}
    return respond(get_services().coupon_admin.update(coupon_id, data))


@bp.delete("/<int:coupon_id>")
@admin_required
def delete_coupon(coupon_id: int):
    return respond(get_services().coupon_admin.delete(coupon_id))


@bp.get("/<int:coupon_id>/analytics")
@admin_required
def coupon_analytics(coupon_id: int):
    start = parse_iso8601(request.args.get("start"))
    end = parse_iso8601(request.args.get("end"))
    if request.args.get("start") and start is None:
        return err("start must be an ISO-8601 datetime", 422, code="ValidationError")
    if request.args.get("end") and end is None:
        return err("end must be an ISO-8601 datetime", 422, code="ValidationError")
    return respond(get_services().ledger.analytics(coupon_id, start=start, end=end))
