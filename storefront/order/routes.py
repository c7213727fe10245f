# storefront/order/routes.py
from datetime import datetime, timedelta

from flask import request

from ..container import get_services
from ..utils.api import err, int_arg, page_api, respond
from ..utils.decorators import admin_required, with_identity
from . import bp


@bp.get("")
@with_identity
def list_orders(identity):
    """
    Query params:
      - page, per_page
      - status=pending|confirmed|shipped|delivered|cancelled|failed
      - code=ORD-...
      - start=YYYY-MM-DD
      - end=YYYY-MM-DD (inclusive)
    """
    start = request.args.get("start")
    end = request.args.get("end")
    result = get_services().orders.list_for(
        identity,
        page=int_arg(request.args.get("page"), "page", default=1),
        per_page=int_arg(request.args.get("per_page"), "per_page", default=20),
        status=request.args.get("status"),
        code=request.args.get("code"),
        start=datetime.fromisoformat(start) if start else None,
        # make end inclusive for the whole day
        end=datetime.fromisoformat(end) + timedelta(days=1) if end else None,
    )
    return respond(result, page_api)


@bp.get("/<int:order_id>")
@with_identity
def get_order(order_id: int, identity):
    return respond(get_services().orders.get(order_id, identity))


@bp.post("/<int:order_id>/status")
@admin_required
def set_status(order_id: int):
    data = request.get_json(silent=True) or {}
    status = (data.get("status") or "").strip().lower()
    if not status:
        return err("status is required", 422, code="ValidationError")
    return respond(get_services().orders.advance(order_id, status))


@bp.post("/<int:order_id>/refund")
@admin_required
def refund(order_id: int):
    return respond(get_services().orders.refund(order_id))
