# --- storefront/utils/api.py ---
from flask import jsonify

from ..services.results import ErrorCode

NOT_FOUND = {
    ErrorCode.PRODUCT_NOT_FOUND,
    ErrorCode.VARIANT_NOT_FOUND,
    ErrorCode.CART_NOT_FOUND,
    ErrorCode.CART_ITEM_NOT_FOUND,
    ErrorCode.COUPON_NOT_FOUND,
    ErrorCode.COUPON_NOT_ATTACHED,
    ErrorCode.ADDRESS_NOT_FOUND,
    ErrorCode.ORDER_NOT_FOUND,
}

CONFLICT = {
    ErrorCode.TOTAL_USAGE_LIMIT_EXCEEDED,
    ErrorCode.USER_LIMIT_EXCEEDED,
    ErrorCode.ALREADY_APPLIED,
    ErrorCode.NOT_STACKABLE,
    ErrorCode.DUPLICATE_COUPON_CODE,
    ErrorCode.COUPON_IN_USE,
    ErrorCode.INSUFFICIENT_STOCK,
    ErrorCode.INVALID_ORDER_STATE,
}

UNPROCESSABLE = {
    ErrorCode.INVALID_QUANTITY,
    ErrorCode.INVALID_COUPON,
    ErrorCode.INVALID_ADDRESS,
    ErrorCode.SHIPPING_ADDRESS_REQUIRED,
}


def status_for(code: ErrorCode) -> int:
    if code in NOT_FOUND:
        return 404
    if code in CONFLICT:
        return 409
    if code in UNPROCESSABLE:
        return 422
    if code == ErrorCode.AUTHENTICATION_REQUIRED:
        return 401
    if code == ErrorCode.PAYMENT_PROVIDER_ERROR:
        return 502
    return 400


def api_ok(message, data=None):
    return {"success": True, "message": message, "data": data if data is not None else {}}


def api_error(message, code=None, data=None):
    return {"success": False, "code": code, "message": message, "data": data or {}}


def ok(msg, data=None, status=200):
    r = jsonify(api_ok(msg, data)); r.status_code = status; return r


def err(msg, status=400, code=None, data=None):
    r = jsonify(api_error(msg, code, data)); r.status_code = status; return r


def respond(result, render=None, status=200):
    """Turn a service ``Result`` into a JSON response."""
    if not result.success:
        r = jsonify(result.as_api())
        r.status_code = status_for(result.code)
        return r
    value = result.value
    if render is not None:
        data = render(value)
    elif hasattr(value, "as_api"):
        data = value.as_api()
    else:
        data = value
    return ok(result.message, data, status=status)


def page_api(page: dict) -> dict:
    return {**page, "items": [row.as_api() for row in page["items"]]}


def pick(data: dict, *names, default=None):
    """First present key among ``names``; clients send snake_case or camelCase."""
    for name in names:
        if data.get(name) is not None:
            return data[name]
    return default


def int_arg(raw, name, default=None):
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be an integer")
