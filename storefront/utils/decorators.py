# ------- storefront/utils/decorators.py -------
from functools import wraps
from uuid import uuid4

from flask import current_app, g, request
from flask_jwt_extended import get_jwt, get_jwt_identity, verify_jwt_in_request

from ..services.identity import Authenticated, Guest
from .api import err
from .logging import add_context


def _user_id_from_jwt():
    verify_jwt_in_request(optional=True)
    uid = get_jwt_identity()
    try:
        return int(uid) if uid is not None else None
    except (TypeError, ValueError):
        return None


def guest_session_id():
    header = current_app.config.get("CART_SESSION_HEADER", "X-Session-Id")
    cookie = current_app.config.get("CART_SESSION_COOKIE", "sessionId")
    return (request.headers.get(header) or request.cookies.get(cookie) or "").strip() or None


def resolve_identity():
    """Authenticated when a valid JWT is sent, else the guest session (minted if absent)."""
    uid = _user_id_from_jwt()
    if uid is not None:
        return Authenticated(user_id=uid)
    sid = guest_session_id()
    if sid is None:
        sid = uuid4().hex
        g.new_session_id = sid
    return Guest(session_id=sid)


def with_identity(fn):
    """Pass the resolved identity as ``identity=``; echo a freshly minted guest session id."""

    @wraps(fn)
    def wrapper(*args, **kwargs):
        identity = resolve_identity()
        add_context(identity=str(identity))
        resp = current_app.make_response(fn(*args, identity=identity, **kwargs))
        sid = g.pop("new_session_id", None)
        if sid:
            resp.headers[current_app.config.get("CART_SESSION_HEADER", "X-Session-Id")] = sid
            resp.set_cookie(current_app.config.get("CART_SESSION_COOKIE", "sessionId"), sid,
                            httponly=True, samesite="Lax")
        return resp

    return wrapper


def user_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        uid = _user_id_from_jwt()
        if uid is None:
            return err("Authentication required", 401, code="AuthenticationRequired")
        return fn(*args, identity=Authenticated(user_id=uid), **kwargs)

    return wrapper


def admin_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if _user_id_from_jwt() is None:
            return err("Unauthorized", 401, code="AuthenticationRequired")
        if get_jwt().get("role") != "admin":
            return err("Forbidden", 403, code="Forbidden")
        return fn(*args, **kwargs)

    return wrapper
