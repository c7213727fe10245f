from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

import structlog
from sqlalchemy import func, or_

from ..model import Coupon
from ..model.coupon import APPLICABLE_TO, COUPON_TYPES, SCOPE_FIELDS
from ..utils.db import paginate, transactional, utcnow
from ..utils.money import D, HUNDRED, ZERO
from .coupon_service import normalize_code
from .results import ErrorCode, Ok, Result, fail

logger = structlog.get_logger(__name__)


def parse_iso8601(s):
    if not s:
        return None
    if isinstance(s, datetime):
        dt = s
    else:
        s = str(s).strip()
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(s)
        except ValueError:
            return None
    if dt.tzinfo:
        return dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def _money(raw, field, errors, allow_none=False):
    if raw is None or raw == "":
        if allow_none:
            return None
        errors[field] = "is required"
        return None
    try:
        value = D(raw)
    except (InvalidOperation, ValueError):
        errors[field] = "must be numeric"
        return None
    if value < ZERO:
        errors[field] = "must be >= 0"
        return None
    return value


def _int(raw, field, errors, minimum=0, allow_none=True):
    if raw is None or raw == "":
        if not allow_none:
            errors[field] = "is required"
        return None
    try:
        value = int(raw)
    except (TypeError, ValueError):
        errors[field] = "must be an integer"
        return None
    if value < minimum:
        errors[field] = f"must be >= {minimum}"
        return None
    return value


class CouponAdmin:
    """Back-office management of coupon definitions."""

    def __init__(self, session, ledger, cart_store, clock=utcnow):
        self.session = session
        self.ledger = ledger
        self.carts = cart_store
        self.clock = clock

    def _fields_from_payload(self, data: dict, coupon: Coupon | None = None):
        """Validate a create/update payload. On update, absent keys keep their value."""
        errors = {}
        fields = {}

        def present(key):
            return coupon is None or key in data

        if present("code"):
            code = normalize_code(data.get("code"))
            if not code:
                errors["code"] = "is required"
            else:
                fields["code"] = code

        if present("name"):
            fields["name"] = (data.get("name") or fields.get("code") or "").strip()
        if "description" in data:
            fields["description"] = data.get("description")

        ctype = coupon.ctype if coupon is not None else None
        if present("type"):
            ctype = (data.get("type") or "").strip().lower()
            if ctype not in COUPON_TYPES:
                errors["type"] = f"must be one of {', '.join(COUPON_TYPES)}"
            else:
                fields["ctype"] = ctype

        if present("value"):
            raw = data.get("value")
            if raw in (None, "") and ctype in ("free_shipping", "buy_x_get_y"):
                raw = 0
            value = _money(raw, "value", errors)
            if value is not None:
                if ctype == "percentage" and not (ZERO < value <= HUNDRED):
                    errors["value"] = "percentage must be between 0 and 100"
                elif ctype == "fixed_amount" and value <= ZERO:
                    errors["value"] = "must be > 0"
                else:
                    fields["value"] = value

        if "max_discount_amount" in data:
            fields["max_discount_amount"] = _money(data.get("max_discount_amount"), "max_discount_amount",
                                                   errors, allow_none=True)
        if "min_order_amount" in data:
            fields["min_order_amount"] = _money(data.get("min_order_amount"), "min_order_amount",
                                                errors, allow_none=True) or ZERO

        for key in ("buy_quantity", "get_quantity"):
            if key in data:
                fields[key] = _int(data.get(key), key, errors, minimum=1)
        if ctype == "buy_x_get_y":
            buy = fields.get("buy_quantity", coupon.buy_quantity if coupon is not None else None)
            get = fields.get("get_quantity", coupon.get_quantity if coupon is not None else None)
            if not buy or not get:
                errors.setdefault("buy_quantity", "buy_quantity and get_quantity are required for buy_x_get_y")

        for key in ("is_active", "is_public", "stackable"):
            if key in data:
                fields[key] = bool(data.get(key))
        if "priority" in data:
            fields["priority"] = _int(data.get("priority"), "priority", errors, minimum=-1000) or 0

        if "usage_limit" in data:
            fields["usage_limit"] = _int(data.get("usage_limit"), "usage_limit", errors, minimum=1)
        if "usage_limit_per_user" in data:
            fields["usage_limit_per_user"] = _int(data.get("usage_limit_per_user"), "usage_limit_per_user",
                                                  errors, minimum=1, allow_none=False)

        for key in ("valid_from", "valid_until"):
            if key in data:
                parsed = parse_iso8601(data.get(key))
                if parsed is None:
                    errors[key] = "must be an ISO-8601 datetime"
                else:
                    fields[key] = parsed
        if coupon is None:
            fields.setdefault("valid_from", self.clock())
            if "valid_until" not in fields:
                errors.setdefault("valid_until", "is required")
        start = fields.get("valid_from", coupon.valid_from if coupon is not None else None)
        end = fields.get("valid_until", coupon.valid_until if coupon is not None else None)
        if start and end and end <= start:
            errors["valid_until"] = "must be after valid_from"

        if "applicable_to" in data:
            applicable_to = (data.get("applicable_to") or "all").strip().lower()
            if applicable_to not in APPLICABLE_TO:
                errors["applicable_to"] = f"must be one of {', '.join(APPLICABLE_TO)}"
            else:
                fields["applicable_to"] = applicable_to
        for key in SCOPE_FIELDS:
            if key in data:
                raw = data.get(key) or []
                if not isinstance(raw, list):
                    errors[key] = "must be a list"
                else:
                    fields[key] = raw

        return fields, errors

    def _code_taken(self, code, exclude_id=None) -> bool:
        q = self.session.query(Coupon.id).filter(func.upper(Coupon.code) == code)
        if exclude_id is not None:
            q = q.filter(Coupon.id != exclude_id)
        return q.first() is not None

    @transactional
    def create(self, data: dict, created_by=None) -> Result:
        fields, errors = self._fields_from_payload(data or {})
        if errors:
            return fail(ErrorCode.INVALID_COUPON, "Invalid coupon", errors=errors)
        if self._code_taken(fields["code"]):
            return fail(ErrorCode.DUPLICATE_COUPON_CODE, "Coupon code already exists", coupon_code=fields["code"])

        fields.setdefault("value", Decimal("0"))
        coupon = Coupon(created_by=created_by, **fields)
        self.session.add(coupon)
        self.session.flush()
        logger.info("coupon created", coupon_id=coupon.id, coupon_code=coupon.code, created_by=created_by)
        return Ok(coupon, "Coupon created")

    @transactional
    def update(self, coupon_id, data: dict) -> Result:
        coupon = self.session.get(Coupon, coupon_id)
        if coupon is None:
            return fail(ErrorCode.COUPON_NOT_FOUND, "Coupon not found", coupon_id=coupon_id)
        fields, errors = self._fields_from_payload(data or {}, coupon)
        if errors:
            return fail(ErrorCode.INVALID_COUPON, "Invalid coupon", errors=errors)
        if "code" in fields and self._code_taken(fields["code"], exclude_id=coupon.id):
            return fail(ErrorCode.DUPLICATE_COUPON_CODE, "Coupon code already exists", coupon_code=fields["code"])

        for key, value in fields.items():
            setattr(coupon, key, value)
        for link in coupon.links:
            link.coupon_code = coupon.code
        self.session.flush()
        logger.info("coupon updated", coupon_id=coupon.id, fields=sorted(fields))
        return Ok(coupon, "Coupon updated")

    @transactional
    def delete(self, coupon_id) -> Result:
        coupon = self.session.get(Coupon, coupon_id)
        if coupon is None:
            return fail(ErrorCode.COUPON_NOT_FOUND, "Coupon not found", coupon_id=coupon_id)
        if self.ledger.has_usage(coupon.id) or self.ledger.has_orders(coupon.id):
            return fail(ErrorCode.COUPON_IN_USE, "Coupon has been used by orders; deactivate it instead",
                        coupon_id=coupon.id)

        carts = []
        for link in list(coupon.links):
            link.cart.coupons.remove(link)
            carts.append(link.cart)
        for cart in carts:
            self.carts.refresh(cart)
        self.session.expire(coupon, ["links"])
        self.session.delete(coupon)
        logger.info("coupon deleted", coupon_id=coupon_id, detached_from=len(carts))
        return Ok(None, "Coupon deleted")

    def get(self, coupon_id) -> Result:
        coupon = self.session.get(Coupon, coupon_id)
        if coupon is None:
            return fail(ErrorCode.COUPON_NOT_FOUND, "Coupon not found", coupon_id=coupon_id)
        return Ok(coupon, "Coupon")

    def list(self, page=1, per_page=20, search=None, ctype=None, is_active=None, is_public=None) -> Result:
        q = self.session.query(Coupon)
        if search:
            like = f"%{search.strip()}%"
            q = q.filter(or_(Coupon.code.ilike(like), Coupon.name.ilike(like)))
        if ctype:
            q = q.filter(Coupon.ctype == ctype)
        if is_active is not None:
            q = q.filter(Coupon.is_active.is_(bool(is_active)))
        if is_public is not None:
            q = q.filter(Coupon.is_public.is_(bool(is_public)))
        q = q.order_by(Coupon.created_at.desc(), Coupon.id.desc())
        return Ok(paginate(q, page, per_page), "Coupons")

    def public_list(self, page=1, per_page=20) -> Result:
        now = self.clock()
        q = (
            self.session.query(Coupon)
            .filter(
                Coupon.is_active.is_(True),
                Coupon.is_public.is_(True),
                Coupon.valid_from <= now,
                Coupon.valid_until >= now,
            )
            .order_by(Coupon.priority.desc(), Coupon.id.asc())
        )
        return Ok(paginate(q, page, per_page), "Public coupons")
