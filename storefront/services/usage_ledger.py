"""Coupon consumption ledger.

``coupon_usage`` rows are the authoritative count for per-identity limits;
``Coupon.usage_count`` is a cache that ``reconcile_usage_counts`` can rebuild.
Rows are only written while an order is being confirmed.
"""

from __future__ import annotations

import structlog
from sqlalchemy import distinct, func

from ..model import Coupon, CouponUsage, Order, OrderCoupon
from ..utils.db import transactional, utcnow
from ..utils.money import ZERO, to_string_money
from .coupon_rules import check_total_usage
from .identity import Identity
from .results import ErrorCode, Failure, Ok, Result, fail

logger = structlog.get_logger(__name__)


class UsageLedger:
    def __init__(self, session, clock=utcnow):
        self.session = session
        self.clock = clock

    def count_for(self, coupon_id, identity: Identity) -> int:
        return (
            self.session.query(func.count(CouponUsage.id))
            .filter(CouponUsage.coupon_id == coupon_id, identity.filter(CouponUsage))
            .scalar()
        ) or 0

    def check_identity_cap(self, coupon: Coupon, identity: Identity) -> Failure | None:
        limit = coupon.usage_limit_per_user
        if limit is None:
            return None
        used = self.count_for(coupon.id, identity)
        if used >= limit:
            return fail(
                ErrorCode.USER_LIMIT_EXCEEDED,
                "You have already used this coupon the maximum number of times",
                coupon_code=coupon.code,
                used=used,
                limit=limit,
            )
        return None

    def has_usage(self, coupon_id) -> bool:
        return self.session.query(CouponUsage.id).filter(CouponUsage.coupon_id == coupon_id).first() is not None

    def has_orders(self, coupon_id) -> bool:
        return self.session.query(OrderCoupon.id).filter(OrderCoupon.coupon_id == coupon_id).first() is not None

    def record_usage_for_order(self, order_id, identity: Identity) -> list:
        """Consume the coupons frozen on the order at checkout.

        Runs inside the confirmation transaction and only flushes. A coupon
        whose caps were reached since checkout is left unconsumed without a
        ledger row; the order itself is not failed.
        """
        order = self.session.get(Order, order_id)
        now = self.clock()
        recorded = []

        for snap in order.coupons:
            if snap.consumed:
                continue
            # serializes concurrent confirmations consuming the same coupon
            coupon = (
                self.session.query(Coupon)
                .filter(Coupon.id == snap.coupon_id)
                .with_for_update()
                .one()
            )
            over = self.check_identity_cap(coupon, identity) or check_total_usage(coupon)
            if over is not None:
                logger.warning(
                    "coupon usage skipped at confirmation",
                    order_id=order.id,
                    coupon_code=coupon.code,
                    identity=str(identity),
                    reason=over.code.value,
                )
                continue

            usage = CouponUsage(
                coupon_id=coupon.id,
                order_id=order.id,
                cart_id=order.cart_id,
                discount_amount=snap.discount_amount,
                order_amount=order.subtotal,
                used_at=now,
                **identity.columns(),
            )
            self.session.add(usage)
            self.session.query(Coupon).filter(Coupon.id == coupon.id).update(
                {Coupon.usage_count: Coupon.usage_count + 1}, synchronize_session=False
            )
            self.session.expire(coupon, ["usage_count"])
            snap.consumed = True
            recorded.append(usage)
            logger.info("coupon consumed", order_id=order.id, coupon_code=coupon.code, identity=str(identity))

        self.session.flush()
        return recorded

    @transactional
    def reconcile_usage_counts(self, dry_run: bool = False) -> list:
        """Rebuild ``Coupon.usage_count`` from the ledger; returns the coupons that drifted."""
        actual = dict(
            self.session.query(CouponUsage.coupon_id, func.count(CouponUsage.id))
            .group_by(CouponUsage.coupon_id)
            .all()
        )
        drift = []
        for coupon in self.session.query(Coupon).order_by(Coupon.id.asc()).all():
            counted = int(actual.get(coupon.id, 0))
            cached = int(coupon.usage_count or 0)
            if counted == cached:
                continue
            drift.append({"coupon_id": coupon.id, "code": coupon.code, "cached": cached, "actual": counted})
            if not dry_run:
                coupon.usage_count = counted

        if drift:
            logger.warning("coupon usage counts drifted", count=len(drift), dry_run=dry_run)
        return drift

    def analytics(self, coupon_id, start=None, end=None) -> Result:
        coupon = self.session.get(Coupon, coupon_id)
        if coupon is None:
            return fail(ErrorCode.COUPON_NOT_FOUND, "Coupon not found", coupon_id=coupon_id)

        q = self.session.query(
            func.count(CouponUsage.id),
            func.coalesce(func.sum(CouponUsage.discount_amount), 0),
            func.coalesce(func.sum(CouponUsage.order_amount), 0),
            func.count(distinct(CouponUsage.user_id)),
            func.count(distinct(CouponUsage.session_id)),
        ).filter(CouponUsage.coupon_id == coupon.id)
        if start is not None:
            q = q.filter(CouponUsage.used_at >= start)
        if end is not None:
            q = q.filter(CouponUsage.used_at <= end)
        uses, discount, order_value, users, sessions = q.one()

        return Ok({
            "coupon": coupon.as_api(),
            "total_uses": int(uses or 0),
            "total_discount": to_string_money(discount or ZERO),
            "total_order_value": to_string_money(order_value or ZERO),
            "unique_identities": int(users or 0) + int(sessions or 0),
        }, "Coupon analytics")
