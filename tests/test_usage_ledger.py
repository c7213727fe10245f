from datetime import timedelta
from decimal import Decimal

from storefront.model import Coupon, CouponUsage
from storefront.services.identity import Authenticated, Guest
from storefront.services.results import ErrorCode
from storefront.utils.db import utcnow


def usage(coupon, identity, order_id, discount="100", order_amount="1000", used_at=None):
    return CouponUsage(
        coupon_id=coupon.id,
        order_id=order_id,
        discount_amount=Decimal(discount),
        order_amount=Decimal(order_amount),
        used_at=used_at or utcnow(),
        **identity.columns(),
    )


class TestCounting:
    def test_count_is_per_identity(self, services, session, make_coupon):
        coupon = make_coupon(code="MULTI", usage_limit_per_user=3)
        alice, bob = Authenticated(user_id=1), Guest(session_id="bob")
        session.add_all([usage(coupon, alice, 1), usage(coupon, alice, 2), usage(coupon, bob, 3)])
        session.commit()

        assert services.ledger.count_for(coupon.id, alice) == 2
        assert services.ledger.count_for(coupon.id, bob) == 1
        assert services.ledger.count_for(coupon.id, Authenticated(user_id=99)) == 0

    def test_identity_cap(self, services, session, make_coupon):
        coupon = make_coupon(code="TWICE", usage_limit_per_user=2)
        alice = Authenticated(user_id=1)
        session.add(usage(coupon, alice, 1))
        session.commit()
        assert services.ledger.check_identity_cap(coupon, alice) is None

        session.add(usage(coupon, alice, 2))
        session.commit()
        failure = services.ledger.check_identity_cap(coupon, alice)
        assert failure.code == ErrorCode.USER_LIMIT_EXCEEDED
        assert failure.details["limit"] == 2

    def test_has_usage(self, services, session, make_coupon):
        coupon = make_coupon(code="FRESH")
        assert not services.ledger.has_usage(coupon.id)
        session.add(usage(coupon, Guest(session_id="g"), 1))
        session.commit()
        assert services.ledger.has_usage(coupon.id)


class TestReconcile:
    def test_consistent_counts(self, services, make_coupon):
        make_coupon(code="CLEAN")
        assert services.ledger.reconcile_usage_counts() == []

    def test_dry_run_reports_without_fixing(self, services, session, make_coupon):
        coupon = make_coupon(code="DRIFT", usage_count=5)
        session.add(usage(coupon, Guest(session_id="g"), 1))
        session.commit()

        drift = services.ledger.reconcile_usage_counts(dry_run=True)

        assert drift == [{"coupon_id": coupon.id, "code": "DRIFT", "cached": 5, "actual": 1}]
        assert session.get(Coupon, coupon.id).usage_count == 5

    def test_fix_rewrites_cache(self, services, session, make_coupon):
        coupon = make_coupon(code="DRIFT", usage_count=5)
        session.add(usage(coupon, Guest(session_id="g"), 1))
        session.commit()

        services.ledger.reconcile_usage_counts()

        assert session.get(Coupon, coupon.id).usage_count == 1
        assert services.ledger.reconcile_usage_counts() == []


class TestAnalytics:
    def test_totals(self, services, session, make_coupon):
        coupon = make_coupon(code="STATS")
        alice, bob = Authenticated(user_id=1), Guest(session_id="bob")
        session.add_all([
            usage(coupon, alice, 1, discount="100", order_amount="1000"),
            usage(coupon, alice, 2, discount="50.50", order_amount="500"),
            usage(coupon, bob, 3, discount="25", order_amount="250"),
        ])
        session.commit()

        data = services.ledger.analytics(coupon.id).value

        assert data["coupon"]["code"] == "STATS"
        assert data["total_uses"] == 3
        assert data["total_discount"] == "175.50"
        assert data["total_order_value"] == "1750.00"
        assert data["unique_identities"] == 2

    def test_date_range(self, services, session, make_coupon):
        coupon = make_coupon(code="RANGE")
        now = utcnow()
        session.add_all([
            usage(coupon, Guest(session_id="a"), 1, used_at=now - timedelta(days=10)),
            usage(coupon, Guest(session_id="b"), 2, used_at=now),
        ])
        session.commit()

        recent = services.ledger.analytics(coupon.id, start=now - timedelta(days=1)).value
        assert recent["total_uses"] == 1

        nothing = services.ledger.analytics(coupon.id, end=now - timedelta(days=20)).value
        assert nothing["total_uses"] == 0
        assert nothing["total_discount"] == "0.00"

    def test_unknown_coupon(self, services):
        assert services.ledger.analytics(404).code == ErrorCode.COUPON_NOT_FOUND
