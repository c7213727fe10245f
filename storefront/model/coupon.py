# --- storefront/model/coupon.py ---

from sqlalchemy.sql import func

from ..extensions import db
from ..utils.money import to_string_money

COUPON_TYPES = ("percentage", "fixed_amount", "free_shipping", "buy_x_get_y")
APPLICABLE_TO = ("all", "categories", "products", "brands")

SCOPE_FIELDS = (
    "applicable_categories",
    "applicable_products",
    "applicable_brands",
    "excluded_categories",
    "excluded_products",
    "excluded_brands",
)


def _iso(dt):
    return dt.isoformat() if dt else None


class Coupon(db.Model):
    __tablename__ = "coupon"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(64), unique=True, nullable=False, index=True)
    name = db.Column(db.String(128), nullable=False, default="")
    description = db.Column(db.Text)

    ctype = db.Column(db.String(16), nullable=False, default="percentage")
    value = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    max_discount_amount = db.Column(db.Numeric(12, 2), nullable=True)  # cap for percentage
    min_order_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    buy_quantity = db.Column(db.Integer, nullable=True)  # buy_x_get_y only
    get_quantity = db.Column(db.Integer, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    is_public = db.Column(db.Boolean, nullable=False, default=True)
    stackable = db.Column(db.Boolean, nullable=False, default=False)
    priority = db.Column(db.Integer, nullable=False, default=0)

    valid_from = db.Column(db.DateTime, nullable=False)
    valid_until = db.Column(db.DateTime, nullable=False)

    usage_limit = db.Column(db.Integer, nullable=True)  # None = unlimited
    usage_count = db.Column(db.Integer, nullable=False, default=0)  # cache of coupon_usage rows
    usage_limit_per_user = db.Column(db.Integer, nullable=False, default=1)

    applicable_to = db.Column(db.String(16), nullable=False, default="all")
    applicable_categories = db.Column(db.JSON)
    applicable_products = db.Column(db.JSON)
    applicable_brands = db.Column(db.JSON)
    excluded_categories = db.Column(db.JSON)
    excluded_products = db.Column(db.JSON)
    excluded_brands = db.Column(db.JSON)

    created_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime, server_default=func.now())
    updated_at = db.Column(db.DateTime, onupdate=func.now(), server_default=func.now())

    links = db.relationship("CartCoupon", back_populates="coupon", lazy="selectin")

    def as_public_api(self):
        return {
            "code": self.code,
            "name": self.name,
            "description": self.description,
            "type": self.ctype,
            "value": to_string_money(self.value),
            "max_discount_amount": to_string_money(self.max_discount_amount)
            if self.max_discount_amount is not None else None,
            "min_order_amount": to_string_money(self.min_order_amount),
            "stackable": self.stackable,
            "valid_from": _iso(self.valid_from),
            "valid_until": _iso(self.valid_until),
        }

    def as_api(self):
        data = self.as_public_api()
        data.update({
            "id": self.id,
            "is_active": self.is_active,
            "is_public": self.is_public,
            "priority": self.priority,
            "buy_quantity": self.buy_quantity,
            "get_quantity": self.get_quantity,
            "usage_limit": self.usage_limit,
            "usage_count": self.usage_count,
            "usage_limit_per_user": self.usage_limit_per_user,
            "applicable_to": self.applicable_to,
        })
        for name in SCOPE_FIELDS:
            data[name] = getattr(self, name) or []
        return data


class CartCoupon(db.Model):
    """A coupon attached to a cart but not yet consumed."""

    __tablename__ = "cart_coupon"
    __table_args__ = (
        db.UniqueConstraint("cart_id", "coupon_id", name="uq_cart_coupon"),
    )

    id = db.Column(db.Integer, primary_key=True)
    cart_id = db.Column(db.Integer, db.ForeignKey("cart.id", ondelete="CASCADE"), index=True, nullable=False)
    coupon_id = db.Column(db.Integer, db.ForeignKey("coupon.id", ondelete="CASCADE"), index=True, nullable=False)
    coupon_code = db.Column(db.String(64), nullable=False)
    discount_type = db.Column(db.String(16), nullable=False)
    discount_value = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    discount_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    applied_by = db.Column(db.Integer, nullable=True)
    applied_at = db.Column(db.DateTime, server_default=func.now())

    cart = db.relationship("Cart", back_populates="coupons")
    coupon = db.relationship("Coupon", back_populates="links", lazy="joined")

    def as_api(self):
        return {
            "id": self.id,
            "coupon_id": self.coupon_id,
            "code": self.coupon_code,
            "type": self.discount_type,
            "value": to_string_money(self.discount_value),
            "discount_amount": to_string_money(self.discount_amount),
        }


class CouponUsage(db.Model):
    """Ledger row: coupon consumed by an identity for an order. Never updated."""

    __tablename__ = "coupon_usage"

    id = db.Column(db.Integer, primary_key=True)
    coupon_id = db.Column(db.Integer, db.ForeignKey("coupon.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, nullable=True, index=True)
    session_id = db.Column(db.String(64), nullable=True, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    cart_id = db.Column(db.Integer, nullable=True)
    discount_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    order_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    used_at = db.Column(db.DateTime, nullable=False, index=True)

    def as_api(self):
        return {
            "id": self.id,
            "coupon_id": self.coupon_id,
            "user_id": self.user_id,
            "session_id": self.session_id,
            "order_id": self.order_id,
            "discount_amount": to_string_money(self.discount_amount),
            "order_amount": to_string_money(self.order_amount),
            "used_at": _iso(self.used_at),
        }
