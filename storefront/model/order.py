from sqlalchemy.sql import func

from ..extensions import db
from ..utils.money import to_string_money

# allowed moves of each state machine; the two axes change independently
ORDER_TRANSITIONS = {
    "pending": {"confirmed", "cancelled", "failed"},
    "confirmed": {"shipped", "cancelled"},
    "shipped": {"delivered"},
    "delivered": set(),
    "cancelled": set(),
    "failed": set(),
}

PAYMENT_TRANSITIONS = {
    "unpaid": {"authorized", "paid", "failed"},
    "authorized": {"paid", "failed"},
    "paid": {"refunded"},
    "failed": set(),
    "refunded": set(),
}


class Order(db.Model):
    __tablename__ = "orders"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(40), unique=True, index=True)  # e.g. "ORD-20251022-1a2b3c4d"
    user_id = db.Column(db.Integer, nullable=True, index=True)
    session_id = db.Column(db.String(64), nullable=True, index=True)
    cart_id = db.Column(db.Integer, db.ForeignKey("cart.id"), nullable=False, index=True)

    status = db.Column(db.String(20), nullable=False, default="pending", index=True)
    payment_status = db.Column(db.String(20), nullable=False, default="unpaid", index=True)
    payment_method = db.Column(db.String(32))
    shipping_method = db.Column(db.String(32))
    currency = db.Column(db.String(3), nullable=False, default="INR")

    # Money snapshot of the cart at checkout time
    subtotal = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    tax_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    discount_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    shipping_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    billing_address_id = db.Column(db.Integer, db.ForeignKey("address.id"), nullable=True)
    shipping_address_id = db.Column(db.Integer, db.ForeignKey("address.id"), nullable=True)
    billing_address_json = db.Column(db.JSON)
    shipping_address_json = db.Column(db.JSON)

    created_at = db.Column(db.DateTime, server_default=func.now(), index=True)
    updated_at = db.Column(db.DateTime, onupdate=func.now(), server_default=func.now())
    confirmed_at = db.Column(db.DateTime)
    cancelled_at = db.Column(db.DateTime)

    items = db.relationship(
        "OrderItem",
        backref="order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="OrderItem.id.asc()",
    )
    payments = db.relationship(
        "Payment",
        backref="order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="Payment.id.asc()",
    )
    coupons = db.relationship(
        "OrderCoupon",
        backref="order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="OrderCoupon.id.asc()",
    )

    def can_move_to(self, status: str) -> bool:
        return status in ORDER_TRANSITIONS.get(self.status, set())

    def can_pay_to(self, payment_status: str) -> bool:
        return payment_status in PAYMENT_TRANSITIONS.get(self.payment_status, set())

    def latest_payment(self):
        return self.payments[-1] if self.payments else None

    def totals_api(self):
        return {
            "subtotal": to_string_money(self.subtotal),
            "tax_amount": to_string_money(self.tax_amount),
            "discount_amount": to_string_money(self.discount_amount),
            "shipping_amount": to_string_money(self.shipping_amount),
            "total_amount": to_string_money(self.total_amount),
        }

    def as_api(self):
        return {
            "id": self.id,
            "code": self.code,
            "status": self.status,
            "payment_status": self.payment_status,
            "payment_method": self.payment_method,
            "shipping_method": self.shipping_method,
            "currency": self.currency,
            "cart_id": self.cart_id,
            "totals": self.totals_api(),
            "billing_address": self.billing_address_json,
            "shipping_address": self.shipping_address_json,
            "items": [i.as_api() for i in self.items],
            "coupons": [c.as_api() for c in self.coupons],
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "confirmed_at": self.confirmed_at.isoformat() if self.confirmed_at else None,
            "cancelled_at": self.cancelled_at.isoformat() if self.cancelled_at else None,
        }


class OrderItem(db.Model):
    __tablename__ = "order_items"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    product_id = db.Column(db.Integer, nullable=False, index=True)
    variant_id = db.Column(db.Integer)
    title = db.Column(db.String(255))
    sku = db.Column(db.String(128))

    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False)
    unit_mrp = db.Column(db.Numeric(12, 2))
    unit_gst_percent = db.Column(db.Numeric(5, 2))
    line_total = db.Column(db.Numeric(12, 2), nullable=False)
    line_discount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    line_tax = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    def as_api(self):
        return {
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "title": self.title,
            "sku": self.sku,
            "quantity": self.quantity,
            "unit_price": to_string_money(self.unit_price),
            "line_total": to_string_money(self.line_total),
            "line_discount": to_string_money(self.line_discount),
            "line_tax": to_string_money(self.line_tax),
        }


class Payment(db.Model):
    __tablename__ = "payments"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    provider = db.Column(db.String(32), nullable=False)  # "cod" | "razorpay" | "fake"
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=False)
    status = db.Column(db.String(20), nullable=False, default="created")  # created|authorized|captured|failed
    provider_ref = db.Column(db.String(128), index=True)
    payload = db.Column(db.JSON)
    created_at = db.Column(db.DateTime, server_default=func.now())

    def as_api(self):
        return {
            "id": self.id,
            "provider": self.provider,
            "amount": to_string_money(self.amount),
            "currency": self.currency,
            "status": self.status,
            "provider_ref": self.provider_ref,
        }


class OrderCoupon(db.Model):
    """Coupons that priced the order, frozen at checkout; consumed from here on confirmation."""

    __tablename__ = "order_coupons"
    __table_args__ = (
        db.UniqueConstraint("order_id", "coupon_id", name="uq_order_coupon"),
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    coupon_id = db.Column(db.Integer, db.ForeignKey("coupon.id"), nullable=False, index=True)
    coupon_code = db.Column(db.String(64), nullable=False)
    discount_type = db.Column(db.String(16), nullable=False)
    discount_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    consumed = db.Column(db.Boolean, nullable=False, default=False)

    def as_api(self):
        return {
            "coupon_id": self.coupon_id,
            "code": self.coupon_code,
            "type": self.discount_type,
            "discount_amount": to_string_money(self.discount_amount),
            "consumed": self.consumed,
        }
