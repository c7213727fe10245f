# storefront/model/cart.py
from __future__ import annotations

import uuid as _uuid

from sqlalchemy import text
from sqlalchemy.sql import func

from ..extensions import db
from ..utils.money import to_string_money

CART_STATUSES = ("active", "converted", "abandoned", "expired")

_ACTIVE = text("status = 'active'")


class Cart(db.Model):
    __tablename__ = "cart"
    __table_args__ = (
        # exactly one owner per cart
        db.CheckConstraint("(user_id IS NULL) <> (session_id IS NULL)", name="ck_cart_single_identity"),
        # at most one active cart per owner; concurrent creators collide here
        db.Index("uq_cart_active_user", "user_id", unique=True,
                 sqlite_where=_ACTIVE, postgresql_where=_ACTIVE),
        db.Index("uq_cart_active_session", "session_id", unique=True,
                 sqlite_where=_ACTIVE, postgresql_where=_ACTIVE),
    )

    id = db.Column(db.Integer, primary_key=True)
    uuid = db.Column(db.String(36), unique=True, index=True, default=lambda: str(_uuid.uuid4()))
    user_id = db.Column(db.Integer, nullable=True, index=True)
    session_id = db.Column(db.String(64), nullable=True, index=True)
    status = db.Column(db.String(16), nullable=False, default="active", index=True)
    currency = db.Column(db.String(3), nullable=False, default="INR")

    # always recomputed server side, never taken from the client
    subtotal = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    tax_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    discount_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    shipping_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    item_count = db.Column(db.Integer, nullable=False, default=0)

    expires_at = db.Column(db.DateTime, nullable=True, index=True)
    created_at = db.Column(db.DateTime, server_default=func.now())
    updated_at = db.Column(db.DateTime, onupdate=func.now(), server_default=func.now())

    items = db.relationship(
        "CartItem",
        backref="cart",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="CartItem.id.asc()",
    )

    coupons = db.relationship(
        "CartCoupon",
        back_populates="cart",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="CartCoupon.id.asc()",
    )

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def totals_api(self):
        return {
            "subtotal": to_string_money(self.subtotal),
            "tax_amount": to_string_money(self.tax_amount),
            "discount_amount": to_string_money(self.discount_amount),
            "shipping_amount": to_string_money(self.shipping_amount),
            "total_amount": to_string_money(self.total_amount),
            "item_count": self.item_count or 0,
        }

    def as_api(self):
        return {
            "id": self.id,
            "uuid": self.uuid,
            "status": self.status,
            "currency": self.currency,
            "items": [i.as_api() for i in self.items],
            "coupons": [c.as_api() for c in self.coupons],
            "totals": self.totals_api(),
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class CartItem(db.Model):
    __tablename__ = "cart_item"
    __table_args__ = (
        # variant_key is variant_id or 0 so that "no variant" also collides
        db.UniqueConstraint("cart_id", "product_id", "variant_key", name="uq_cart_item_line"),
        db.CheckConstraint("quantity >= 1", name="ck_cart_item_quantity"),
    )

    id = db.Column(db.Integer, primary_key=True)
    cart_id = db.Column(db.Integer, db.ForeignKey("cart.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = db.Column(db.Integer, nullable=False, index=True)
    variant_id = db.Column(db.Integer, nullable=True)
    variant_key = db.Column(db.Integer, nullable=False, default=0)

    title = db.Column(db.String(255))
    sku = db.Column(db.String(128))
    quantity = db.Column(db.Integer, nullable=False, default=1)
    selected_attributes = db.Column(db.JSON)

    # price snapshot taken when the line was added
    unit_price = db.Column(db.Numeric(12, 2), nullable=False)
    unit_mrp = db.Column(db.Numeric(12, 2))
    unit_discount_percent = db.Column(db.Numeric(5, 2), nullable=False, default=0)
    unit_gst_percent = db.Column(db.Numeric(5, 2), nullable=False, default=0)

    line_total = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    line_discount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    line_tax = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    created_at = db.Column(db.DateTime, server_default=func.now())
    updated_at = db.Column(db.DateTime, onupdate=func.now(), server_default=func.now())

    def as_api(self):
        return {
            "id": self.id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "title": self.title,
            "sku": self.sku,
            "quantity": self.quantity,
            "selected_attributes": self.selected_attributes,
            "unit_price": to_string_money(self.unit_price),
            "unit_mrp": to_string_money(self.unit_mrp) if self.unit_mrp is not None else None,
            "unit_discount_percent": str(self.unit_discount_percent),
            "unit_gst_percent": str(self.unit_gst_percent),
            "line_total": to_string_money(self.line_total),
            "line_discount": to_string_money(self.line_discount),
            "line_tax": to_string_money(self.line_tax),
        }
