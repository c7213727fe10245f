# storefront/model/product.py
from sqlalchemy.sql import func

from ..extensions import db


class Product(db.Model):
    __tablename__ = "product"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False, index=True)
    sku = db.Column(db.String(64), unique=True, index=True)
    brand = db.Column(db.String(128), index=True)
    category_id = db.Column(db.Integer, index=True)

    price = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    mrp = db.Column(db.Numeric(12, 2))
    discount_percent = db.Column(db.Numeric(5, 2))
    gst_percent = db.Column(db.Numeric(5, 2))

    stock_qty = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime, server_default=func.now())
    updated_at = db.Column(db.DateTime, onupdate=func.now(), server_default=func.now())

    variants = db.relationship(
        "ProductVariant",
        backref="product",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ProductVariant.id.asc()",
    )

    def as_api(self):
        return {
            "id": self.id,
            "title": self.title,
            "sku": self.sku,
            "brand": self.brand,
            "category_id": self.category_id,
            "price": str(self.price) if self.price is not None else None,
            "mrp": str(self.mrp) if self.mrp is not None else None,
            "gst_percent": str(self.gst_percent) if self.gst_percent is not None else None,
            "stock_qty": self.stock_qty,
            "is_active": self.is_active,
        }


class ProductVariant(db.Model):
    __tablename__ = "product_variant"

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("product.id"), nullable=False, index=True)
    sku = db.Column(db.String(128), nullable=False)
    attributes = db.Column(db.JSON)  # {"color": ..., "storage": ...}

    price = db.Column(db.Numeric(12, 2), nullable=False)
    mrp = db.Column(db.Numeric(12, 2))
    discount_percent = db.Column(db.Numeric(5, 2))
    gst_percent = db.Column(db.Numeric(5, 2))

    stock_qty = db.Column(db.Integer, nullable=False, default=0)
