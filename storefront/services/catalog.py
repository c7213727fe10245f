"""Read access to products and variants, plus the stock decrement used at
order confirmation."""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from ..model import Product, ProductVariant
from ..utils.money import D, Money

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class PriceSnapshot:
    unit_price: Money
    unit_mrp: Money | None
    discount_percent: Money
    gst_percent: Money
    title: str
    sku: str | None


class Catalog:
    def __init__(self, session, default_gst_percent=18):
        self.session = session
        self.default_gst_percent = D(default_gst_percent)

    def get_product(self, product_id) -> Product | None:
        product = self.session.get(Product, product_id)
        if product is None or not product.is_active:
            return None
        return product

    def get_variant(self, variant_id, product_id=None) -> ProductVariant | None:
        variant = self.session.get(ProductVariant, variant_id)
        if variant is None:
            return None
        if product_id is not None and variant.product_id != int(product_id):
            return None
        return variant

    def products_by_ids(self, ids) -> dict:
        ids = {int(i) for i in ids}
        if not ids:
            return {}
        rows = self.session.query(Product).filter(Product.id.in_(ids)).all()
        return {p.id: p for p in rows}

    def price_snapshot(self, product: Product, variant: ProductVariant | None = None) -> PriceSnapshot:
        source = variant if variant is not None else product
        gst = source.gst_percent
        if gst is None and variant is not None:
            gst = product.gst_percent
        return PriceSnapshot(
            unit_price=D(source.price),
            unit_mrp=D(source.mrp) if source.mrp is not None else None,
            discount_percent=D(source.discount_percent or 0),
            gst_percent=D(gst) if gst is not None else self.default_gst_percent,
            title=product.title,
            sku=variant.sku if variant is not None else product.sku,
        )

    def available_stock(self, product_id, variant_id=None) -> int:
        if variant_id:
            variant = self.session.get(ProductVariant, variant_id)
            return int(variant.stock_qty or 0) if variant else 0
        product = self.session.get(Product, product_id)
        return int(product.stock_qty or 0) if product else 0

    def decrement_stock(self, product_id, variant_id, quantity: int) -> int:
        """Lock the stock row, take ``quantity`` off and floor at zero.

        Returns the number of units that could not be covered (0 when stock sufficed).
        """
        model, key = (ProductVariant, variant_id) if variant_id else (Product, product_id)
        row = self.session.query(model).filter(model.id == key).with_for_update().one_or_none()
        if row is None:
            logger.warning("stock row missing at confirmation", product_id=product_id, variant_id=variant_id)
            return int(quantity)
        available = int(row.stock_qty or 0)
        shortfall = max(0, int(quantity) - available)
        row.stock_qty = max(0, available - int(quantity))
        if shortfall:
            logger.warning(
                "stock oversold at confirmation",
                product_id=product_id,
                variant_id=variant_id,
                requested=int(quantity),
                available=available,
            )
        return shortfall
