"""Cart pricing: pure arithmetic over line snapshots and attached coupons.

Nothing here touches the database. Inputs are read duck-typed (``CartItem``
rows or any object with the same attribute names) and results come back as
frozen dataclasses; the caller decides what to persist.

Order of operations
  1) line total   = unit price x quantity
  2) line discount = line total x discount percent / 100, where the percent is
     derived from MRP when MRP is above the price, else the stored percent
  3) line tax     = (line total - line discount) x gst / 100
  4) coupons      = sum of attached coupon amounts, capped so the cart total
     cannot go below zero
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from ..utils.money import D, HUNDRED, ZERO, Money, round_money


@dataclass(frozen=True)
class LinePricing:
    line_total: Money
    line_discount: Money
    line_tax: Money
    discount_percent: Money


@dataclass(frozen=True)
class CartTotals:
    subtotal: Money
    tax_amount: Money
    item_discount: Money
    coupon_discount: Money
    discount_amount: Money
    total_amount: Money
    item_count: int
    lines: tuple = ()

    def as_api(self):
        return {
            "subtotal": str(self.subtotal),
            "tax_amount": str(self.tax_amount),
            "item_discount": str(self.item_discount),
            "coupon_discount": str(self.coupon_discount),
            "discount_amount": str(self.discount_amount),
            "total_amount": str(self.total_amount),
            "item_count": self.item_count,
        }


def effective_discount_percent(unit_price, unit_mrp, stored_percent) -> Money:
    price = D(unit_price)
    mrp = D(unit_mrp) if unit_mrp is not None else ZERO
    if mrp > ZERO and mrp > price:
        return (mrp - price) / mrp * HUNDRED
    return D(stored_percent)


def price_line(unit_price, quantity: int, unit_mrp=None, discount_percent=0, gst_percent=0) -> LinePricing:
    line_total = D(unit_price) * Decimal(int(quantity))
    percent = effective_discount_percent(unit_price, unit_mrp, discount_percent)
    line_discount = line_total * percent / HUNDRED
    line_tax = (line_total - line_discount) * D(gst_percent) / HUNDRED
    return LinePricing(
        line_total=round_money(line_total),
        line_discount=round_money(line_discount),
        line_tax=round_money(line_tax),
        discount_percent=percent.quantize(Decimal("0.01")),
    )


def price_item(item) -> LinePricing:
    return price_line(
        item.unit_price,
        item.quantity,
        unit_mrp=item.unit_mrp,
        discount_percent=item.unit_discount_percent or 0,
        gst_percent=item.unit_gst_percent or 0,
    )


def allocate_coupon_discount(amounts: Iterable, ceiling) -> list:
    """Split ``ceiling`` across coupon amounts in order; each share is at most its own amount."""
    remaining = max(ZERO, round_money(D(ceiling)))
    shares = []
    for amount in amounts:
        share = min(round_money(D(amount)), remaining)
        shares.append(share)
        remaining -= share
    return shares


def compute_totals(line_items: Iterable, applied_coupons: Iterable = ()) -> CartTotals:
    """Totals for a cart. ``applied_coupons`` yields objects with ``discount_amount``."""
    line_items = list(line_items)
    lines = tuple(price_item(it) for it in line_items)

    subtotal = sum((p.line_total for p in lines), ZERO)
    item_discount = sum((p.line_discount for p in lines), ZERO)
    tax_amount = sum((p.line_tax for p in lines), ZERO)

    requested = sum((D(c.discount_amount) for c in applied_coupons), ZERO)
    ceiling = max(ZERO, subtotal + tax_amount - item_discount)
    coupon_discount = round_money(min(requested, ceiling))

    discount_amount = round_money(item_discount + coupon_discount)
    total_amount = round_money(subtotal + tax_amount - discount_amount)

    item_count = sum(int(it.quantity) for it in line_items)

    return CartTotals(
        subtotal=round_money(subtotal),
        tax_amount=round_money(tax_amount),
        item_discount=round_money(item_discount),
        coupon_discount=coupon_discount,
        discount_amount=discount_amount,
        total_amount=total_amount,
        item_count=item_count,
        lines=lines,
    )
