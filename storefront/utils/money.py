# storefront/utils/money.py

from decimal import Decimal, ROUND_HALF_UP

Money = Decimal

ZERO = Decimal("0")
HUNDRED = Decimal("100")


def D(x) -> Money:
    return x if isinstance(x, Decimal) else Decimal(str(x or "0"))


def round_money(x: Money) -> Money:
    return D(x).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def to_string_money(x) -> str:
    return str(round_money(x))


def to_minor_units(x) -> int:
    """Amount in paise/cents, as payment gateways expect it."""
    return int((round_money(x) * HUNDRED).to_integral_value(rounding=ROUND_HALF_UP))
