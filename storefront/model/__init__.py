# ------ storefront/model/__init__.py ------

from .product import Product, ProductVariant
from .cart import Cart, CartItem
from .coupon import Coupon, CartCoupon, CouponUsage
from .address import Address
from .order import Order, OrderCoupon, OrderItem, Payment
from .notification import Notification

__all__ = [
    "Product",
    "ProductVariant",
    "Cart",
    "CartItem",
    "Coupon",
    "CartCoupon",
    "CouponUsage",
    "Address",
    "Order",
    "OrderItem",
    "OrderCoupon",
    "Payment",
    "Notification",
]
