"""Outcome types returned by every cart, coupon and checkout operation.

Expected business-rule violations come back as a ``Failure`` carrying a
stable ``ErrorCode``; only infrastructure errors are raised.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar, Union

T = TypeVar("T")


class ErrorCode(str, Enum):
    # cart
    PRODUCT_NOT_FOUND = "ProductNotFound"
    VARIANT_NOT_FOUND = "VariantNotFound"
    CART_NOT_FOUND = "CartNotFound"
    CART_ITEM_NOT_FOUND = "CartItemNotFound"
    INVALID_QUANTITY = "InvalidQuantity"
    EMPTY_CART = "EmptyCart"
    AUTHENTICATION_REQUIRED = "AuthenticationRequired"

    # coupon
    COUPON_NOT_FOUND = "CouponNotFound"
    COUPON_INACTIVE = "CouponInactive"
    COUPON_NOT_STARTED = "CouponNotStarted"
    COUPON_EXPIRED = "CouponExpired"
    TOTAL_USAGE_LIMIT_EXCEEDED = "TotalUsageLimitExceeded"
    USER_LIMIT_EXCEEDED = "UserLimitExceeded"
    MINIMUM_ORDER_NOT_MET = "MinimumOrderNotMet"
    ALREADY_APPLIED = "AlreadyApplied"
    NOT_STACKABLE = "NotStackable"
    NOT_APPLICABLE_TO_CART = "NotApplicableToCart"
    COUPON_NOT_ATTACHED = "CouponNotAttached"
    INVALID_COUPON = "InvalidCoupon"
    DUPLICATE_COUPON_CODE = "DuplicateCouponCode"
    COUPON_IN_USE = "CouponInUse"

    # checkout
    INSUFFICIENT_STOCK = "InsufficientStock"
    SHIPPING_ADDRESS_REQUIRED = "ShippingAddressRequired"
    INVALID_ADDRESS = "InvalidAddress"
    ADDRESS_NOT_FOUND = "AddressNotFound"
    INVALID_PAYMENT_SIGNATURE = "InvalidPaymentSignature"
    UNSUPPORTED_PAYMENT_METHOD = "UnsupportedPaymentMethod"
    PAYMENT_PROVIDER_ERROR = "PaymentProviderError"
    ORDER_NOT_FOUND = "OrderNotFound"
    INVALID_ORDER_STATE = "InvalidOrderState"


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T = None
    message: str = "ok"

    success = True


@dataclass(frozen=True)
class Failure:
    code: ErrorCode
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    success = False

    def as_api(self) -> dict[str, Any]:
        return {
            "success": False,
            "code": self.code.value,
            "message": self.message,
            "data": dict(self.details),
        }


Result = Union[Ok[T], Failure]


def fail(code: ErrorCode, message: str, **details: Any) -> Failure:
    return Failure(code=code, message=message, details=details)
