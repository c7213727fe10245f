"""Payment gateway adapters and the factory that picks one from config."""

from .fake import FakeGateway
from .port import PaymentGateway, PaymentIntent, PaymentProviderError
from .razorpay import RazorpayGateway


def build_gateway(config) -> PaymentGateway:
    kind = (config.get("PAYMENT_GATEWAY") or "fake").lower()
    if kind == "razorpay":
        return RazorpayGateway(
            key_id=config.get("RAZORPAY_KEY_ID"),
            key_secret=config.get("RAZORPAY_KEY_SECRET"),
            api_base=config.get("RAZORPAY_API_BASE", "https://api.razorpay.com/v1"),
            timeout=float(config.get("PAYMENT_TIMEOUT_SECONDS", 10)),
        )
    if kind == "fake":
        return FakeGateway(secret=config.get("FAKE_GATEWAY_SECRET", "fake-gateway-secret"))
    raise ValueError(f"unknown PAYMENT_GATEWAY {kind!r}")


__all__ = [
    "FakeGateway",
    "PaymentGateway",
    "PaymentIntent",
    "PaymentProviderError",
    "RazorpayGateway",
    "build_gateway",
]
