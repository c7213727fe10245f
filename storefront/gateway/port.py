"""Payment gateway port.

Checkout only talks to this interface, so the fake adapter (dev/test) and
the Razorpay adapter are interchangeable.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


class PaymentProviderError(Exception):
    """The provider answered but refused the request."""

    def __init__(self, message: str, status_code: int | None = None, body: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


@dataclass(frozen=True)
class PaymentIntent:
    """Provider-side order created for an exact amount."""

    provider: str
    provider_ref: str
    amount_minor: int
    currency: str
    client_params: dict = field(default_factory=dict)
    raw: dict = field(default_factory=dict)


class PaymentGateway(ABC):
    name: str = "gateway"

    @abstractmethod
    def create_intent(self, amount_minor: int, currency: str, reference: str) -> PaymentIntent:
        """Create a payment intent for ``amount_minor`` (paise/cents)."""
        ...

    @abstractmethod
    def verify_signature(self, provider_ref: str, payload: dict) -> bool:
        """Check the client-returned payload was signed by the provider for ``provider_ref``."""
        ...

    def payment_id_of(self, payload: dict) -> str | None:
        return (payload or {}).get("payment_id")

    def close(self) -> None:
        pass
