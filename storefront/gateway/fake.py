"""In-process payment gateway for development and tests.

Signs payloads the same way Razorpay does (HMAC-SHA256 over
``"<order_id>|<payment_id>"``), so checkout exercises the real verification
path without network calls.
"""

import hashlib
import hmac
from uuid import uuid4

from .port import PaymentGateway, PaymentIntent, PaymentProviderError


class FakeGateway(PaymentGateway):
    name = "fake"

    def __init__(self, secret: str = "fake-gateway-secret") -> None:
        self.secret = secret
        self.should_succeed: bool = True
        self.failure_reason: str = "Gateway rejected the order"
        self.calls: list[dict] = []

    def configure(self, should_succeed: bool, failure_reason: str = "Gateway rejected the order") -> None:
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason

    def create_intent(self, amount_minor: int, currency: str, reference: str) -> PaymentIntent:
        self.calls.append({
            "method": "create_intent",
            "amount_minor": amount_minor,
            "currency": currency,
            "reference": reference,
        })
        if not self.should_succeed:
            raise PaymentProviderError(self.failure_reason, status_code=400)

        provider_ref = f"fake_order_{uuid4().hex[:12]}"
        return PaymentIntent(
            provider=self.name,
            provider_ref=provider_ref,
            amount_minor=amount_minor,
            currency=currency,
            client_params={"provider_order_id": provider_ref, "amount": amount_minor, "currency": currency},
        )

    def sign(self, provider_ref: str, payment_id: str) -> str:
        message = f"{provider_ref}|{payment_id}".encode()
        return hmac.new(self.secret.encode(), message, hashlib.sha256).hexdigest()

    def signed_payload(self, provider_ref: str, payment_id: str | None = None) -> dict:
        """What a client would post back after a successful fake payment."""
        payment_id = payment_id or f"fake_pay_{uuid4().hex[:12]}"
        return {
            "provider_order_id": provider_ref,
            "payment_id": payment_id,
            "signature": self.sign(provider_ref, payment_id),
        }

    def verify_signature(self, provider_ref: str, payload: dict) -> bool:
        payload = payload or {}
        signature = payload.get("signature")
        payment_id = payload.get("payment_id")
        if not signature or not payment_id:
            return False
        return hmac.compare_digest(self.sign(provider_ref, payment_id), str(signature))
