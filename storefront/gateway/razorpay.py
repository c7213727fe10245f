import hashlib
import hmac

import requests
import structlog

from .port import PaymentGateway, PaymentIntent, PaymentProviderError

logger = structlog.get_logger(__name__)


class RazorpayGateway(PaymentGateway):
    """Razorpay Orders API adapter.

    Connection errors and timeouts are left to propagate; only a non-2xx
    answer becomes ``PaymentProviderError``.
    """

    name = "razorpay"

    def __init__(self, key_id: str, key_secret: str, api_base: str = "https://api.razorpay.com/v1",
                 timeout: float = 10.0, http: requests.Session | None = None) -> None:
        if not key_id or not key_secret:
            raise ValueError("RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET must be set")
        self.key_id = key_id
        self.key_secret = key_secret
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.http = http or requests.Session()
        self.http.auth = (key_id, key_secret)

    def create_intent(self, amount_minor: int, currency: str, reference: str) -> PaymentIntent:
        resp = self.http.post(
            f"{self.api_base}/orders",
            json={"amount": amount_minor, "currency": currency, "receipt": reference},
            timeout=self.timeout,
        )
        if not resp.ok:
            logger.warning("razorpay order rejected", status_code=resp.status_code, reference=reference)
            raise PaymentProviderError("Failed to create Razorpay order", status_code=resp.status_code,
                                       body=resp.text[:500])

        data = resp.json()
        logger.info("razorpay order created", provider_ref=data.get("id"), reference=reference)
        return PaymentIntent(
            provider=self.name,
            provider_ref=data["id"],
            amount_minor=int(data.get("amount", amount_minor)),
            currency=data.get("currency", currency),
            client_params={
                "key": self.key_id,
                "razorpay_order_id": data["id"],
                "amount": int(data.get("amount", amount_minor)),
                "currency": data.get("currency", currency),
            },
            raw=data,
        )

    def payment_id_of(self, payload: dict) -> str | None:
        return (payload or {}).get("razorpay_payment_id")

    def verify_signature(self, provider_ref: str, payload: dict) -> bool:
        payload = payload or {}
        signature = payload.get("razorpay_signature")
        payment_id = payload.get("razorpay_payment_id")
        if not signature or not payment_id:
            return False
        message = f"{provider_ref}|{payment_id}".encode()
        expected = hmac.new(self.key_secret.encode(), message, hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected, str(signature))

    def close(self) -> None:
        self.http.close()
