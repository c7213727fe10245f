import os
from datetime import timedelta


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Config:
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    JSON_SORT_KEYS = False
    ENV = os.getenv("FLASK_ENV", "development")
    AUTO_CREATE_SCHEMA = _env_bool("AUTO_CREATE_SCHEMA", True)

    JWT_SECRET_KEY = os.environ.get("JWT_SECRET_KEY", "dev-secret-change-me-please-32-bytes")
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(days=1)

    # Pricing
    STORE_CURRENCY = os.getenv("STORE_CURRENCY", "INR")
    DEFAULT_GST_PERCENT = int(os.getenv("DEFAULT_GST_PERCENT", "18"))

    # Cart lifetime; guest carts die sooner
    GUEST_CART_TTL = timedelta(days=int(os.getenv("GUEST_CART_TTL_DAYS", "7")))
    USER_CART_TTL = timedelta(days=int(os.getenv("USER_CART_TTL_DAYS", "30")))
    CART_SESSION_HEADER = "X-Session-Id"
    CART_SESSION_COOKIE = "sessionId"

    # Payments
    PAYMENT_GATEWAY = os.getenv("PAYMENT_GATEWAY", "fake")  # "fake" | "razorpay"
    RAZORPAY_KEY_ID = os.getenv("RAZORPAY_KEY_ID")
    RAZORPAY_KEY_SECRET = os.getenv("RAZORPAY_KEY_SECRET")
    RAZORPAY_API_BASE = os.getenv("RAZORPAY_API_BASE", "https://api.razorpay.com/v1")
    PAYMENT_TIMEOUT_SECONDS = float(os.getenv("PAYMENT_TIMEOUT_SECONDS", "10"))
    FAKE_GATEWAY_SECRET = os.getenv("FAKE_GATEWAY_SECRET", "fake-gateway-secret")

    # Logging
    LOG_LEVEL = os.getenv("LOG_LEVEL")
    LOG_JSON = _env_bool("LOG_JSON", False)

    @staticmethod
    def init_app(app):
        if app.config.get("SQLALCHEMY_DATABASE_URI"):
            return
        if not os.getenv("DATABASE_URL"):
            os.makedirs(app.instance_path, exist_ok=True)
            app.config["SQLALCHEMY_DATABASE_URI"] = f"sqlite:///{os.path.join(app.instance_path, 'storefront.db')}"
        else:
            app.config["SQLALCHEMY_DATABASE_URI"] = os.getenv("DATABASE_URL")


class TestConfig(Config):
    TESTING = True
    ENV = "test"
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    JWT_SECRET_KEY = "test-secret-key-that-is-long-enough-for-hs256"
    PAYMENT_GATEWAY = "fake"
    FAKE_GATEWAY_SECRET = "test-gateway-secret"
    LOG_LEVEL = "WARNING"
