"""Per-process wiring of the services.

Every service gets the Flask-SQLAlchemy scoped session and its
collaborators through its constructor; views reach them via
``get_services()``.
"""

from flask import current_app

from .gateway import build_gateway
from .services.addresses import AddressBook
from .services.cart_service import CartStore
from .services.catalog import Catalog
from .services.checkout_service import CheckoutOrchestrator
from .services.coupon_admin import CouponAdmin
from .services.coupon_service import CouponEngine
from .services.notifications import Notifier
from .services.orders import OrderDesk
from .services.usage_ledger import UsageLedger
from .utils.db import utcnow


class Storefront:
    def __init__(self, session, config, gateway=None, clock=utcnow):
        self.session = session
        self.gateway = gateway or build_gateway(config)

        self.catalog = Catalog(session, default_gst_percent=config.get("DEFAULT_GST_PERCENT", 18))
        self.carts = CartStore(
            session,
            self.catalog,
            currency=config.get("STORE_CURRENCY", "INR"),
            guest_ttl=config["GUEST_CART_TTL"],
            user_ttl=config["USER_CART_TTL"],
            clock=clock,
        )
        self.ledger = UsageLedger(session, clock=clock)
        self.coupons = CouponEngine(session, self.carts, self.ledger, clock=clock)
        self.coupon_admin = CouponAdmin(session, self.ledger, self.carts, clock=clock)
        self.addresses = AddressBook(session)
        self.notifier = Notifier(session)
        self.checkout = CheckoutOrchestrator(
            session, self.carts, self.ledger, self.addresses, self.gateway, self.notifier, clock=clock
        )
        self.orders = OrderDesk(session, clock=clock)

    def close(self) -> None:
        self.gateway.close()


def init_services(app, session, gateway=None) -> Storefront:
    services = Storefront(session, app.config, gateway=gateway)
    app.extensions["storefront"] = services
    return services


def get_services() -> Storefront:
    return current_app.extensions["storefront"]
