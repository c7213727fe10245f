from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from flask_jwt_extended import create_access_token

from storefront import create_app
from storefront.config import TestConfig
from storefront.extensions import db as _db
from storefront.gateway import FakeGateway
from storefront.model import Coupon, Product, ProductVariant
from storefront.services.identity import Authenticated, Guest
from storefront.utils.db import utcnow


@pytest.fixture
def gateway():
    return FakeGateway(secret=TestConfig.FAKE_GATEWAY_SECRET)


@pytest.fixture
def app(gateway):
    app = create_app(TestConfig, gateway=gateway)
    ctx = app.app_context()
    ctx.push()

    yield app

    _db.session.remove()
    _db.drop_all()
    app.extensions["storefront"].close()
    ctx.pop()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def session(app):
    return _db.session


@pytest.fixture
def services(app):
    return app.extensions["storefront"]


@pytest.fixture
def guest():
    return Guest(session_id="guest-session-1")


@pytest.fixture
def user():
    return Authenticated(user_id=42)


@pytest.fixture
def make_product(session):
    def _make(price="1000.00", gst="18", stock=10, mrp=None, discount=None,
              brand="Acme", category_id=1, title="Widget", is_active=True):
        product = Product(
            title=title,
            sku=f"SKU-{uuid4().hex[:8]}",
            brand=brand,
            category_id=category_id,
            price=Decimal(price),
            mrp=Decimal(mrp) if mrp is not None else None,
            discount_percent=Decimal(discount) if discount is not None else None,
            gst_percent=Decimal(gst) if gst is not None else None,
            stock_qty=stock,
            is_active=is_active,
        )
        session.add(product)
        session.commit()
        return product

    return _make


@pytest.fixture
def make_variant(session):
    def _make(product, price="1200.00", stock=5, gst=None):
        variant = ProductVariant(
            product_id=product.id,
            sku=f"VAR-{uuid4().hex[:8]}",
            attributes={"size": "L"},
            price=Decimal(price),
            gst_percent=Decimal(gst) if gst is not None else None,
            stock_qty=stock,
        )
        session.add(variant)
        session.commit()
        return variant

    return _make


@pytest.fixture
def make_coupon(session):
    def _make(code="SAVE200", ctype="fixed_amount", value="200", **fields):
        now = utcnow()
        values = dict(
            code=code,
            name=code,
            ctype=ctype,
            value=Decimal(value),
            min_order_amount=Decimal("0"),
            valid_from=now - timedelta(days=1),
            valid_until=now + timedelta(days=30),
        )
        values.update(fields)
        coupon = Coupon(**values)
        session.add(coupon)
        session.commit()
        return coupon

    return _make


@pytest.fixture
def filled_cart(services):
    """Active cart for ``identity`` holding ``quantity`` of ``product``."""

    def _fill(identity, product, quantity=1, variant=None):
        cart = services.carts.get_or_create_cart(identity)
        result = services.carts.add_item(
            cart.id, product.id, variant_id=variant.id if variant else None, quantity=quantity, identity=identity
        )
        assert result.success, result
        return cart

    return _fill


@pytest.fixture
def address():
    return {
        "full_name": "Asha Rao",
        "phone": "9876543210",
        "line1": "12 MG Road",
        "city": "Bengaluru",
        "state": "KA",
        "postal_code": "560001",
        "country": "IN",
    }


@pytest.fixture
def user_headers(app):
    token = create_access_token(identity="42")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers(app):
    token = create_access_token(identity="1", additional_claims={"role": "admin"})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def place_order(services, address):
    """Run checkout init for ``cart`` and return the pending order."""

    def _place(cart, identity, **kwargs):
        kwargs.setdefault("shipping_address", dict(address))
        result = services.checkout.init(cart.id, identity, **kwargs)
        assert result.success, result
        return result.value.order

    return _place
