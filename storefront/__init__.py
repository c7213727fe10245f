# --- storefront/__init__.py ---
from uuid import uuid4

import requests
import structlog
from flask import Flask, jsonify, request
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

from .config import Config
from .container import init_services
from .extensions import cors, db, jwt, migrate
from .utils.logging import add_context, clear_context, configure_logging

logger = structlog.get_logger(__name__)


def create_app(config_object=None, gateway=None):
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_object or Config)
    Config.init_app(app)

    configure_logging(app)

    # Init extensions
    db.init_app(app)
    jwt.init_app(app)
    cors.init_app(app, resources={r"/*": {"origins": "*"}},
                  expose_headers=[app.config["CART_SESSION_HEADER"]])
    migrate.init_app(app, db)

    # Register blueprints
    from .cart import bp as cart_bp; app.register_blueprint(cart_bp)
    from .coupon import bp as coupon_bp; app.register_blueprint(coupon_bp)
    from .checkout import bp as checkout_bp; app.register_blueprint(checkout_bp)
    from .order import bp as order_bp; app.register_blueprint(order_bp)

    from .cli import register_cli
    register_cli(app)

    register_error_handlers(app)
    register_request_logging(app)

    @app.get("/")
    def health():
        return jsonify(success=True, message="API running")

    with app.app_context():
        if app.config.get("AUTO_CREATE_SCHEMA", True):
            db.create_all()
        init_services(app, db.session, gateway=gateway)

    logger.info("app created", env=app.config.get("ENV"), gateway=app.extensions["storefront"].gateway.name)
    return app


def register_request_logging(app):
    @app.before_request
    def bind_request_context():
        clear_context()
        add_context(request_id=request.headers.get("X-Request-Id") or uuid4().hex[:12],
                    method=request.method, path=request.path)

    @app.teardown_request
    def unbind_request_context(exc):
        clear_context()


def register_error_handlers(app):
    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        r = jsonify({"success": False, "code": e.name.replace(" ", ""), "message": e.description, "data": {}})
        r.status_code = e.code
        return r

    @app.errorhandler(ValueError)
    def handle_value_error(e):
        r = jsonify({"success": False, "code": "ValidationError", "message": str(e), "data": {}})
        r.status_code = 422
        return r

    @app.errorhandler(SQLAlchemyError)
    def handle_db_error(e):
        db.session.rollback()
        logger.exception("database error")
        r = jsonify({"success": False, "code": "ServerError", "message": "Internal server error", "data": {}})
        r.status_code = 500
        return r

    @app.errorhandler(requests.RequestException)
    def handle_provider_error(e):
        db.session.rollback()
        logger.exception("payment provider unreachable")
        r = jsonify({"success": False, "code": "ServerError", "message": "Payment provider unavailable", "data": {}})
        r.status_code = 500
        return r
