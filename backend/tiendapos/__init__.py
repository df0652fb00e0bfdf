# backend/tiendapos/__init__.py
from flask import Flask, jsonify, request
from sqlalchemy.exc import DBAPIError

from .config import Config
from .extensions import db, migrate
from .services.db_errors import classify_db_error


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.admin import admin_bp
    from .routes.developer import developer_bp
    from .routes.products import products_bp
    from .routes.cart import cart_bp
    from .routes.customers import customers_bp
    from .routes.suppliers import suppliers_bp
    from .routes.sales import sales_bp
    from .routes.cash import cash_bp
    from .routes.returns import returns_bp
    from .routes.promotions import promotions_bp
    from .routes.coupons import coupons_bp
    from .routes.loyalty import loyalty_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(developer_bp)
    app.register_blueprint(products_bp)
    app.register_blueprint(cart_bp)
    app.register_blueprint(customers_bp)
    app.register_blueprint(suppliers_bp)
    app.register_blueprint(sales_bp)
    app.register_blueprint(cash_bp)
    app.register_blueprint(returns_bp)
    app.register_blueprint(promotions_bp)
    app.register_blueprint(coupons_bp)
    app.register_blueprint(loyalty_bp)

    @app.errorhandler(DBAPIError)
    def handle_db_error(e):
        db.session.rollback()
        status, message = classify_db_error(e)
        if status >= 500:
            app.logger.error("Unhandled database error on %s %s: %s", request.method, request.path, e.orig)
        return jsonify({"error": message}), status

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin and origin in app.config.get("CORS_ALLOWED_ORIGINS", []):
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type, Idempotency-Key"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
