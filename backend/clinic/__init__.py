# backend/clinic/__init__.py
from __future__ import annotations

import logging

from flask import Flask, request

from .config import Config
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None, *, payment_processor=None, notification_sink=None) -> Flask:
    """
    Build the Flask app.

    payment_processor / notification_sink are the outbound collaborators.
    When omitted they are built from config; tests pass fakes. Services get
    them through app.extensions, never through module globals.
    """
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    app.logger.setLevel(app.config["LOG_LEVEL"])
    logging.getLogger("clinic").setLevel(app.config["LOG_LEVEL"])

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    from .services.notifications import build_sink
    from .services.processor import StripePaymentProcessor

    app.extensions["payment_processor"] = payment_processor or StripePaymentProcessor.from_config(app.config)
    app.extensions["notification_sink"] = notification_sink or build_sink(app.config)

    # Register blueprints
    from .routes.system import system_bp
    from .routes.accounts import accounts_bp
    from .routes.inventory import inventory_bp
    from .routes.sales import sales_bp
    from .routes.appointments import appointments_bp
    from .routes.payments import payments_bp
    from .routes.admin import admin_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(accounts_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(sales_bp)
    app.register_blueprint(appointments_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(admin_bp)

    allowed_origins = set(app.config["CORS_ALLOWED_ORIGINS"])

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
