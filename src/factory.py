# -*- coding: utf-8 -*-
import os
from flask import Flask
from flask_cors import CORS

from src.config import config_warnings, load_config

# Observability imports
from src.services.metrics import init_metrics
from src.services.request_context import init_request_context
from src.services.structured_logging import init_logging

from src.middleware.errors import register_error_handlers
from src.services.storage import CustomerStore


def create_app(config_overrides: dict = None) -> Flask:
    app = Flask(
        __name__,
        static_folder=os.path.join(os.path.dirname(__file__), "static"),
        template_folder=os.path.join(os.path.dirname(__file__), "templates"),
    )
    app.url_map.strict_slashes = False

    # --- Core config ---
    app.config.update(load_config())
    if config_overrides:
        app.config.update(config_overrides)

    # --- CORS ---
    cors_origins = [
        origin.strip()
        for origin in app.config["CORS_ALLOWED_ORIGINS"].split(",")
        if origin.strip()
    ]
    CORS(app, resources={
        r"/api/*": {
            "origins": cors_origins,
            "methods": ["GET", "POST", "OPTIONS"],
            "allow_headers": ["Content-Type", "Authorization", "Stripe-Signature", "X-Request-ID"],
            "supports_credentials": False,
            "max_age": 600,
        }}
    )

    # --- Initialize observability ---
    init_logging(app)
    init_request_context(app)
    init_metrics(app)

    # --- Error handlers ---
    register_error_handlers(app)

    # --- Customer store ---
    app.extensions["customer_store"] = CustomerStore(
        app.config["CHECKOUT_DATA_FILE"],
        processed_events_limit=app.config["PROCESSED_EVENTS_LIMIT"],
    )

    # --- Mount blueprints ---
    with app.app_context():
        from src.routes import billing_portal, customers, health, pages, stripe_api, stripe_webhooks
        app.register_blueprint(health.health_bp, url_prefix="/")
        app.register_blueprint(pages.pages_bp)
        app.register_blueprint(stripe_api.stripe_api_bp)
        app.register_blueprint(stripe_webhooks.stripe_webhooks_bp)
        app.register_blueprint(billing_portal.billing_bp)
        app.register_blueprint(customers.customers_bp)

    for message in config_warnings(app.config):
        app.logger.warning(message)

    return app
