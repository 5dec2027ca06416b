from __future__ import annotations

import json
from typing import Optional

from flask import Flask, jsonify
from pydantic import ValidationError as SchemaValidationError
from sqlalchemy.exc import OperationalError
from werkzeug.exceptions import HTTPException

from .config import AppSettings, load_settings
from .db import Database
from .errors import RaffleError, TransientError
from .routes.admin import bp as admin_bp
from .routes.cron import bp as cron_bp
from .routes.health import bp as health_bp
from .routes.notifications import bp as notifications_bp
from .routes.orders import bp as orders_bp
from .routes.payments import bp as payments_bp
from .routes.products import bp as products_bp
from .services.auth import AuthService
from .services.container import build_services
from .services.notifications import NotificationSender
from .services.payments import PaymentProvider


def create_app(
    settings: Optional[AppSettings] = None,
    *,
    db: Optional[Database] = None,
    payment_provider: Optional[PaymentProvider] = None,
    notification_sender: Optional[NotificationSender] = None,
    auth_service: Optional[AuthService] = None,
) -> Flask:
    settings = settings or load_settings()
    app = Flask(__name__)
    app.config["SECRET_KEY"] = settings.flask.secret_key
    app.config["CRON_SECRET"] = settings.cron_secret

    services = build_services(
        settings,
        db=db,
        payment_provider=payment_provider,
        notification_sender=notification_sender,
        auth_service=auth_service,
    )
    services.db.create_all()
    app.extensions["raffle"] = services

    app.register_blueprint(health_bp)
    app.register_blueprint(products_bp)
    app.register_blueprint(orders_bp, url_prefix="/orders")
    app.register_blueprint(payments_bp, url_prefix="/payments")
    app.register_blueprint(notifications_bp, url_prefix="/notifications")
    app.register_blueprint(admin_bp, url_prefix="/admin/api")
    app.register_blueprint(cron_bp, url_prefix="/cron")

    @app.errorhandler(RaffleError)
    def handle_raffle_error(exc: RaffleError):
        if exc.status_code >= 500:
            app.logger.error("%s: %s", type(exc).__name__, exc.message)
        return jsonify(exc.to_dict()), exc.status_code

    @app.errorhandler(SchemaValidationError)
    def handle_schema_error(exc: SchemaValidationError):
        return jsonify({"error": "invalid request", "details": json.loads(exc.json())}), 400

    @app.errorhandler(OperationalError)
    def handle_database_error(exc: OperationalError):
        app.logger.exception("Database unavailable: %s", exc)
        error = TransientError()
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(Exception)
    def handle_error(exc: Exception):
        if isinstance(exc, HTTPException):
            return jsonify({"error": exc.description}), exc.code
        app.logger.exception("Unhandled error: %s", exc)
        return jsonify({"error": "something went wrong, try again"}), 500

    return app
