from __future__ import annotations

from flask import Flask, jsonify
from pydantic import ValidationError
from werkzeug.exceptions import HTTPException

from .config import load_settings
from .logging_config import configure_logging
from .routes.admin import bp as admin_bp
from .routes.health import bp as health_bp
from .routes.lottery import bp as lottery_bp
from .routes.lottery import get_ledger
from .types import LedgerCapacityError, LedgerConflictError, LedgerUnavailableError


def create_app() -> Flask:
    settings = load_settings()
    configure_logging(settings.flask.debug)
    app = Flask(__name__)
    app.config["SECRET_KEY"] = settings.flask.secret_key

    ledger = get_ledger()
    app.logger.info("Ledger storage: %s", ledger.describe())

    app.register_blueprint(health_bp)
    app.register_blueprint(lottery_bp, url_prefix="/api/lottery")
    app.register_blueprint(admin_bp, url_prefix="/admin/api")

    @app.errorhandler(ValidationError)
    def handle_validation_error(exc: ValidationError):
        details = exc.errors(include_url=False, include_context=False)
        return jsonify({"success": False, "error": "invalid request", "details": details}), 400

    @app.errorhandler(LedgerUnavailableError)
    def handle_unavailable(exc: LedgerUnavailableError):
        app.logger.warning("Lottery data unavailable: %s", exc)
        return jsonify({"success": False, "error": "lottery data unavailable"}), 503

    @app.errorhandler(LedgerConflictError)
    def handle_conflict(exc: LedgerConflictError):
        app.logger.warning("Ledger update abandoned: %s", exc)
        return jsonify({"success": False, "error": str(exc)}), 409

    @app.errorhandler(LedgerCapacityError)
    def handle_capacity(exc: LedgerCapacityError):
        app.logger.error("Ledger is full: %s", exc)
        return jsonify({"success": False, "error": str(exc)}), 507

    @app.errorhandler(Exception)
    def handle_error(exc: Exception):
        if isinstance(exc, HTTPException):
            return jsonify({"success": False, "error": exc.description}), exc.code
        app.logger.exception("Unhandled error: %s", exc)
        return jsonify({"success": False, "error": str(exc)}), 500

    return app
