"""Global resilience and error-handler registration.

Synopsis:
Registers teardown and error handlers for database rollback safety, JSON
503 responses on database outages, and CSRF failure handling.
"""

from __future__ import annotations

from flask import request
from flask_wtf.csrf import CSRFError
from sqlalchemy.exc import DBAPIError, OperationalError

from .extensions import db
from .services.billing.errors import BillingError
from .utils.api_responses import APIResponse


def register_resilience_handlers(app) -> None:
    """Install global DB rollback, outage and CSRF handlers."""

    @app.teardown_request
    def _rollback_on_error(exc):
        if exc is not None:
            db.session.rollback()

    @app.errorhandler(OperationalError)
    @app.errorhandler(DBAPIError)
    def _db_error_handler(error):
        db.session.rollback()
        app.logger.error("Database unavailable during %s %s: %s", request.method, request.path, error)
        return APIResponse.error("Service temporarily unavailable. Please try again shortly.", status_code=503)

    @app.errorhandler(BillingError)
    def _billing_error_handler(error: BillingError):
        db.session.rollback()
        app.logger.warning("Unhandled billing error on %s: %s", request.path, error)
        return APIResponse.error("Could not complete upgrade", status_code=error.http_status)

    @app.errorhandler(CSRFError)
    def _csrf_error_handler(err: CSRFError):
        details = {
            "path": request.path,
            "endpoint": request.endpoint,
            "remote_addr": request.headers.get("X-Forwarded-For", request.remote_addr),
            "reason": err.description,
        }
        app.logger.warning("CSRF validation failed: %s", details)
        return APIResponse.error(
            "Your session expired or this form is out of date. Refresh and try again.",
            errors={"csrf": [err.description]},
            status_code=400,
        )
