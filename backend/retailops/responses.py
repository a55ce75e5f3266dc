# Overview: Standard JSON envelope and service-error translation for API routes.

from __future__ import annotations

from flask import current_app, jsonify

from .errors import ServiceError
from .extensions import db


def envelope(data=None, *, message: str | None = None, status: int = 200, **extra):
    """{success, message, data, errors} plus any extra top-level keys."""
    body = {
        "success": 200 <= status < 400,
        "message": message,
        "data": data,
        "errors": [],
    }
    body.update(extra)
    return jsonify(body), status


def error_envelope(message: str, status: int, errors: list[dict] | None = None):
    return jsonify({
        "success": False,
        "message": message,
        "data": None,
        "errors": errors or [],
    }), status


def service_error_response(exc: ServiceError, *, operation: str, entity_id=None):
    """Roll back, log with context and answer with the error's status."""
    db.session.rollback()
    log = current_app.logger.warning if exc.status_code < 500 else current_app.logger.error
    log("%s failed (id=%s): %s %s", operation, entity_id, type(exc).__name__, exc.message)
    return error_envelope(exc.message, exc.status_code, exc.details)


def unexpected_error_response(exc: Exception, *, operation: str, entity_id=None):
    db.session.rollback()
    current_app.logger.exception("%s failed unexpectedly (id=%s)", operation, entity_id)
    message = "Internal server error"
    if current_app.config.get("DEBUG"):
        message = f"{message}: {exc}"
    return error_envelope(message, 500)
