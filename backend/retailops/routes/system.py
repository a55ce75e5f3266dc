# backend/retailops/routes/system.py
"""
System health endpoint.

Reports database connectivity and whether outbound notifications are
enabled. Notification channels are not probed: they are best-effort and
never make the service unhealthy.
"""

import time

from flask import Blueprint, current_app
from sqlalchemy import text

from ..extensions import db
from ..time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    start_time = time.time()
    try:
        db.session.execute(text("SELECT 1"))
        elapsed_ms = (time.time() - start_time) * 1000
        return {"status": "healthy", "latency_ms": round(elapsed_ms, 2)}
    except Exception:
        db.session.rollback()
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_notification_health() -> dict:
    dispatcher = current_app.extensions.get("notification_dispatcher")
    if dispatcher is None:
        return {"status": "degraded", "warning": "Dispatcher not initialized"}
    config = dispatcher.config
    return {
        "status": "healthy",
        "details": {
            "enabled": config.enabled,
            "channels": {
                channel.name: channel.is_configured() for channel in dispatcher.channels
            },
        },
    }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: database reachable
    - 503: database unreachable
    """
    start_time = time.time()
    database_health = check_database_health()
    notification_health = check_notification_health()

    if database_health["status"] == "unhealthy":
        overall_status, http_status = "unhealthy", 503
    elif notification_health["status"] == "degraded":
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "success": http_status == 200,
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "notifications": notification_health,
        },
    }, http_status
