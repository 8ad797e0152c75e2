# backend/clinic/routes/system.py
"""
System health endpoint.

Checks the database and reports which outbound collaborators are wired,
for deployment debugging.
"""

import time
from flask import Blueprint, current_app
from sqlalchemy import text

from ..extensions import db
from ..models import InventoryItem, SessionToken
from clinic.time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        db.session.execute(text("SELECT 1"))
        item_count = db.session.query(InventoryItem).count()
        active_sessions = db.session.query(SessionToken).filter_by(is_revoked=False).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "inventory_items": item_count,
                "active_sessions": active_sessions,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        db.session.rollback()
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: database reachable
    - 503: database unhealthy
    """
    start_time = time.time()
    database_health = check_database_health()

    http_status = 200 if database_health["status"] == "healthy" else 503
    total_elapsed_ms = (time.time() - start_time) * 1000

    return {
        "status": database_health["status"],
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
        },
        "collaborators": {
            "payment_processor": type(current_app.extensions["payment_processor"]).__name__,
            "notification_sink": type(current_app.extensions["notification_sink"]).__name__,
        },
    }, http_status
