# backend/buyaday/routes/system.py
"""
System health and version endpoints.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import CalendarDay, SalesSettings, STATE_CHECKOUT_HOLD
from ..time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    """Database connectivity plus a few provisioning facts."""
    start_time = time.time()
    try:
        day_count = db.session.query(CalendarDay).count()
        open_holds = db.session.query(CalendarDay).filter_by(state=STATE_CHECKOUT_HOLD).count()
        settings_ready = db.session.query(SalesSettings).count() > 0
        elapsed_ms = (time.time() - start_time) * 1000

        status = "healthy" if day_count and settings_ready else "degraded"
        return {
            "status": status,
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "calendar_days": day_count,
                "open_checkout_holds": open_holds,
                "settings_initialized": settings_ready,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: healthy or degraded (not yet seeded)
    - 503: database unreachable
    """
    database_health = check_database_health()
    http_status = 503 if database_health["status"] == "unhealthy" else 200

    return {
        "status": database_health["status"],
        "timestamp": to_utc_z(utcnow()),
        "checks": {"database": database_health},
    }, http_status
