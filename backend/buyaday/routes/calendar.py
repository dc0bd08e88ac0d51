# Overview: Public calendar read routes (no authentication, no buyer PII).

from flask import Blueprint, jsonify, current_app

from ..services import query_service
from ..validation import DayServiceError, error_body


calendar_bp = Blueprint("calendar", __name__, url_prefix="/api/calendar")


@calendar_bp.get("")
def get_calendar_route():
    """
    Full-year calendar.

    Expired checkout holds are swept before the read. Each day carries
    dedicationText only when SOLD and holdExpiresAt only when CHECKOUT_HOLD.
    """
    try:
        return jsonify(query_service.public_calendar())
    except DayServiceError as e:
        return jsonify(error_body(e)), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load calendar")
        return jsonify({"error": "Internal server error"}), 500


@calendar_bp.get("/<day_key>")
def get_day_route(day_key: str):
    try:
        return jsonify(query_service.public_day(day_key))
    except DayServiceError as e:
        return jsonify(error_body(e)), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load calendar day")
        return jsonify({"error": "Internal server error"}), 500
