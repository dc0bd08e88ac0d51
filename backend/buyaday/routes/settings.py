# Overview: Admin routes for the sales settings singleton.

from flask import Blueprint, jsonify, current_app

from ..decorators import current_actor, json_body, require_admin
from ..services import settings_service
from ..validation import DayServiceError, error_body


settings_bp = Blueprint("settings", __name__, url_prefix="/api/admin/settings")


@settings_bp.get("")
@require_admin
def get_settings_route():
    try:
        settings = settings_service.get_settings()
        return jsonify({"settings": settings.to_dict()})
    except Exception:
        current_app.logger.exception("Failed to load settings")
        return jsonify({"error": "Internal server error"}), 500


@settings_bp.patch("")
@require_admin
def update_settings_route():
    """
    Partial update. Accepted fields: priceInCents, premiumPrices,
    salesStartDate, salesEndDate, textRequired, emojisAllowed,
    notificationEmail. Unknown fields are rejected.
    """
    try:
        settings = settings_service.update_settings(json_body(), actor=current_actor())
        return jsonify({"settings": settings.to_dict()})
    except DayServiceError as e:
        return jsonify(error_body(e)), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update settings")
        return jsonify({"error": "Internal server error"}), 500
