# Overview: Customer checkout routes: hold, release, payment start, order status.

# backend/buyaday/routes/checkout.py
"""
Checkout API Routes

FLOW:
1. POST /hold            claim a day for 10 minutes, receive holdToken
2. POST /payment-intent  submit buyer details, receive gateway client secret
3. gateway webhook       finalizes the sale (see webhooks.py)
4. GET /orders/<ref>     poll until confirmed

Customers may give a hold back with DELETE /hold or POST /hold/release (the
latter works with navigator.sendBeacon on page unload).
"""

from flask import Blueprint, jsonify, current_app

from ..decorators import client_ip, json_body
from ..services import calendar_service, checkout_service
from ..validation import DayServiceError, error_body


checkout_bp = Blueprint("checkout", __name__, url_prefix="/api/checkout")


@checkout_bp.post("/hold")
def create_hold_route():
    """
    Request body: {"date": "2027-03-14"}

    Returns:
        200: {"date", "holdToken", "holdExpiresAt"}
        400: malformed date
        403: sales window closed
        404: unknown date
        409: date not available ({"state": observed state})
    """
    try:
        data = json_body()
        if not data.get("date"):
            return jsonify({"error": "date is required"}), 400
        grant = calendar_service.create_hold(data["date"], ip_address=client_ip())
        return jsonify(grant.to_dict())
    except DayServiceError as e:
        return jsonify(error_body(e)), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create hold")
        return jsonify({"error": "Internal server error"}), 500


def _release():
    try:
        data = json_body()
        if not data.get("date"):
            return jsonify({"error": "date is required"}), 400
        calendar_service.release_hold(data["date"], data.get("holdToken"), ip_address=client_ip())
        return jsonify({"ok": True})
    except DayServiceError as e:
        return jsonify(error_body(e)), e.status_code
    except Exception:
        current_app.logger.exception("Failed to release hold")
        return jsonify({"error": "Internal server error"}), 500


@checkout_bp.delete("/hold")
def release_hold_route():
    """Idempotent: always {"ok": true} for a well-formed request."""
    return _release()


@checkout_bp.post("/hold/release")
def release_hold_beacon_route():
    return _release()


@checkout_bp.post("/payment-intent")
def create_payment_intent_route():
    """
    Request body:
    {
        "date": "2027-03-14",
        "holdToken": "...",
        "firstName": "Ada", "lastName": "Lovelace",
        "email": "ada@example.com", "phone": "555-0100",
        "billingAddress": {"line1": "...", "city": "...", "state": "CA", "postal_code": "94000", "country": "US"},
        "contactOptIn": false,
        "dedicationText": "Happy birthday Ada"
    }

    Returns:
        200: {"date", "paymentIntentId", "clientSecret", "amountCents"}
        400: validation error
        403: wrong hold token
        409: date not on hold
        410: hold expired
        502: gateway failure
    """
    try:
        data = json_body()
        if not data.get("date"):
            return jsonify({"error": "date is required"}), 400
        session = checkout_service.begin_payment(
            data["date"],
            data.get("holdToken"),
            data,
            ip_address=client_ip(),
        )
        return jsonify(session.to_dict())
    except DayServiceError as e:
        return jsonify(error_body(e)), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create payment intent")
        return jsonify({"error": "Internal server error"}), 500


@checkout_bp.get("/orders/<payment_ref>")
def order_status_route(payment_ref: str):
    try:
        return jsonify(checkout_service.order_status(payment_ref))
    except DayServiceError as e:
        return jsonify(error_body(e)), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load order status")
        return jsonify({"error": "Internal server error"}), 500
