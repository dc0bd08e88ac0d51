# Overview: Payment gateway webhook endpoint.

from flask import Blueprint, request, jsonify, current_app

from ..services import reconciliation_service
from ..services.payment_gateway import SIGNATURE_HEADER
from ..validation import DayServiceError, EventProcessingError, InvalidSignatureError, error_body


webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/api/payments")


@webhooks_bp.post("/webhook")
def payment_webhook_route():
    """
    Receive a signed gateway event.

    The raw body is verified before parsing. Returns:
        200: {"received": true, "outcome": applied|duplicate|ignored}
        400: bad signature or malformed event (gateway will not retry usefully)
        500: processing failed (gateway retries)
    """
    payload = request.get_data(cache=False)
    signature = request.headers.get(SIGNATURE_HEADER)
    try:
        result = reconciliation_service.handle_webhook(payload, signature)
        return jsonify({"received": True, "outcome": result.outcome})
    except InvalidSignatureError as e:
        current_app.logger.warning("Rejected webhook: %s", e)
        return jsonify({"error": "Invalid signature"}), 400
    except EventProcessingError:
        return jsonify({"error": "Webhook handler failed"}), 500
    except DayServiceError as e:
        return jsonify(error_body(e)), e.status_code
    except Exception:
        current_app.logger.exception("Webhook failed")
        return jsonify({"error": "Internal server error"}), 500
