# Overview: Admin routes for day management, refunds, audit log and export.

# backend/buyaday/routes/admin.py
"""
Admin API Routes

All routes require a bearer session (require_admin). The admin's email is
recorded as performed_by on every audit entry these routes produce.
"""

from flask import Blueprint, request, jsonify, current_app, Response

from ..decorators import current_actor, json_body, require_admin
from ..services import audit_service, calendar_service, maintenance_service, query_service, refund_service
from ..validation import DayServiceError, coerce_int, coerce_page, error_body
from ..time_utils import utcnow


admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


def _error(e: DayServiceError):
    return jsonify(error_body(e)), e.status_code


# =============================================================================
# DAYS
# =============================================================================

@admin_bp.get("/days")
@require_admin
def list_days_route():
    """
    Query params:
    - month: YYYY-MM
    - state: AVAILABLE | CHECKOUT_HOLD | ADMIN_HOLD | SOLD
    - page, limit (limit max 200)
    """
    try:
        page, limit = coerce_page(request.args.get("page"), request.args.get("limit"))
        return jsonify(query_service.admin_list_days(
            month=request.args.get("month"),
            state=request.args.get("state"),
            page=page,
            limit=limit,
        ))
    except DayServiceError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to list days")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.get("/days/<day_key>")
@require_admin
def get_day_route(day_key: str):
    try:
        return jsonify(query_service.admin_day_detail(day_key))
    except DayServiceError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to load day")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.patch("/days/<day_key>")
@require_admin
def edit_day_route(day_key: str):
    """
    Edit the dedication text of a SOLD day.

    Request body: {"dedicationText": "...", "reason": "typo fix"}
    """
    try:
        data = json_body()
        if "dedicationText" not in data:
            return jsonify({"error": "dedicationText is required"}), 400
        day = calendar_service.edit_dedication_text(
            day_key,
            data.get("dedicationText"),
            actor=current_actor(),
            reason=data.get("reason"),
        )
        return jsonify({"day": day.to_dict()})
    except DayServiceError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to edit day")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# ADMIN HOLDS
# =============================================================================

@admin_bp.post("/holds")
@require_admin
def create_admin_hold_route():
    """Request body: {"date": "2027-12-25", "note": "Reserved for sponsor"}"""
    try:
        data = json_body()
        if not data.get("date"):
            return jsonify({"error": "date is required"}), 400
        day = calendar_service.create_admin_hold(data["date"], note=data.get("note"), actor=current_actor())
        return jsonify({"day": day.to_dict()}), 201
    except DayServiceError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to create admin hold")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.delete("/holds")
@require_admin
def release_admin_hold_route():
    """Request body: {"date": "2027-12-25"}"""
    try:
        data = json_body()
        if not data.get("date"):
            return jsonify({"error": "date is required"}), 400
        day = calendar_service.release_admin_hold(data["date"], actor=current_actor())
        return jsonify({"day": day.to_dict()})
    except DayServiceError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to release admin hold")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# REFUNDS
# =============================================================================

@admin_bp.post("/refund")
@require_admin
def refund_route():
    """
    Request body: {"date": "2027-03-14", "restoreDate": true, "reason": "Customer request"}

    Returns:
        200: refund issued, day released or held
        400: validation error or no payment on record
        409: day not sold
        502: gateway refused or unreachable (no local change)
    """
    try:
        data = json_body()
        if not data.get("date"):
            return jsonify({"error": "date is required"}), 400
        result = refund_service.refund_day(
            data["date"],
            restore_to_available=data.get("restoreDate", True),
            reason=data.get("reason"),
            actor=current_actor(),
        )
        return jsonify(result.to_dict())
    except DayServiceError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to refund")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# AUDIT LOG & EXPORT
# =============================================================================

@admin_bp.get("/audit-log")
@require_admin
def audit_log_route():
    """
    Query params:
    - dayId: calendar day id
    - action: audit action tag
    - page, limit (newest first)
    """
    try:
        page, limit = coerce_page(request.args.get("page"), request.args.get("limit"))
        day_id = request.args.get("dayId")
        entries, total = audit_service.query_audit_log(
            calendar_day_id=coerce_int("dayId", day_id) if day_id else None,
            action=request.args.get("action") or None,
            page=page,
            limit=limit,
        )
        return jsonify({
            "entries": [entry.to_dict() for entry in entries],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": (total + limit - 1) // limit,
            },
        })
    except DayServiceError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to load audit log")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.get("/export")
@require_admin
def export_route():
    """CSV of SOLD and ADMIN_HOLD days (or ?state=), optionally ?month=YYYY-MM."""
    try:
        rows = query_service.export_rows(
            state=request.args.get("state"),
            month=request.args.get("month"),
        )
        filename = f"calendar-export-{utcnow().date().isoformat()}.csv"
        return Response(
            query_service.rows_to_csv(rows),
            mimetype="text/csv",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )
    except DayServiceError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to export")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.post("/maintenance/expire-holds")
@require_admin
def sweep_route():
    try:
        return jsonify(maintenance_service.run_sweep())
    except Exception:
        current_app.logger.exception("Maintenance sweep failed")
        return jsonify({"error": "Internal server error"}), 500
