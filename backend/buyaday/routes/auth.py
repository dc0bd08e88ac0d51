# Overview: Admin login/logout routes.

from flask import Blueprint, request, jsonify, current_app, g

from ..decorators import bearer_token, client_ip, require_admin
from ..services import auth_service
from ..services import session_service


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate an admin and create a session token.

    Token must be included as "Authorization: Bearer <token>" on admin routes.
    """
    try:
        data = request.get_json(silent=True) or {}
        email = data.get("email")
        password = data.get("password")

        if not all([email, password]):
            return jsonify({"error": "email and password required"}), 400

        admin = auth_service.authenticate(email, password)
        if not admin:
            current_app.logger.warning("Failed admin login for %s from %s", email, client_ip())
            return jsonify({"error": "Invalid credentials"}), 401

        session, token = session_service.create_session(
            admin.id,
            user_agent=request.headers.get("User-Agent"),
            ip_address=client_ip(),
        )
        return jsonify({
            "admin": admin.to_dict(),
            "token": token,
            "expires_at": session.expires_at.isoformat() + "Z",
        })
    except Exception:
        current_app.logger.exception("Login failed")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/logout")
@require_admin
def logout_route():
    session_service.revoke_session(bearer_token())
    return jsonify({"ok": True})


@auth_bp.get("/me")
@require_admin
def me_route():
    return jsonify({"admin": g.current_admin.to_dict()})
