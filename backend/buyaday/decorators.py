# Overview: Request decorators and helpers for API routes.

from functools import wraps
from flask import request, jsonify, g

from .services import session_service


def client_ip() -> str | None:
    """First hop of X-Forwarded-For when behind a proxy, else the socket peer."""
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        return forwarded.split(",")[0].strip()[:45] or request.remote_addr
    return request.remote_addr


def bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1]


def require_admin(f):
    """
    Require an authenticated administrator.

    Sets g.current_admin. The admin's email is the actor identity recorded in
    audit entries for every override.

    Returns 401 if the Authorization header is missing, the token is invalid
    or expired, or the account was deactivated.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = bearer_token()
        if not token:
            return jsonify({"error": "Authentication required"}), 401

        admin = session_service.validate_session(token)
        if not admin:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_admin = admin
        return f(*args, **kwargs)

    return decorated_function


def current_actor() -> str:
    return g.current_admin.email


def json_body() -> dict:
    """Request JSON as a dict; anything else (including sendBeacon text bodies that fail to parse) is {}."""
    data = request.get_json(silent=True, force=True)
    return data if isinstance(data, dict) else {}
