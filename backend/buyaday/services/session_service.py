# Overview: Admin bearer session tokens.

"""
Admin sessions.

WHY: Holds, refunds and text edits are attributed to whoever holds the bearer
token, so a token must stop working once it is stale or its admin is gone.

Only the SHA-256 digest of a token is stored. A session lapses 12 hours after
login or after 2 idle hours, whichever comes first.
"""

import secrets
import hashlib
from datetime import timedelta
from ..extensions import db
from ..models import AdminUser, SessionToken
from ..time_utils import utcnow


SESSION_ABSOLUTE_TIMEOUT = timedelta(hours=12)
SESSION_IDLE_TIMEOUT = timedelta(hours=2)


def generate_token() -> str:
    """64-character hex string (32 bytes of entropy). Never stored."""
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    """SHA-256 hex digest; tokens carry 256 bits of entropy so no salt or work factor."""
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def create_session(
    admin_id: int,
    user_agent: str | None = None,
    ip_address: str | None = None
) -> tuple[SessionToken, str]:
    """
    Create new session token for an admin.

    Returns (session_record, plaintext_token).
    """
    plaintext_token = generate_token()
    now = utcnow()

    session = SessionToken(
        admin_id=admin_id,
        token_hash=hash_token(plaintext_token),
        created_at=now,
        last_used_at=now,
        expires_at=now + SESSION_ABSOLUTE_TIMEOUT,
        user_agent=(user_agent or "")[:512] or None,
        ip_address=ip_address,
        is_revoked=False
    )

    db.session.add(session)
    db.session.commit()

    return session, plaintext_token


def _revoke(session: SessionToken, reason: str) -> None:
    session.is_revoked = True
    session.revoked_at = utcnow()
    session.revoked_reason = reason


def validate_session(token: str) -> AdminUser | None:
    """
    Return the admin for a valid token, or None if the token is unknown,
    expired, idle too long, revoked, or the admin was deactivated.

    Updates last_used_at on success.
    """
    now = utcnow()
    session = _active_session(token)

    if not session:
        return None

    if session.expires_at < now:
        return None

    if now - session.last_used_at > SESSION_IDLE_TIMEOUT:
        _revoke(session, "Idle timeout")
        db.session.commit()
        return None

    admin = session.admin
    if not admin or not admin.is_active:
        _revoke(session, "Admin account deactivated")
        db.session.commit()
        return None

    session.last_used_at = now
    db.session.commit()
    return admin


def _active_session(token: str) -> SessionToken | None:
    return (
        db.session.query(SessionToken)
        .filter(SessionToken.token_hash == hash_token(token), SessionToken.is_revoked.is_(False))
        .first()
    )


def revoke_session(token: str, reason: str = "Admin logout") -> bool:
    """Revoke the session behind a token. False when no live session matches."""
    session = _active_session(token)

    if not session:
        return False

    _revoke(session, reason)
    db.session.commit()
    return True


def revoke_all_admin_sessions(admin_id: int, reason: str = "Password reset") -> int:
    sessions = db.session.query(SessionToken).filter_by(
        admin_id=admin_id,
        is_revoked=False
    ).all()

    for session in sessions:
        _revoke(session, reason)

    db.session.commit()
    return len(sessions)
