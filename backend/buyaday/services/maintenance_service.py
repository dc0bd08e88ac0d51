# Overview: Periodic housekeeping (expired holds, stale sessions).

from __future__ import annotations

from datetime import timedelta

from ..extensions import db
from ..models import SessionToken
from ..time_utils import utcnow
from .calendar_service import expire_holds


def cleanup_sessions(*, retention_days: int = 30) -> int:
    """Delete session tokens that expired more than retention_days ago."""
    cutoff = utcnow() - timedelta(days=retention_days)
    deleted = db.session.query(SessionToken).filter(
        SessionToken.expires_at < cutoff
    ).delete()
    db.session.commit()
    return deleted


def run_sweep() -> dict:
    """One maintenance pass, suitable for cron or the admin endpoint."""
    return {
        "expiredHolds": expire_holds(),
        "deletedSessions": cleanup_sessions(),
    }
