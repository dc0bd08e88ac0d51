# Overview: Service-layer operations for the audit trail; append and query only.

from __future__ import annotations

from ..extensions import db
from ..models import AuditLog, AUDIT_ACTIONS, CalendarDay
from ..time_utils import utcnow
from ..validation import ValidationError
"""
Audit Trail Invariants

- Append-only. Nothing here (or anywhere else) updates or deletes AuditLog rows.
- Entries are added to the caller's session and committed with the change
  they describe; a rolled-back change leaves no entry behind.
- State-changing entries carry {"state": ...} in both old_value and new_value.
"""


def append_audit_entry(
    *,
    day: CalendarDay,
    action: str,
    performed_by: str,
    old_value: dict,
    new_value: dict,
    ip_address: str | None = None,
    notes: str | None = None,
) -> AuditLog:
    """Stage one audit entry in the current transaction (flush, no commit)."""
    if action not in AUDIT_ACTIONS:
        raise ValueError(f"Unknown audit action: {action}")
    for label, value in (("old_value", old_value), ("new_value", new_value)):
        if not isinstance(value, dict) or "state" not in value:
            raise ValueError(f"{action} audit entry needs {label} with a state")

    entry = AuditLog(
        calendar_day_id=day.id,
        action=action,
        old_value=old_value,
        new_value=new_value,
        performed_by=performed_by,
        ip_address=ip_address,
        notes=notes,
        created_at=utcnow(),
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def query_audit_log(
    *,
    calendar_day_id: int | None = None,
    action: str | None = None,
    page: int = 1,
    limit: int = 50,
) -> tuple[list[AuditLog], int]:
    """Newest-first page of audit entries plus the total matching count."""
    if action is not None and action not in AUDIT_ACTIONS:
        raise ValidationError(f"Unknown action filter: {action}")

    query = db.session.query(AuditLog)
    if calendar_day_id is not None:
        query = query.filter(AuditLog.calendar_day_id == calendar_day_id)
    if action is not None:
        query = query.filter(AuditLog.action == action)

    total = query.count()
    entries = (
        query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return entries, total


def recent_entries_for_day(calendar_day_id: int, *, limit: int = 20) -> list[AuditLog]:
    return (
        db.session.query(AuditLog)
        .filter(AuditLog.calendar_day_id == calendar_day_id)
        .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .limit(limit)
        .all()
    )
