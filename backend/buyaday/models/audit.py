from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


ACTION_CHECKOUT_HOLD_CREATED = "CHECKOUT_HOLD_CREATED"
ACTION_CHECKOUT_HOLD_RELEASED = "CHECKOUT_HOLD_RELEASED"
ACTION_CHECKOUT_HOLD_EXPIRED = "CHECKOUT_HOLD_EXPIRED"
ACTION_PAYMENT_STARTED = "PAYMENT_STARTED"
ACTION_PAYMENT_RECEIVED = "PAYMENT_RECEIVED"
ACTION_PAYMENT_FAILED = "PAYMENT_FAILED"
ACTION_HOLD_CREATED = "HOLD_CREATED"
ACTION_HOLD_RELEASED = "HOLD_RELEASED"
ACTION_TEXT_EDIT = "TEXT_EDIT"
ACTION_REFUND_ISSUED = "REFUND_ISSUED"
ACTION_GATEWAY_REFUND_RECORDED = "GATEWAY_REFUND_RECORDED"

AUDIT_ACTIONS = (
    ACTION_CHECKOUT_HOLD_CREATED,
    ACTION_CHECKOUT_HOLD_RELEASED,
    ACTION_CHECKOUT_HOLD_EXPIRED,
    ACTION_PAYMENT_STARTED,
    ACTION_PAYMENT_RECEIVED,
    ACTION_PAYMENT_FAILED,
    ACTION_HOLD_CREATED,
    ACTION_HOLD_RELEASED,
    ACTION_TEXT_EDIT,
    ACTION_REFUND_ISSUED,
    ACTION_GATEWAY_REFUND_RECORDED,
)


class AuditLog(db.Model):
    """
    Append-only record of every change to a calendar day.

    WHY: Sales, refunds and overrides must be reconstructible after the fact.
    Entries are written in the same transaction as the change they describe.

    IMMUTABLE: Never update or delete.
    """
    __tablename__ = "audit_log"
    __table_args__ = (
        db.Index("ix_audit_log_day_created", "calendar_day_id", "created_at"),
        db.Index("ix_audit_log_action_created", "action", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    calendar_day_id = db.Column(db.Integer, db.ForeignKey("calendar_days.id"), nullable=False, index=True)

    action = db.Column(db.String(32), nullable=False)
    old_value = db.Column(db.JSON, nullable=True)
    new_value = db.Column(db.JSON, nullable=True)

    performed_by = db.Column(db.String(255), nullable=False)
    ip_address = db.Column(db.String(45), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, index=True)

    calendar_day = db.relationship("CalendarDay", backref=db.backref("audit_entries", lazy="dynamic"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "calendarDayId": self.calendar_day_id,
            "date": self.calendar_day.date_key if self.calendar_day else None,
            "action": self.action,
            "oldValue": self.old_value,
            "newValue": self.new_value,
            "performedBy": self.performed_by,
            "ipAddress": self.ip_address,
            "notes": self.notes,
            "createdAt": to_utc_z(self.created_at),
        }
