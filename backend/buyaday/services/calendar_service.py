# Overview: Reservation state machine for calendar days (holds, admin holds, text edits).

"""
Calendar Reservation Service

WHY: A day can be sold exactly once. Customers claim a day with a short
checkout hold while they pay; administrators can take days off sale or fix
dedication text after a sale.

DESIGN PRINCIPLES:
- Every mutation runs inside run_with_retry: lock row, validate state,
  transition through the model, append one audit entry, commit.
- Expired checkout holds are treated as AVAILABLE by writers and are swept
  lazily by expire_holds() before every read.
- The payment webhook (reconciliation_service) is the only path to SOLD.
"""

from __future__ import annotations

import hmac
import logging
import secrets
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from flask import current_app

from ..extensions import db
from ..models import CalendarDay, STATE_AVAILABLE, STATE_CHECKOUT_HOLD, STATE_ADMIN_HOLD, STATE_SOLD
from ..models.audit import (
    ACTION_CHECKOUT_HOLD_CREATED,
    ACTION_CHECKOUT_HOLD_RELEASED,
    ACTION_CHECKOUT_HOLD_EXPIRED,
    ACTION_HOLD_CREATED,
    ACTION_HOLD_RELEASED,
    ACTION_TEXT_EDIT,
)
from ..time_utils import utcnow, to_utc_z
from ..validation import (
    ConflictError,
    NotFoundError,
    SalesClosedError,
    ValidationError,
    validate_calendar_date,
    validate_dedication_text,
)
from .audit_service import append_audit_entry
from .concurrency import lock_for_update, run_with_retry
from .settings_service import get_settings, sales_status, SALES_OPEN


logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"
MAX_ADMIN_NOTE_LENGTH = 500


@dataclass(frozen=True)
class HoldGrant:
    date: str
    hold_token: str
    hold_expires_at: datetime

    def to_dict(self) -> dict:
        return {
            "date": self.date,
            "holdToken": self.hold_token,
            "holdExpiresAt": to_utc_z(self.hold_expires_at),
        }


def customer_actor(ip_address: str | None) -> str:
    return f"customer-ip:{ip_address or 'unknown'}"


def generate_hold_token() -> str:
    return secrets.token_hex(32)


def hold_duration() -> timedelta:
    return timedelta(minutes=current_app.config["HOLD_DURATION_MINUTES"])


# =============================================================================
# LOOKUPS
# =============================================================================

def parse_day_key(day_key) -> date:
    return validate_calendar_date(day_key, get_settings().calendar_year)


def get_day(day_key) -> CalendarDay:
    """Unlocked read by natural key. Raises NotFoundError."""
    day = db.session.query(CalendarDay).filter_by(calendar_date=parse_day_key(day_key)).first()
    if not day:
        raise NotFoundError(f"Date {day_key} not found")
    return day


def lock_day(day_key) -> CalendarDay:
    """Locked re-read inside a transaction. Raises NotFoundError."""
    day = lock_for_update(
        db.session.query(CalendarDay).filter_by(calendar_date=parse_day_key(day_key))
    ).first()
    if not day:
        raise NotFoundError(f"Date {day_key} not found")
    return day


# =============================================================================
# CHECKOUT HOLDS
# =============================================================================

def create_hold(day_key, *, ip_address: str | None = None, now: datetime | None = None) -> HoldGrant:
    """
    Claim a day for checkout.

    Allowed from AVAILABLE, or from a CHECKOUT_HOLD whose expiry has passed.
    Anything else raises ConflictError carrying the observed state.
    """
    def _op() -> HoldGrant:
        current = now or utcnow()
        settings = get_settings()
        calendar_date = validate_calendar_date(day_key, settings.calendar_year)

        status = sales_status(settings, current)
        if status != SALES_OPEN:
            raise SalesClosedError("Sales are not open", sales_status=status)

        day = lock_for_update(
            db.session.query(CalendarDay).filter_by(calendar_date=calendar_date)
        ).first()
        if not day:
            raise NotFoundError(f"Date {day_key} not found")

        old_value = day.snapshot()
        replaced_expired = day.hold_has_lapsed(current)
        if replaced_expired:
            day.to_available()
        elif day.state != STATE_AVAILABLE:
            raise ConflictError("This date is no longer available", state=day.state)

        token = generate_hold_token()
        expires_at = current + hold_duration()
        day.to_checkout_hold(token, expires_at)

        append_audit_entry(
            day=day,
            action=ACTION_CHECKOUT_HOLD_CREATED,
            old_value=old_value,
            new_value=day.snapshot(),
            performed_by=customer_actor(ip_address),
            ip_address=ip_address,
            notes="Replaced expired checkout hold" if replaced_expired else None,
        )
        db.session.commit()
        return HoldGrant(date=day.date_key, hold_token=token, hold_expires_at=expires_at)

    return run_with_retry(_op)


def release_hold(day_key, hold_token: str | None, *, ip_address: str | None = None) -> bool:
    """
    Give a checkout hold back. Idempotent.

    Returns True when a hold was released; unknown day, wrong state or a token
    mismatch are silent no-ops.
    """
    calendar_date = parse_day_key(day_key)
    if not hold_token:
        return False

    def _op() -> bool:
        day = lock_for_update(
            db.session.query(CalendarDay).filter_by(calendar_date=calendar_date)
        ).first()
        if not day or day.state != STATE_CHECKOUT_HOLD or not day.hold_token:
            db.session.rollback()
            return False
        if not hmac.compare_digest(day.hold_token, hold_token):
            db.session.rollback()
            return False

        old_value = day.snapshot()
        day.to_available()
        append_audit_entry(
            day=day,
            action=ACTION_CHECKOUT_HOLD_RELEASED,
            old_value=old_value,
            new_value=day.snapshot(),
            performed_by=customer_actor(ip_address),
            ip_address=ip_address,
            notes="Hold released by customer",
        )
        db.session.commit()
        return True

    return run_with_retry(_op)


def expire_holds(as_of: datetime | None = None) -> int:
    """
    Revert every CHECKOUT_HOLD whose expiry is before as_of.

    Each day is expired in its own transaction. A hold that was finalized or
    replaced concurrently is skipped on re-check.
    """
    as_of = as_of or utcnow()
    candidate_ids = [
        row.id
        for row in db.session.query(CalendarDay.id).filter(
            CalendarDay.state == STATE_CHECKOUT_HOLD,
            CalendarDay.hold_expires_at < as_of,
        )
    ]
    db.session.rollback()

    expired = 0
    for day_id in candidate_ids:
        def _op(day_id=day_id) -> bool:
            day = lock_for_update(db.session.query(CalendarDay).filter_by(id=day_id)).first()
            if (
                not day
                or day.state != STATE_CHECKOUT_HOLD
                or day.hold_expires_at is None
                or day.hold_expires_at >= as_of
            ):
                db.session.rollback()
                return False

            old_value = day.snapshot()
            day.to_available()
            append_audit_entry(
                day=day,
                action=ACTION_CHECKOUT_HOLD_EXPIRED,
                old_value=old_value,
                new_value=day.snapshot(),
                performed_by=SYSTEM_ACTOR,
                notes="Checkout hold expired automatically",
            )
            db.session.commit()
            return True

        if run_with_retry(_op):
            expired += 1

    if expired:
        logger.info("Expired %d checkout hold(s)", expired)
    return expired


def reset_checkout_holds(*, actor: str = SYSTEM_ACTOR) -> int:
    """Operator tool: release every checkout hold regardless of expiry."""
    candidate_ids = [
        row.id
        for row in db.session.query(CalendarDay.id).filter(CalendarDay.state == STATE_CHECKOUT_HOLD)
    ]
    db.session.rollback()

    released = 0
    for day_id in candidate_ids:
        def _op(day_id=day_id) -> bool:
            day = lock_for_update(db.session.query(CalendarDay).filter_by(id=day_id)).first()
            if not day or day.state != STATE_CHECKOUT_HOLD:
                db.session.rollback()
                return False
            old_value = day.snapshot()
            day.to_available()
            append_audit_entry(
                day=day,
                action=ACTION_CHECKOUT_HOLD_RELEASED,
                old_value=old_value,
                new_value=day.snapshot(),
                performed_by=actor,
                notes="Checkout hold reset by operator",
            )
            db.session.commit()
            return True

        if run_with_retry(_op):
            released += 1
    return released


# =============================================================================
# ADMIN HOLDS
# =============================================================================

def _clean_note(note) -> str | None:
    if note is None:
        return None
    if not isinstance(note, str):
        raise ValidationError("note must be a string")
    note = note.strip()
    if len(note) > MAX_ADMIN_NOTE_LENGTH:
        raise ValidationError(f"note must be at most {MAX_ADMIN_NOTE_LENGTH} characters")
    return note or None


def create_admin_hold(day_key, *, note=None, actor: str, now: datetime | None = None) -> CalendarDay:
    """Take an AVAILABLE day off sale. A lapsed checkout hold counts as AVAILABLE."""
    note = _clean_note(note)

    def _op() -> CalendarDay:
        current = now or utcnow()
        day = lock_day(day_key)
        old_value = day.snapshot()

        if day.hold_has_lapsed(current):
            day.to_available()
        elif day.state == STATE_SOLD:
            raise ConflictError("Cannot hold a sold date", state=day.state)
        elif day.state == STATE_ADMIN_HOLD:
            raise ConflictError("Date is already on admin hold", state=day.state)
        elif day.state != STATE_AVAILABLE:
            raise ConflictError("Date is in checkout", state=day.state)

        day.to_admin_hold(note)
        append_audit_entry(
            day=day,
            action=ACTION_HOLD_CREATED,
            old_value=old_value,
            new_value=day.snapshot(),
            performed_by=actor,
            notes=note,
        )
        db.session.commit()
        return day

    return run_with_retry(_op)


def release_admin_hold(day_key, *, actor: str) -> CalendarDay:
    def _op() -> CalendarDay:
        day = lock_day(day_key)
        if day.state != STATE_ADMIN_HOLD:
            raise ConflictError("Date is not on admin hold", state=day.state)

        old_value = day.snapshot()
        day.to_available()
        append_audit_entry(
            day=day,
            action=ACTION_HOLD_RELEASED,
            old_value=old_value,
            new_value=day.snapshot(),
            performed_by=actor,
        )
        db.session.commit()
        return day

    return run_with_retry(_op)


# =============================================================================
# DEDICATION TEXT
# =============================================================================

def edit_dedication_text(day_key, text, *, actor: str, reason: str | None = None) -> CalendarDay:
    """Replace the dedication on a SOLD day. Admins may clear it."""
    def _op() -> CalendarDay:
        settings = get_settings()
        cleaned = validate_dedication_text(text, emojis_allowed=settings.emojis_allowed, required=False)

        day = lock_day(day_key)
        if day.state != STATE_SOLD:
            raise ConflictError("Can only edit text on sold dates", state=day.state)

        old_text = day.dedication_text
        day.dedication_text = cleaned
        append_audit_entry(
            day=day,
            action=ACTION_TEXT_EDIT,
            old_value={"state": day.state, "dedicationText": old_text},
            new_value={"state": day.state, "dedicationText": cleaned},
            performed_by=actor,
            notes=reason or "Admin edited dedication text",
        )
        db.session.commit()
        return day

    return run_with_retry(_op)


# =============================================================================
# PROVISIONING
# =============================================================================

def seed_calendar_days(calendar_year: int) -> int:
    """Create one AVAILABLE row per day of the year. Idempotent."""
    existing = {
        row.calendar_date
        for row in db.session.query(CalendarDay.calendar_date).filter(
            CalendarDay.calendar_date >= date(calendar_year, 1, 1),
            CalendarDay.calendar_date <= date(calendar_year, 12, 31),
        )
    }

    created = 0
    current = date(calendar_year, 1, 1)
    while current.year == calendar_year:
        if current not in existing:
            db.session.add(CalendarDay(calendar_date=current, state=STATE_AVAILABLE))
            created += 1
        current += timedelta(days=1)

    db.session.commit()
    return created
