# Overview: Read-side projections for the public calendar, admin views and export.

from __future__ import annotations

import csv
import io
from datetime import date

from ..extensions import db
from ..models import CalendarDay, STATES, STATE_ADMIN_HOLD, STATE_SOLD
from ..models.calendar import month_bounds
from ..time_utils import to_utc_z, utcnow
from ..validation import ValidationError, validate_month
from .audit_service import recent_entries_for_day
from .calendar_service import expire_holds, get_day
from .settings_service import get_settings, sales_status


EXPORT_DEFAULT_STATES = (STATE_SOLD, STATE_ADMIN_HOLD)

EXPORT_COLUMNS = [
    "date",
    "state",
    "dedication_text",
    "order_ref",
    "buyer_first_name",
    "buyer_last_name",
    "buyer_email",
    "buyer_phone",
    "amount_usd",
    "payment_ref",
    "paid_at",
    "contact_opt_in",
    "admin_note",
]


def _validate_state_filter(state: str | None) -> str | None:
    if state in (None, ""):
        return None
    if state not in STATES:
        raise ValidationError(f"state must be one of: {', '.join(STATES)}")
    return state


def _apply_month(query, month: str | None):
    if not month:
        return query
    year, month_num = validate_month(month)
    start, end = month_bounds(year, month_num)
    return query.filter(CalendarDay.calendar_date >= start, CalendarDay.calendar_date < end)


# =============================================================================
# PUBLIC
# =============================================================================

def public_calendar() -> dict:
    """Whole-year calendar with PII redacted. Sweeps expired holds first."""
    now = utcnow()
    expire_holds(now)

    settings = get_settings()
    year = settings.calendar_year
    days = (
        db.session.query(CalendarDay)
        .filter(
            CalendarDay.calendar_date >= date(year, 1, 1),
            CalendarDay.calendar_date <= date(year, 12, 31),
        )
        .order_by(CalendarDay.calendar_date.asc())
        .all()
    )
    return {
        "year": year,
        "salesStatus": sales_status(settings, now),
        "priceInCents": settings.price_cents,
        "premiumPrices": dict(settings.premium_prices or {}),
        "salesStartDate": to_utc_z(settings.sales_start_at),
        "salesEndDate": to_utc_z(settings.sales_end_at),
        "days": [day.to_public_dict() for day in days],
    }


def public_day(day_key) -> dict:
    expire_holds()
    return get_day(day_key).to_public_dict()


# =============================================================================
# ADMIN
# =============================================================================

def admin_list_days(*, month: str | None = None, state: str | None = None, page: int = 1, limit: int = 50) -> dict:
    expire_holds()
    query = _apply_month(db.session.query(CalendarDay), month)
    state = _validate_state_filter(state)
    if state:
        query = query.filter(CalendarDay.state == state)

    total = query.count()
    days = (
        query.order_by(CalendarDay.calendar_date.asc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "days": [day.to_dict() for day in days],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": (total + limit - 1) // limit,
        },
    }


def admin_day_detail(day_key) -> dict:
    expire_holds()
    day = get_day(day_key)
    payload = day.to_dict()
    payload["auditLog"] = [entry.to_dict() for entry in recent_entries_for_day(day.id)]
    return payload


def export_rows(*, state: str | None = None, month: str | None = None) -> list[dict]:
    """Rows for every day in the given state (default: SOLD and ADMIN_HOLD)."""
    expire_holds()
    state = _validate_state_filter(state)
    query = _apply_month(db.session.query(CalendarDay), month)
    if state:
        query = query.filter(CalendarDay.state == state)
    else:
        query = query.filter(CalendarDay.state.in_(EXPORT_DEFAULT_STATES))

    rows = []
    for day in query.order_by(CalendarDay.calendar_date.asc()):
        rows.append({
            "date": day.date_key,
            "state": day.state,
            "dedication_text": day.dedication_text or "",
            "order_ref": day.order_ref or "",
            "buyer_first_name": day.buyer_first_name or "",
            "buyer_last_name": day.buyer_last_name or "",
            "buyer_email": day.buyer_email or "",
            "buyer_phone": day.buyer_phone or "",
            "amount_usd": f"{day.amount_paid_cents / 100:.2f}" if day.amount_paid_cents is not None else "",
            "payment_ref": day.payment_ref or "",
            "paid_at": to_utc_z(day.paid_at) or "",
            "contact_opt_in": "yes" if day.contact_opt_in else "no",
            "admin_note": day.admin_note or "",
        })
    return rows


def rows_to_csv(rows: list[dict]) -> str:
    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=EXPORT_COLUMNS)
    writer.writeheader()
    writer.writerows(rows)
    return buf.getvalue()
