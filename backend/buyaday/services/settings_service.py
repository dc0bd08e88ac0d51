from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any

from flask import current_app

from ..extensions import db
from ..models import SalesSettings, SETTINGS_ROW_ID
from ..time_utils import parse_iso_datetime, parse_iso_date, utcnow
from ..validation import ValidationError, EMAIL_RE, coerce_bool, coerce_int
from .concurrency import run_with_retry


logger = logging.getLogger(__name__)

MIN_PRICE_CENTS = 100
MAX_PRICE_CENTS = 1_000_000

SALES_OPEN = "open"
SALES_NOT_STARTED = "not_started"
SALES_ENDED = "ended"

# Client field name -> model attribute
PATCHABLE_FIELDS = {
    "priceInCents": "price_cents",
    "premiumPrices": "premium_prices",
    "salesStartDate": "sales_start_at",
    "salesEndDate": "sales_end_at",
    "textRequired": "text_required",
    "emojisAllowed": "emojis_allowed",
    "notificationEmail": "notification_email",
}


def _new_settings_row() -> SalesSettings:
    return SalesSettings(
        id=SETTINGS_ROW_ID,
        calendar_year=current_app.config["DEFAULT_CALENDAR_YEAR"],
        price_cents=current_app.config["DEFAULT_PRICE_CENTS"],
        premium_prices={},
        text_required=False,
        emojis_allowed=False,
    )


def get_settings() -> SalesSettings:
    """
    Return the singleton, staging it in the current transaction if missing.

    Does not commit: callers inside a locked transaction keep their atomicity.
    """
    settings = db.session.get(SalesSettings, SETTINGS_ROW_ID)
    if settings is None:
        settings = _new_settings_row()
        db.session.add(settings)
        db.session.flush()
    return settings


def ensure_settings() -> SalesSettings:
    """Provisioning entry point: create and commit the singleton if missing."""
    settings = get_settings()
    db.session.commit()
    return settings


def sales_status(settings: SalesSettings, now: datetime | None = None) -> str:
    now = now or utcnow()
    if settings.sales_start_at and now < settings.sales_start_at:
        return SALES_NOT_STARTED
    if settings.sales_end_at and now > settings.sales_end_at:
        return SALES_ENDED
    return SALES_OPEN


def price_for_date(settings: SalesSettings, day: date) -> int:
    premium = (settings.premium_prices or {}).get(day.isoformat())
    if premium is not None:
        return int(premium)
    return settings.price_cents


# =============================================================================
# VALIDATION
# =============================================================================

def _validate_price(name: str, value: Any) -> int:
    cents = coerce_int(name, value)
    if cents < MIN_PRICE_CENTS or cents > MAX_PRICE_CENTS:
        raise ValidationError(f"{name} must be between {MIN_PRICE_CENTS} and {MAX_PRICE_CENTS} cents")
    return cents


def _validate_datetime(name: str, value: Any) -> datetime | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{name} must be an ISO-8601 datetime or null")
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{name} must be an ISO-8601 datetime or null")


def _validate_premium_prices(value: Any, calendar_year: int) -> dict[str, int]:
    if not isinstance(value, dict):
        raise ValidationError("premiumPrices must be an object of date -> cents")
    cleaned = {}
    for key, cents in value.items():
        parsed = parse_iso_date(key)
        if parsed is None or parsed.year != calendar_year:
            raise ValidationError(f"premiumPrices key {key!r} must be a date in {calendar_year}")
        cleaned[parsed.isoformat()] = _validate_price(f"premiumPrices[{key}]", cents)
    return cleaned


def validate_settings_patch(patch: Any, settings: SalesSettings) -> dict[str, Any]:
    """Return model attribute -> value for a client patch, or raise ValidationError."""
    if not isinstance(patch, dict) or not patch:
        raise ValidationError("Request body must be a non-empty JSON object")

    unknown = sorted(set(patch) - set(PATCHABLE_FIELDS))
    if unknown:
        raise ValidationError(f"Unknown settings fields: {', '.join(unknown)}")

    changes: dict[str, Any] = {}
    for field_name, value in patch.items():
        attr = PATCHABLE_FIELDS[field_name]
        if field_name == "priceInCents":
            changes[attr] = _validate_price(field_name, value)
        elif field_name == "premiumPrices":
            changes[attr] = _validate_premium_prices(value, settings.calendar_year)
        elif field_name in ("salesStartDate", "salesEndDate"):
            changes[attr] = _validate_datetime(field_name, value)
        elif field_name in ("textRequired", "emojisAllowed"):
            changes[attr] = coerce_bool(field_name, value)
        elif field_name == "notificationEmail":
            if value is not None and (not isinstance(value, str) or not EMAIL_RE.match(value.strip())):
                raise ValidationError("notificationEmail must be a valid email address or null")
            changes[attr] = value.strip().lower() if value else None

    start = changes.get("sales_start_at", settings.sales_start_at)
    end = changes.get("sales_end_at", settings.sales_end_at)
    if start and end and start >= end:
        raise ValidationError("salesStartDate must be before salesEndDate")

    return changes


def update_settings(patch: Any, *, actor: str) -> SalesSettings:
    """Validate and apply an admin patch. Records who changed it and when."""
    def _op() -> SalesSettings:
        settings = get_settings()
        changes = validate_settings_patch(patch, settings)
        for attr, value in changes.items():
            setattr(settings, attr, value)
        settings.updated_by = actor
        settings.updated_at = utcnow()
        db.session.commit()
        logger.info("Settings updated by %s: %s", actor, ", ".join(sorted(changes)))
        return settings

    return run_with_retry(_op)
