# Overview: Checkout step between hold and payment: buyer details and payment intent.

from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from ..extensions import db
from ..models import CalendarDay, STATE_CHECKOUT_HOLD, STATE_SOLD
from ..models.audit import ACTION_PAYMENT_STARTED
from ..time_utils import utcnow
from ..validation import (
    BuyerInfo,
    ConflictError,
    HoldExpiredError,
    InvalidHoldTokenError,
    NotFoundError,
    ValidationError,
    validate_buyer_info,
)
from .audit_service import append_audit_entry
from .calendar_service import customer_actor, get_day, lock_day
from .concurrency import run_with_retry
from .payment_gateway import get_gateway
from .settings_service import get_settings, price_for_date


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckoutSession:
    date: str
    payment_ref: str
    client_secret: str | None
    amount_cents: int

    def to_dict(self) -> dict:
        return {
            "date": self.date,
            "paymentIntentId": self.payment_ref,
            "clientSecret": self.client_secret,
            "amountCents": self.amount_cents,
        }


def _check_hold(day: CalendarDay, hold_token: str, now: datetime) -> None:
    if day.state != STATE_CHECKOUT_HOLD:
        raise ConflictError("Date is not on hold", state=day.state)
    if not day.hold_token or not hmac.compare_digest(day.hold_token, hold_token):
        raise InvalidHoldTokenError("Invalid hold token")
    if not day.hold_is_live(now):
        raise HoldExpiredError("Hold has expired. Please select the date again.")


def _apply_buyer(day: CalendarDay, buyer: BuyerInfo) -> None:
    day.buyer_first_name = buyer.first_name
    day.buyer_last_name = buyer.last_name
    day.buyer_email = buyer.email
    day.buyer_phone = buyer.phone
    day.billing_address = buyer.billing_address.to_dict()
    day.contact_opt_in = buyer.contact_opt_in
    day.dedication_text = buyer.dedication_text


def begin_payment(
    day_key,
    hold_token: Any,
    payload: Any,
    *,
    ip_address: str | None = None,
    now: datetime | None = None,
) -> CheckoutSession:
    """
    Validate buyer details against a live hold and open a gateway payment.

    The gateway call happens outside any DB transaction; its idempotency key
    is derived from the hold so a retried submit reuses the same intent.
    """
    if not isinstance(hold_token, str) or not hold_token:
        raise ValidationError("holdToken is required")

    current = now or utcnow()
    settings = get_settings()
    buyer = validate_buyer_info(
        payload,
        emojis_allowed=settings.emojis_allowed,
        text_required=settings.text_required,
    )

    day = get_day(day_key)
    _check_hold(day, hold_token, current)
    amount_cents = price_for_date(settings, day.calendar_date)
    day_key = day.date_key
    metadata = {
        "day_key": day_key,
        "day_id": str(day.id),
        "hold_token": hold_token,
        **buyer.to_metadata(),
    }
    db.session.rollback()

    intent = get_gateway().create_payment_intent(
        amount_cents=amount_cents,
        metadata=metadata,
        idempotency_key=f"pi-{day_key}-{hold_token}",
        receipt_email=buyer.email,
        description=f"Calendar day {day_key}",
    )

    def _op() -> CheckoutSession:
        locked = lock_day(day_key)
        _check_hold(locked, hold_token, now or utcnow())

        old_value = locked.snapshot()
        locked.payment_ref = intent.payment_ref
        _apply_buyer(locked, buyer)
        append_audit_entry(
            day=locked,
            action=ACTION_PAYMENT_STARTED,
            old_value=old_value,
            new_value=locked.snapshot(),
            performed_by=customer_actor(ip_address),
            ip_address=ip_address,
            notes=f"Payment intent {intent.payment_ref} created",
        )
        db.session.commit()
        return CheckoutSession(
            date=day_key,
            payment_ref=intent.payment_ref,
            client_secret=intent.client_secret,
            amount_cents=intent.amount,
        )

    session = run_with_retry(_op)
    logger.info("Payment started for %s (%s)", day_key, intent.payment_ref)
    return session


def order_status(payment_ref: str) -> dict:
    """Polling read for the confirmation page. Exposes no buyer PII."""
    day = db.session.query(CalendarDay).filter_by(payment_ref=payment_ref).first()
    if not day:
        raise NotFoundError("Order not found")
    if day.state != STATE_SOLD:
        return {"date": day.date_key, "state": day.state, "confirmed": False}
    return {
        "date": day.date_key,
        "state": day.state,
        "confirmed": True,
        "orderRef": day.order_ref,
        "dedicationText": day.dedication_text,
        "amountPaidCents": day.amount_paid_cents,
    }
