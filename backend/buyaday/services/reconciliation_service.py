# Overview: Applies authenticated payment gateway events to calendar days.

"""
Payment Reconciliation

WHY: The gateway's webhook is the only authority that money moved, so it is
the only path from CHECKOUT_HOLD to SOLD. Gateways deliver at least once and
out of order; every handler here is safe to run repeatedly.

IDEMPOTENCY:
- payment succeeded: a day already SOLD with this payment ref is a no-op.
  A lapsed checkout keeps its payment ref, so its late success still sells
  the day. A day carrying a different payment ref is left alone (logged).
- payment failed: only reverts a CHECKOUT_HOLD that belongs to this payment.
- charge refunded: informational audit entry, no state change.

FAILURES: verification errors propagate as InvalidSignatureError. Anything
raised while applying a verified event is logged and re-raised as
EventProcessingError so the gateway retries delivery.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from flask import current_app
from sqlalchemy import or_

from ..extensions import db
from ..models import CalendarDay, STATE_CHECKOUT_HOLD, STATE_SOLD
from ..models.audit import (
    ACTION_GATEWAY_REFUND_RECORDED,
    ACTION_PAYMENT_FAILED,
    ACTION_PAYMENT_RECEIVED,
)
from ..time_utils import parse_iso_date, utcnow
from ..validation import EventProcessingError, GatewayMetadata
from .audit_service import append_audit_entry
from .concurrency import lock_for_update, run_with_retry
from .notification_service import OrderReceipt
from .order_service import next_order_ref
from .payment_gateway import (
    EVENT_CHARGE_REFUNDED,
    EVENT_PAYMENT_FAILED,
    EVENT_PAYMENT_SUCCEEDED,
    GatewayEvent,
    get_gateway,
)
from .settings_service import get_settings


logger = logging.getLogger(__name__)

OUTCOME_APPLIED = "applied"
OUTCOME_DUPLICATE = "duplicate"
OUTCOME_IGNORED = "ignored"


@dataclass(frozen=True)
class ReconciliationResult:
    outcome: str
    date: str | None = None
    order_ref: str | None = None


def gateway_actor(event: GatewayEvent) -> str:
    return f"gateway:{event.event_id or event.payment_ref}"


def handle_webhook(payload: bytes, signature: str | None) -> ReconciliationResult:
    """Verify, normalize and apply one webhook delivery."""
    event = get_gateway().construct_event(payload, signature)
    try:
        return process_event(event)
    except Exception as exc:
        logger.exception("Failed to process gateway event %s (%s)", event.event_id, event.gateway_type)
        raise EventProcessingError("Webhook handler failed") from exc


def process_event(event: GatewayEvent) -> ReconciliationResult:
    if event.kind == EVENT_PAYMENT_SUCCEEDED:
        return handle_payment_succeeded(event)
    if event.kind == EVENT_PAYMENT_FAILED:
        return handle_payment_failed(event)
    if event.kind == EVENT_CHARGE_REFUNDED:
        return handle_charge_refunded(event)
    logger.debug("Ignoring gateway event type %s", event.gateway_type)
    return ReconciliationResult(outcome=OUTCOME_IGNORED)


def _lock_by_resource_ref(resource_ref: str) -> CalendarDay | None:
    calendar_date = parse_iso_date(resource_ref)
    if calendar_date is None:
        return None
    return lock_for_update(
        db.session.query(CalendarDay).filter_by(calendar_date=calendar_date)
    ).first()


def _lock_for_event(event: GatewayEvent) -> CalendarDay | None:
    """The day named in the event metadata, else the day holding its payment ref."""
    if event.resource_ref:
        return _lock_by_resource_ref(event.resource_ref)
    return lock_for_update(
        db.session.query(CalendarDay).filter_by(payment_ref=event.payment_ref)
    ).first()


def _record_buyer(day: CalendarDay, meta: GatewayMetadata, *, own_checkout: bool) -> None:
    # Row details were captured for day.payment_ref; anything else pays with its own metadata
    if own_checkout:
        day.buyer_first_name = day.buyer_first_name or meta.first_name
        day.buyer_last_name = day.buyer_last_name or meta.last_name
        day.buyer_email = day.buyer_email or meta.email
        day.buyer_phone = day.buyer_phone or meta.phone
        day.billing_address = day.billing_address or meta.billing_address
        day.contact_opt_in = bool(day.contact_opt_in or meta.contact_opt_in)
        day.dedication_text = day.dedication_text or meta.dedication_text
        return
    day.buyer_first_name = meta.first_name
    day.buyer_last_name = meta.last_name
    day.buyer_email = meta.email
    day.buyer_phone = meta.phone
    day.billing_address = meta.billing_address
    day.contact_opt_in = meta.contact_opt_in
    day.dedication_text = meta.dedication_text


# =============================================================================
# PAYMENT SUCCEEDED
# =============================================================================

def handle_payment_succeeded(event: GatewayEvent) -> ReconciliationResult:
    """
    Sell the day a succeeded payment belongs to.

    Sells from CHECKOUT_HOLD, or from AVAILABLE when the payment is the one
    started by the checkout that lapsed there. A day whose stored payment ref
    is a different payment is left alone and needs a manual refund.
    """
    if not event.payment_ref:
        logger.error("payment succeeded event %s missing payment reference", event.event_id)
        return ReconciliationResult(outcome=OUTCOME_IGNORED)

    already = (
        db.session.query(CalendarDay)
        .filter_by(payment_ref=event.payment_ref, state=STATE_SOLD)
        .first()
    )
    if already:
        logger.info("Duplicate payment event %s for %s; already sold", event.payment_ref, already.date_key)
        result = ReconciliationResult(outcome=OUTCOME_DUPLICATE, date=already.date_key, order_ref=already.order_ref)
        db.session.rollback()
        return result

    def _op():
        day = _lock_for_event(event)
        if not day:
            logger.error("payment %s references unknown day %s", event.payment_ref, event.resource_ref)
            db.session.rollback()
            return ReconciliationResult(outcome=OUTCOME_IGNORED), None

        if day.state == STATE_SOLD and day.payment_ref == event.payment_ref:
            result = ReconciliationResult(outcome=OUTCOME_DUPLICATE, date=day.date_key, order_ref=day.order_ref)
            db.session.rollback()
            return result, None

        own_checkout = day.payment_ref == event.payment_ref
        late = day.accepts_late_payment(event.payment_ref)
        sellable = (day.state == STATE_CHECKOUT_HOLD and (own_checkout or day.payment_ref is None)) or late
        if not sellable:
            # Buyer was charged but the day belongs elsewhere: manual refund
            logger.warning(
                "Payment %s succeeded for %s but day is %s with payment %s; no action taken",
                event.payment_ref,
                day.date_key,
                day.state,
                day.payment_ref,
            )
            db.session.rollback()
            return ReconciliationResult(outcome=OUTCOME_IGNORED, date=day.date_key), None

        settings = get_settings()
        old_value = day.snapshot()
        order_ref = next_order_ref(settings.calendar_year)

        day.to_sold(
            order_ref=order_ref,
            payment_ref=event.payment_ref,
            amount_paid_cents=event.amount,
            paid_at=utcnow(),
        )
        _record_buyer(day, event.metadata, own_checkout=own_checkout)

        append_audit_entry(
            day=day,
            action=ACTION_PAYMENT_RECEIVED,
            old_value=old_value,
            new_value=day.snapshot(),
            performed_by=gateway_actor(event),
            notes="Payment arrived after the checkout hold lapsed" if late else None,
        )

        receipt = OrderReceipt(
            order_ref=order_ref,
            date=day.date_key,
            amount_cents=day.amount_paid_cents,
            buyer_name=" ".join(filter(None, [day.buyer_first_name, day.buyer_last_name])) or "there",
            buyer_email=day.buyer_email,
            dedication_text=day.dedication_text,
            notification_email=settings.notification_email,
            app_url=current_app.config["APP_URL"],
        )
        db.session.commit()
        return ReconciliationResult(outcome=OUTCOME_APPLIED, date=receipt.date, order_ref=order_ref), receipt

    result, receipt = run_with_retry(_op)
    if receipt is not None:
        logger.info("Sold %s as %s (%s)", receipt.date, receipt.order_ref, event.payment_ref)
        current_app.extensions["notifier"].send_order_notifications(receipt)
    return result


# =============================================================================
# PAYMENT FAILED
# =============================================================================

def handle_payment_failed(event: GatewayEvent) -> ReconciliationResult:
    if not event.resource_ref:
        logger.error("payment failed event %s missing day reference", event.event_id)
        return ReconciliationResult(outcome=OUTCOME_IGNORED)

    reason = event.failure_reason or "unknown"

    def _op() -> ReconciliationResult:
        day = _lock_by_resource_ref(event.resource_ref)
        if not day or day.state != STATE_CHECKOUT_HOLD:
            db.session.rollback()
            return ReconciliationResult(outcome=OUTCOME_IGNORED, date=day.date_key if day else None)
        if day.payment_ref and event.payment_ref and day.payment_ref != event.payment_ref:
            logger.warning(
                "Payment failure %s does not match current checkout %s on %s; ignoring",
                event.payment_ref,
                day.payment_ref,
                day.date_key,
            )
            db.session.rollback()
            return ReconciliationResult(outcome=OUTCOME_IGNORED, date=day.date_key)

        old_value = day.snapshot()
        day.to_available(payment_failed=True)
        append_audit_entry(
            day=day,
            action=ACTION_PAYMENT_FAILED,
            old_value=old_value,
            new_value=day.snapshot(),
            performed_by=gateway_actor(event),
            notes=f"Payment failed: {reason}",
        )
        db.session.commit()
        logger.info("Payment %s failed for %s: %s", event.payment_ref, day.date_key, reason)
        return ReconciliationResult(outcome=OUTCOME_APPLIED, date=day.date_key)

    return run_with_retry(_op)


# =============================================================================
# CHARGE REFUNDED
# =============================================================================

def handle_charge_refunded(event: GatewayEvent) -> ReconciliationResult:
    if not event.payment_ref:
        return ReconciliationResult(outcome=OUTCOME_IGNORED)

    def _op() -> ReconciliationResult:
        day = (
            db.session.query(CalendarDay)
            .filter(
                or_(
                    CalendarDay.payment_ref == event.payment_ref,
                    CalendarDay.refunded_payment_ref == event.payment_ref,
                )
            )
            .first()
        )
        if not day:
            db.session.rollback()
            return ReconciliationResult(outcome=OUTCOME_IGNORED)

        append_audit_entry(
            day=day,
            action=ACTION_GATEWAY_REFUND_RECORDED,
            old_value={"state": day.state},
            new_value={
                "state": day.state,
                "refundedViaGateway": True,
                "paymentRef": event.payment_ref,
                "amountRefunded": event.amount_refunded,
            },
            performed_by=gateway_actor(event),
            notes="Refund recorded by payment gateway",
        )
        db.session.commit()
        return ReconciliationResult(outcome=OUTCOME_APPLIED, date=day.date_key)

    return run_with_retry(_op)
