# Overview: Administrator-initiated refunds of sold days.

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..extensions import db
from ..models import STATE_SOLD
from ..models.audit import ACTION_REFUND_ISSUED
from ..time_utils import utcnow
from ..validation import BadRequestError, ConflictError, UpstreamFailureError, ValidationError
from .audit_service import append_audit_entry
from .calendar_service import get_day, lock_day
from .concurrency import run_with_retry
from .payment_gateway import REFUND_OK_STATUSES, get_gateway


logger = logging.getLogger(__name__)

MAX_REASON_LENGTH = 500


@dataclass(frozen=True)
class RefundResult:
    date: str
    refund_id: str
    refund_status: str
    state: str
    restored: bool

    def to_dict(self) -> dict:
        return {
            "date": self.date,
            "refundId": self.refund_id,
            "refundStatus": self.refund_status,
            "state": self.state,
            "restored": self.restored,
        }


def refund_day(day_key, *, restore_to_available: bool, reason: str, actor: str) -> RefundResult:
    """
    Refund a SOLD day through the gateway, then release or hold the day.

    Preconditions are checked before the gateway is called, so a refused
    request never moves money. The local transition only happens after the
    gateway accepted the refund (succeeded or pending).
    """
    if not isinstance(restore_to_available, bool):
        raise ValidationError("restoreDate must be true or false")
    if not isinstance(reason, str) or not reason.strip():
        raise ValidationError("reason is required")
    reason = reason.strip()
    if len(reason) > MAX_REASON_LENGTH:
        raise ValidationError(f"reason must be at most {MAX_REASON_LENGTH} characters")

    day = get_day(day_key)
    if day.state != STATE_SOLD:
        raise ConflictError("Can only refund sold dates", state=day.state)
    if not day.payment_ref:
        raise BadRequestError("No payment reference on record for this date")

    payment_ref = day.payment_ref
    date_key = day.date_key
    metadata = {
        "day_key": date_key,
        "order_ref": day.order_ref or "",
        "refunded_by": actor,
        "reason": reason[:MAX_REASON_LENGTH],
    }
    db.session.rollback()

    refund = get_gateway().create_refund(
        payment_ref=payment_ref,
        metadata=metadata,
        idempotency_key=f"refund-{payment_ref}",
    )
    if refund.status not in REFUND_OK_STATUSES:
        logger.error("Refund for %s returned status %s", payment_ref, refund.status)
        raise UpstreamFailureError(f"Refund failed with status: {refund.status}")

    def _op() -> RefundResult:
        locked = lock_day(date_key)
        if locked.state != STATE_SOLD or locked.payment_ref != payment_ref:
            logger.error(
                "Refund %s issued for %s but day changed to %s; manual review needed",
                refund.refund_id,
                date_key,
                locked.state,
            )
            raise ConflictError("Date changed while the refund was processed", state=locked.state)

        old_value = {
            "state": locked.state,
            "orderRef": locked.order_ref,
            "amountPaidCents": locked.amount_paid_cents,
            "paymentRef": locked.payment_ref,
            "paidAt": locked.paid_at.isoformat() if locked.paid_at else None,
            "buyerEmail": locked.buyer_email,
        }
        if restore_to_available:
            locked.to_available()
        else:
            locked.to_admin_hold(f"Refunded on {utcnow().date().isoformat()}: {reason}")

        append_audit_entry(
            day=locked,
            action=ACTION_REFUND_ISSUED,
            old_value=old_value,
            new_value={
                "state": locked.state,
                "refundId": refund.refund_id,
                "refundStatus": refund.status,
                "restored": restore_to_available,
            },
            performed_by=actor,
            notes=reason,
        )
        db.session.commit()
        return RefundResult(
            date=date_key,
            refund_id=refund.refund_id,
            refund_status=refund.status,
            state=locked.state,
            restored=restore_to_available,
        )

    result = run_with_retry(_op)
    logger.info("Refunded %s (%s) by %s", date_key, refund.refund_id, actor)
    return result
