from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime

from ..extensions import db
from ..time_utils import to_utc_z
from ..validation import InvalidTransition


STATE_AVAILABLE = "AVAILABLE"
STATE_CHECKOUT_HOLD = "CHECKOUT_HOLD"
STATE_ADMIN_HOLD = "ADMIN_HOLD"
STATE_SOLD = "SOLD"

STATES = (STATE_AVAILABLE, STATE_CHECKOUT_HOLD, STATE_ADMIN_HOLD, STATE_SOLD)

# SOLD only leaves through a refund. AVAILABLE -> SOLD is a late payment for a
# lapsed checkout and additionally requires a matching payment_ref (see to_sold).
ALLOWED_TRANSITIONS = {
    STATE_AVAILABLE: {STATE_CHECKOUT_HOLD, STATE_ADMIN_HOLD, STATE_SOLD},
    STATE_CHECKOUT_HOLD: {STATE_AVAILABLE, STATE_SOLD},
    STATE_ADMIN_HOLD: {STATE_AVAILABLE},
    STATE_SOLD: {STATE_AVAILABLE, STATE_ADMIN_HOLD},
}


@dataclass(frozen=True)
class Available:
    state = STATE_AVAILABLE


@dataclass(frozen=True)
class CheckoutHold:
    token: str
    expires_at: datetime
    state = STATE_CHECKOUT_HOLD


@dataclass(frozen=True)
class AdminHold:
    note: str | None
    state = STATE_ADMIN_HOLD


@dataclass(frozen=True)
class Sold:
    order_ref: str
    paid_at: datetime
    amount_paid_cents: int | None
    state = STATE_SOLD


class CalendarDay(db.Model):
    """
    One sellable calendar day.

    WHY: The row is the unit of contention. All state-specific fields are set
    and cleared together through the to_* transition methods so a day can
    never carry, say, a hold token while SOLD.

    CONCURRENCY: version_id is an optimistic lock. Writers re-read the row
    (FOR UPDATE where supported); a concurrent commit makes the loser's UPDATE
    match zero rows and raise StaleDataError, which callers retry.
    """
    __tablename__ = "calendar_days"
    __table_args__ = (
        db.Index("ix_calendar_days_state_hold_expires", "state", "hold_expires_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    calendar_date = db.Column(db.Date, nullable=False, unique=True, index=True)

    state = db.Column(db.String(16), nullable=False, default=STATE_AVAILABLE, index=True)

    # CHECKOUT_HOLD only
    hold_token = db.Column(db.String(64), nullable=True)
    hold_expires_at = db.Column(db.DateTime, nullable=True)

    # ADMIN_HOLD only
    admin_note = db.Column(db.Text, nullable=True)

    # Buyer info (captured at checkout, kept through refunds for records)
    buyer_first_name = db.Column(db.String(64), nullable=True)
    buyer_last_name = db.Column(db.String(64), nullable=True)
    buyer_email = db.Column(db.String(255), nullable=True)
    buyer_phone = db.Column(db.String(32), nullable=True)
    billing_address = db.Column(db.JSON, nullable=True)
    contact_opt_in = db.Column(db.Boolean, nullable=False, default=False)
    dedication_text = db.Column(db.String(128), nullable=True)

    # Payment correlation
    payment_ref = db.Column(db.String(255), nullable=True, unique=True)
    refunded_payment_ref = db.Column(db.String(255), nullable=True, index=True)

    # SOLD only
    order_ref = db.Column(db.String(32), nullable=True, unique=True)
    amount_paid_cents = db.Column(db.Integer, nullable=True)
    paid_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def date_key(self) -> str:
        return self.calendar_date.isoformat()

    # ------------------------------------------------------------------
    # State views
    # ------------------------------------------------------------------

    def view(self):
        if self.state == STATE_CHECKOUT_HOLD:
            return CheckoutHold(token=self.hold_token, expires_at=self.hold_expires_at)
        if self.state == STATE_ADMIN_HOLD:
            return AdminHold(note=self.admin_note)
        if self.state == STATE_SOLD:
            return Sold(order_ref=self.order_ref, paid_at=self.paid_at, amount_paid_cents=self.amount_paid_cents)
        return Available()

    def hold_is_live(self, now: datetime) -> bool:
        return (
            self.state == STATE_CHECKOUT_HOLD
            and self.hold_expires_at is not None
            and self.hold_expires_at > now
        )

    def hold_has_lapsed(self, now: datetime) -> bool:
        return (
            self.state == STATE_CHECKOUT_HOLD
            and self.hold_expires_at is not None
            and self.hold_expires_at <= now
        )

    def snapshot(self) -> dict:
        """State fragment recorded in audit entries."""
        snap = {"state": self.state}
        if self.state == STATE_CHECKOUT_HOLD:
            snap["holdExpiresAt"] = to_utc_z(self.hold_expires_at)
        elif self.state == STATE_ADMIN_HOLD:
            snap["adminNote"] = self.admin_note
        elif self.state == STATE_SOLD:
            snap["orderRef"] = self.order_ref
            snap["amountPaidCents"] = self.amount_paid_cents
            snap["paymentRef"] = self.payment_ref
        return snap

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _move_to(self, new_state: str) -> None:
        if new_state not in ALLOWED_TRANSITIONS.get(self.state, set()):
            raise InvalidTransition(
                f"Cannot move {self.date_key} from {self.state} to {new_state}",
                state=self.state,
            )
        self.state = new_state

    def _clear_hold(self) -> None:
        self.hold_token = None
        self.hold_expires_at = None

    def _clear_buyer(self) -> None:
        self.buyer_first_name = None
        self.buyer_last_name = None
        self.buyer_email = None
        self.buyer_phone = None
        self.billing_address = None
        self.contact_opt_in = False
        self.dedication_text = None

    def _clear_sale(self) -> None:
        self.order_ref = None
        self.amount_paid_cents = None
        self.paid_at = None

    def to_checkout_hold(self, token: str, expires_at: datetime) -> None:
        self._move_to(STATE_CHECKOUT_HOLD)
        self.hold_token = token
        self.hold_expires_at = expires_at
        self.admin_note = None
        self.payment_ref = None
        self._clear_sale()
        self._clear_buyer()

    def to_available(self, *, payment_failed: bool = False) -> None:
        """
        Return the day to sale.

        A checkout that lapses or is released keeps its payment_ref and buyer
        details: the gateway may still report that payment as succeeded, and
        that late sale is honoured until someone else starts a checkout.
        """
        previous = self.state
        self._move_to(STATE_AVAILABLE)
        if previous == STATE_SOLD:
            self.refunded_payment_ref = self.payment_ref
            self.payment_ref = None
        elif previous != STATE_CHECKOUT_HOLD or payment_failed:
            self.payment_ref = None
        self._clear_hold()
        self._clear_sale()
        self.admin_note = None

    def accepts_late_payment(self, payment_ref: str | None) -> bool:
        return (
            self.state == STATE_AVAILABLE
            and payment_ref is not None
            and self.payment_ref == payment_ref
        )

    def to_admin_hold(self, note: str | None) -> None:
        was_sold = self.state == STATE_SOLD
        self._move_to(STATE_ADMIN_HOLD)
        if was_sold:
            self.refunded_payment_ref = self.payment_ref
        self._clear_hold()
        self._clear_sale()
        self.admin_note = note
        self.payment_ref = None

    def to_sold(self, *, order_ref: str, payment_ref: str, amount_paid_cents: int | None, paid_at: datetime) -> None:
        if self.state == STATE_AVAILABLE and not self.accepts_late_payment(payment_ref):
            raise InvalidTransition(
                f"Cannot sell {self.date_key}: payment {payment_ref} does not belong to its last checkout",
                state=self.state,
            )
        self._move_to(STATE_SOLD)
        self._clear_hold()
        self.admin_note = None
        self.payment_ref = payment_ref
        self.order_ref = order_ref
        self.amount_paid_cents = amount_paid_cents
        self.paid_at = paid_at

    def invariant_violations(self) -> list[str]:
        problems = []
        if self.state not in STATES:
            problems.append(f"unknown state {self.state!r}")
        held = self.state == STATE_CHECKOUT_HOLD
        if held != (self.hold_token is not None) or held != (self.hold_expires_at is not None):
            problems.append("hold token/expiry must be set exactly while CHECKOUT_HOLD")
        sold = self.state == STATE_SOLD
        if sold != (self.order_ref is not None) or sold != (self.paid_at is not None):
            problems.append("order ref/paid_at must be set exactly while SOLD")
        return problems

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_public_dict(self) -> dict:
        """Redacted view for anonymous callers. Never includes buyer PII."""
        return {
            "id": self.id,
            "date": self.date_key,
            "state": self.state,
            "dedicationText": self.dedication_text if self.state == STATE_SOLD else None,
            "holdExpiresAt": to_utc_z(self.hold_expires_at) if self.state == STATE_CHECKOUT_HOLD else None,
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "date": self.date_key,
            "state": self.state,
            "holdExpiresAt": to_utc_z(self.hold_expires_at),
            "adminNote": self.admin_note,
            "dedicationText": self.dedication_text,
            "buyer": {
                "firstName": self.buyer_first_name,
                "lastName": self.buyer_last_name,
                "email": self.buyer_email,
                "phone": self.buyer_phone,
                "billingAddress": self.billing_address,
                "contactOptIn": bool(self.contact_opt_in),
            },
            "paymentRef": self.payment_ref,
            "refundedPaymentRef": self.refunded_payment_ref,
            "orderRef": self.order_ref,
            "amountPaidCents": self.amount_paid_cents,
            "paidAt": to_utc_z(self.paid_at),
            "updatedAt": to_utc_z(self.updated_at),
        }


def month_bounds(year: int, month: int) -> tuple[date, date]:
    start = date(year, month, 1)
    end = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)
    return start, end
