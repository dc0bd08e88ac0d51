"""
Payment reconciliation tests.

Verifies:
- The first sale of the year is ACF-2027-00001 and numbers increase
- Duplicate deliveries never produce a second PAYMENT_RECEIVED
- Failed payments release the hold they belong to, and only that hold
- A payment that succeeds after its hold lapsed still sells the day
- Events for days that moved on to another payment are logged and ignored
- Gateway-side refunds are recorded without touching state
"""

from datetime import timedelta

import pytest

from buyaday.extensions import db
from buyaday.models import AuditLog, CalendarDay, SalesSettings, STATE_AVAILABLE, STATE_CHECKOUT_HOLD, STATE_SOLD
from buyaday.services import calendar_service, checkout_service, reconciliation_service
from buyaday.services.payment_gateway import parse_event
from buyaday.services.reconciliation_service import OUTCOME_APPLIED, OUTCOME_DUPLICATE, OUTCOME_IGNORED
from buyaday.time_utils import utcnow
from buyaday.validation import HoldExpiredError, InvalidHoldTokenError, ValidationError

from conftest import buyer_payload, gateway_event, signed_headers, succeeded_event


def _post(client, payload: bytes):
    return client.post("/api/payments/webhook", data=payload, headers=signed_headers(payload))


def _day(day_key: str) -> CalendarDay:
    db.session.expire_all()
    return calendar_service.get_day(day_key)


def _count(action: str) -> int:
    return db.session.query(AuditLog).filter_by(action=action).count()


def failed_event(payment_ref: str, day_key: str, message: str = "Your card was declined.") -> bytes:
    return gateway_event(
        "payment_intent.payment_failed",
        {
            "id": payment_ref,
            "object": "payment_intent",
            "amount": 10000,
            "last_payment_error": {"message": message},
            "metadata": {"day_key": day_key},
        },
        event_id=f"evt_fail_{payment_ref}",
    )


# =============================================================================
# CHECKOUT (payment start)
# =============================================================================


class TestBeginPayment:
    def test_payment_intent_carries_day_and_buyer(self, start_checkout, gateway_api):
        session = start_checkout("2027-03-14")

        assert session.payment_ref == "pi_test_1"
        assert session.amount_cents == 10000

        path, form, idempotency_key = gateway_api.calls_to("/v1/payment_intents")[0]
        assert form["amount"] == "10000"
        assert form["currency"] == "usd"
        assert form["metadata[day_key]"] == "2027-03-14"
        assert form["metadata[email]"] == "ada@example.com"
        assert idempotency_key.startswith("pi-2027-03-14-")

        day = _day("2027-03-14")
        assert day.state == STATE_CHECKOUT_HOLD
        assert day.payment_ref == "pi_test_1"
        assert day.buyer_email == "ada@example.com"
        assert day.billing_address["city"] == "London"
        assert _count("PAYMENT_STARTED") == 1

    def test_premium_price_is_charged(self, db_session, start_checkout, gateway_api):
        settings = db_session.get(SalesSettings, 1)
        settings.premium_prices = {"2027-12-25": 25000}
        db_session.commit()

        session = start_checkout("2027-12-25")
        assert session.amount_cents == 25000

    def test_wrong_token_is_refused(self, db_session, gateway_api):
        calendar_service.create_hold("2027-03-14")
        with pytest.raises(InvalidHoldTokenError):
            checkout_service.begin_payment("2027-03-14", "f" * 64, buyer_payload())
        assert gateway_api.requests == []

    def test_expired_hold_is_refused(self, db_session, gateway_api):
        grant = calendar_service.create_hold("2027-03-14", now=utcnow() - timedelta(minutes=11))
        with pytest.raises(HoldExpiredError):
            checkout_service.begin_payment("2027-03-14", grant.hold_token, buyer_payload())
        assert gateway_api.requests == []

    def test_invalid_buyer_is_refused_before_gateway(self, db_session, gateway_api):
        grant = calendar_service.create_hold("2027-03-14")
        with pytest.raises(ValidationError):
            checkout_service.begin_payment("2027-03-14", grant.hold_token, buyer_payload(email="nope"))
        with pytest.raises(ValidationError):
            checkout_service.begin_payment(
                "2027-03-14", grant.hold_token, buyer_payload(dedicationText="Party \U0001F389")
            )
        assert gateway_api.requests == []


# =============================================================================
# PAYMENT SUCCEEDED
# =============================================================================


class TestPaymentSucceeded:
    def test_first_sale_gets_first_order_ref(self, client, start_checkout):
        session = start_checkout("2027-03-14")
        payload = succeeded_event(session.payment_ref, "2027-03-14")

        resp = _post(client, payload)
        assert resp.status_code == 200
        assert resp.get_json() == {"received": True, "outcome": OUTCOME_APPLIED}

        day = _day("2027-03-14")
        assert day.state == STATE_SOLD
        assert day.order_ref == "ACF-2027-00001"
        assert day.amount_paid_cents == 10000
        assert day.paid_at is not None
        assert day.hold_token is None

        entry = db.session.query(AuditLog).filter_by(action="PAYMENT_RECEIVED").one()
        assert entry.old_value["state"] == STATE_CHECKOUT_HOLD
        assert entry.new_value["state"] == STATE_SOLD
        assert entry.new_value["orderRef"] == "ACF-2027-00001"
        assert entry.performed_by == "gateway:evt_test_1"

    def test_order_refs_increase(self, sell_day):
        sell_day("2027-01-01")
        sell_day("2027-06-30")
        sell_day("2027-12-31")

        refs = [_day(k).order_ref for k in ("2027-01-01", "2027-06-30", "2027-12-31")]
        assert refs == ["ACF-2027-00001", "ACF-2027-00002", "ACF-2027-00003"]

    def test_duplicate_delivery_is_idempotent(self, client, start_checkout):
        session = start_checkout("2027-03-14")
        payload = succeeded_event(session.payment_ref, "2027-03-14")

        assert _post(client, payload).get_json()["outcome"] == OUTCOME_APPLIED
        resp = _post(client, payload)
        assert resp.status_code == 200
        assert resp.get_json()["outcome"] == OUTCOME_DUPLICATE

        assert _count("PAYMENT_RECEIVED") == 1
        assert _day("2027-03-14").order_ref == "ACF-2027-00001"

    def test_buyer_details_fall_back_to_metadata(self, client, db_session):
        calendar_service.create_hold("2027-04-01")
        payload = gateway_event(
            "payment_intent.succeeded",
            {
                "id": "pi_external",
                "amount": 10000,
                "metadata": {
                    "day_key": "2027-04-01",
                    "first_name": "Grace",
                    "last_name": "Hopper",
                    "email": "grace@example.com",
                    "dedication_text": "For Grace",
                    "contact_opt_in": "true",
                },
            },
        )
        assert _post(client, payload).get_json()["outcome"] == OUTCOME_APPLIED

        day = _day("2027-04-01")
        assert day.buyer_email == "grace@example.com"
        assert day.dedication_text == "For Grace"
        assert day.contact_opt_in is True

    def test_day_that_moved_on_is_ignored(self, client, start_checkout):
        session = start_checkout("2027-03-14")
        calendar_service.reset_checkout_holds(actor="cli")
        calendar_service.create_admin_hold("2027-03-14", actor="ops@example.org")

        payload = succeeded_event(session.payment_ref, "2027-03-14")
        resp = _post(client, payload)
        assert resp.get_json()["outcome"] == OUTCOME_IGNORED
        assert _count("PAYMENT_RECEIVED") == 0
        assert _day("2027-03-14").state != STATE_SOLD

    def test_late_success_after_sweep_still_sells(self, client, start_checkout):
        session = start_checkout("2027-05-05")
        assert calendar_service.expire_holds(utcnow() + timedelta(minutes=11)) == 1
        assert _day("2027-05-05").state == STATE_AVAILABLE

        resp = _post(client, succeeded_event(session.payment_ref, "2027-05-05"))
        assert resp.get_json()["outcome"] == OUTCOME_APPLIED

        day = _day("2027-05-05")
        assert day.state == STATE_SOLD
        assert day.order_ref == "ACF-2027-00001"
        assert day.buyer_email == "ada@example.com"
        entry = db.session.query(AuditLog).filter_by(action="PAYMENT_RECEIVED").one()
        assert entry.old_value["state"] == STATE_AVAILABLE
        assert entry.new_value["state"] == STATE_SOLD
        assert entry.notes == "Payment arrived after the checkout hold lapsed"

    def test_success_for_superseded_checkout_is_ignored(self, client, start_checkout):
        first = start_checkout("2027-05-05")
        calendar_service.expire_holds(utcnow() + timedelta(minutes=11))
        second = start_checkout("2027-05-05", firstName="Bob", email="bob@example.com")
        assert second.payment_ref != first.payment_ref

        resp = _post(client, succeeded_event(first.payment_ref, "2027-05-05", event_id="evt_first"))
        assert resp.get_json()["outcome"] == OUTCOME_IGNORED
        day = _day("2027-05-05")
        assert day.state == STATE_CHECKOUT_HOLD
        assert day.payment_ref == second.payment_ref
        assert _count("PAYMENT_RECEIVED") == 0

        resp = _post(client, succeeded_event(second.payment_ref, "2027-05-05", event_id="evt_second"))
        assert resp.get_json()["outcome"] == OUTCOME_APPLIED
        day = _day("2027-05-05")
        assert day.state == STATE_SOLD
        assert day.payment_ref == second.payment_ref
        assert (day.buyer_first_name, day.buyer_email) == ("Bob", "bob@example.com")

    def test_day_found_by_payment_ref_without_metadata(self, client, start_checkout):
        session = start_checkout("2027-03-14")
        payload = gateway_event(
            "payment_intent.succeeded",
            {"id": session.payment_ref, "amount": 10000, "amount_received": 10000},
        )
        assert _post(client, payload).get_json()["outcome"] == OUTCOME_APPLIED
        assert _day("2027-03-14").state == STATE_SOLD

    def test_unknown_day_is_ignored(self, client, db_session):
        payload = succeeded_event("pi_ghost", "2031-01-01")
        assert _post(client, payload).get_json()["outcome"] == OUTCOME_IGNORED

    def test_replayed_success_after_refund_does_not_resell(self, client, sell_day, admin_headers, gateway_api):
        session = sell_day("2027-03-14")
        resp = client.post(
            "/api/admin/refund",
            json={"date": "2027-03-14", "restoreDate": True, "reason": "Customer request"},
            headers=admin_headers,
        )
        assert resp.status_code == 200

        payload = succeeded_event(session.payment_ref, "2027-03-14", event_id="evt_replay")
        assert _post(client, payload).get_json()["outcome"] == OUTCOME_IGNORED
        assert _day("2027-03-14").state == STATE_AVAILABLE

    def test_confirmation_email_sent(self, outbox, sell_day, db_session):
        settings = db_session.get(SalesSettings, 1)
        settings.notification_email = "team@example.org"
        db_session.commit()

        sell_day("2027-03-14")

        recipients = sorted(to[0] for _, to, _ in outbox)
        assert recipients == ["ada@example.com", "team@example.org"]
        assert all("ACF-2027-00001" in body for _, _, body in outbox)

    def test_order_status_polling(self, client, sell_day):
        session = sell_day("2027-03-14")
        resp = client.get(f"/api/checkout/orders/{session.payment_ref}")
        data = resp.get_json()
        assert data["confirmed"] is True
        assert data["orderRef"] == "ACF-2027-00001"
        assert "buyer" not in data


# =============================================================================
# PAYMENT FAILED
# =============================================================================


class TestPaymentFailed:
    def test_failure_releases_hold(self, client, start_checkout):
        session = start_checkout("2027-03-14")

        resp = _post(client, failed_event(session.payment_ref, "2027-03-14"))
        assert resp.get_json()["outcome"] == OUTCOME_APPLIED

        day = _day("2027-03-14")
        assert day.state == STATE_AVAILABLE
        assert day.payment_ref is None

        entry = db.session.query(AuditLog).filter_by(action="PAYMENT_FAILED").one()
        assert entry.notes == "Payment failed: Your card was declined."
        assert entry.old_value["state"] == STATE_CHECKOUT_HOLD
        assert entry.new_value["state"] == STATE_AVAILABLE

    def test_failure_for_other_checkout_is_ignored(self, client, start_checkout):
        start_checkout("2027-03-14")

        resp = _post(client, failed_event("pi_someone_else", "2027-03-14"))
        assert resp.get_json()["outcome"] == OUTCOME_IGNORED
        assert _day("2027-03-14").state == STATE_CHECKOUT_HOLD

    def test_failure_on_sold_day_is_ignored(self, client, sell_day):
        session = sell_day("2027-03-14")
        resp = _post(client, failed_event(session.payment_ref, "2027-03-14"))
        assert resp.get_json()["outcome"] == OUTCOME_IGNORED
        assert _day("2027-03-14").state == STATE_SOLD


# =============================================================================
# CHARGE REFUNDED / OTHER EVENTS
# =============================================================================


class TestOtherEvents:
    def test_gateway_refund_is_recorded_without_state_change(self, client, sell_day):
        session = sell_day("2027-03-14")
        payload = gateway_event(
            "charge.refunded",
            {
                "id": "ch_1",
                "object": "charge",
                "payment_intent": session.payment_ref,
                "amount": 10000,
                "amount_refunded": 10000,
            },
            event_id="evt_refund_1",
        )
        assert _post(client, payload).get_json()["outcome"] == OUTCOME_APPLIED

        assert _day("2027-03-14").state == STATE_SOLD
        entry = db.session.query(AuditLog).filter_by(action="GATEWAY_REFUND_RECORDED").one()
        assert entry.new_value["refundedViaGateway"] is True
        assert _count("REFUND_ISSUED") == 0

    def test_unhandled_types_are_acknowledged(self, client, db_session):
        payload = gateway_event("customer.created", {"id": "cus_1"})
        resp = _post(client, payload)
        assert resp.status_code == 200
        assert resp.get_json()["outcome"] == OUTCOME_IGNORED

    def test_process_event_directly(self, start_checkout):
        session = start_checkout("2027-03-14")
        event = parse_event(succeeded_event(session.payment_ref, "2027-03-14"))

        result = reconciliation_service.process_event(event)
        assert result.outcome == OUTCOME_APPLIED
        assert result.order_ref == "ACF-2027-00001"
        assert reconciliation_service.process_event(event).outcome == OUTCOME_DUPLICATE
