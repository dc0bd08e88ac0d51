"""
Pytest fixtures for the calendar backend tests.

Provides an in-memory database seeded with one calendar year, an admin
session, a recording payment gateway and signed webhook helpers.
"""

import json
from urllib.parse import parse_qsl

import httpx
import pytest

from buyaday import create_app
from buyaday.extensions import db
from buyaday.services import calendar_service, checkout_service, notification_service
from buyaday.services.auth_service import create_admin
from buyaday.services.order_service import ensure_order_sequence
from buyaday.services.payment_gateway import SIGNATURE_HEADER, StripeGateway, signature_header
from buyaday.services.session_service import create_session
from buyaday.services.settings_service import ensure_settings


WEBHOOK_SECRET = "whsec_test_secret"
CALENDAR_YEAR = 2027
ADMIN_EMAIL = "ops@example.org"
ADMIN_PASSWORD = "Calendar-Pass-2027!"

TEST_CONFIG = {
    "TESTING": True,
    "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
    "SQLALCHEMY_TRACK_MODIFICATIONS": False,
    "DEFAULT_CALENDAR_YEAR": CALENDAR_YEAR,
    "PAYMENT_API_KEY": "sk_test_key",
    "PAYMENT_WEBHOOK_SECRET": WEBHOOK_SECRET,
    "SMTP_HOST": "",
    "NOTIFY_ASYNC": False,
}


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TEST_CONFIG)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Fresh database for each test: settings, order counter and every day of the year."""
    meta = db.metadata
    for table in reversed(meta.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()
    db.session.remove()

    ensure_settings()
    ensure_order_sequence(CALENDAR_YEAR)
    db.session.commit()
    calendar_service.seed_calendar_days(CALENDAR_YEAR)

    yield db.session

    db.session.rollback()


@pytest.fixture(scope='function')
def admin(db_session):
    return create_admin(ADMIN_EMAIL, ADMIN_PASSWORD, name="Ops")


@pytest.fixture(scope='function')
def admin_headers(admin):
    _, token = create_session(admin.id, user_agent="pytest", ip_address="127.0.0.1")
    return auth_headers(token)


# =============================================================================
# PAYMENT GATEWAY
# =============================================================================

class RecordingGatewayApi:
    """Answers gateway REST calls like the real API and records every request."""

    def __init__(self):
        self.requests = []
        self.refund_status = "succeeded"
        self.fail_status = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        form = dict(parse_qsl(request.read().decode("utf-8")))
        self.requests.append((request.url.path, form, request.headers.get("Idempotency-Key")))
        n = len(self.requests)

        if self.fail_status:
            return httpx.Response(self.fail_status, json={"error": {"message": "Gateway refused"}})

        if request.url.path == "/v1/payment_intents":
            return httpx.Response(200, json={
                "id": f"pi_test_{n}",
                "client_secret": f"pi_test_{n}_secret_abc",
                "amount": int(form["amount"]),
                "status": "requires_payment_method",
            })
        if request.url.path == "/v1/refunds":
            return httpx.Response(200, json={
                "id": f"re_test_{n}",
                "status": self.refund_status,
                "amount": None,
            })
        return httpx.Response(404, json={"error": {"message": "Unknown path"}})

    def calls_to(self, path: str) -> list:
        return [call for call in self.requests if call[0] == path]


@pytest.fixture(scope='function')
def gateway_api(app):
    """Swap the app's gateway for one backed by an in-process transport."""
    api = RecordingGatewayApi()
    previous = app.extensions["payment_gateway"]
    gateway = StripeGateway.from_config(app.config, transport=httpx.MockTransport(api))
    app.extensions["payment_gateway"] = gateway
    yield api
    gateway.close()
    app.extensions["payment_gateway"] = previous


def gateway_event(event_type: str, obj: dict, *, event_id: str = "evt_test_1") -> bytes:
    return json.dumps({"id": event_id, "type": event_type, "data": {"object": obj}}).encode("utf-8")


def succeeded_event(payment_ref: str, day_key: str, *, amount: int = 10000, event_id: str = "evt_test_1") -> bytes:
    return gateway_event(
        "payment_intent.succeeded",
        {
            "id": payment_ref,
            "object": "payment_intent",
            "amount": amount,
            "amount_received": amount,
            "metadata": {"day_key": day_key},
        },
        event_id=event_id,
    )


def signed_headers(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> dict:
    return {
        SIGNATURE_HEADER: signature_header(secret, payload, timestamp),
        "Content-Type": "application/json",
    }


# =============================================================================
# CHECKOUT HELPERS
# =============================================================================

def buyer_payload(**overrides) -> dict:
    payload = {
        "firstName": "Ada",
        "lastName": "Lovelace",
        "email": "Ada@Example.com",
        "phone": "555-0100",
        "billingAddress": {
            "line1": "12 Analytical Way",
            "city": "London",
            "state": "LN",
            "postal_code": "10001",
            "country": "US",
        },
        "contactOptIn": True,
        "dedicationText": "Happy birthday Ada",
    }
    payload.update(overrides)
    return payload


@pytest.fixture(scope='function')
def start_checkout(db_session, gateway_api):
    """Hold a day and open a payment for it. Returns the CheckoutSession."""
    def _start(day_key: str, **buyer_overrides):
        grant = calendar_service.create_hold(day_key, ip_address="203.0.113.7")
        return checkout_service.begin_payment(
            day_key,
            grant.hold_token,
            buyer_payload(**buyer_overrides),
            ip_address="203.0.113.7",
        )
    return _start


@pytest.fixture(scope='function')
def sell_day(client, start_checkout):
    """Drive a day all the way to SOLD through the signed webhook."""
    def _sell(day_key: str, *, event_id: str | None = None):
        session = start_checkout(day_key)
        payload = succeeded_event(
            session.payment_ref,
            day_key,
            amount=session.amount_cents,
            event_id=event_id or f"evt_{day_key}",
        )
        resp = client.post("/api/payments/webhook", data=payload, headers=signed_headers(payload))
        assert resp.status_code == 200, resp.get_json()
        return session
    return _sell


# =============================================================================
# MAIL
# =============================================================================

class FakeSMTP:
    sent = []

    def __init__(self, host, port, timeout=None):
        self.host = host

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self):
        pass

    def login(self, user, password):
        pass

    def sendmail(self, from_address, to_addresses, body):
        FakeSMTP.sent.append((from_address, list(to_addresses), body))


@pytest.fixture(scope='function')
def outbox(app, monkeypatch):
    """Configure SMTP and capture outgoing mail instead of sending it."""
    FakeSMTP.sent = []
    notifier = app.extensions["notifier"]
    monkeypatch.setattr(notification_service.smtplib, "SMTP", FakeSMTP)
    monkeypatch.setattr(
        notifier,
        "smtp",
        notification_service.SmtpSettings(
            host="smtp.test",
            port=587,
            user="",
            password="",
            from_address="calendar@test.local",
        ),
    )
    return FakeSMTP.sent


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}
