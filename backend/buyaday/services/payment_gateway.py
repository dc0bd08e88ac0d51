# Overview: Payment gateway adapter (webhook verification, payment intents, refunds).

"""
Payment Gateway Adapter

WHY: The gateway is the authority on whether money moved. Everything it sends
us is authenticated (HMAC signature) and normalized into a GatewayEvent before
any business code sees it.

Wire format follows the Stripe API: form-encoded POSTs with a bearer secret
key and an Idempotency-Key header, and webhooks signed with
"Stripe-Signature: t=<unix>,v1=<hex hmac-sha256(secret, '<t>.<body>')>".
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

import httpx
from flask import current_app

from ..validation import (
    BadRequestError,
    GatewayMetadata,
    InvalidSignatureError,
    UpstreamFailureError,
    ValidationError,
    coerce_int,
)


logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "Stripe-Signature"

EVENT_PAYMENT_SUCCEEDED = "payment_succeeded"
EVENT_PAYMENT_FAILED = "payment_failed"
EVENT_CHARGE_REFUNDED = "charge_refunded"
EVENT_IGNORED = "ignored"

GATEWAY_EVENT_KINDS = {
    "payment_intent.succeeded": EVENT_PAYMENT_SUCCEEDED,
    "payment_intent.payment_failed": EVENT_PAYMENT_FAILED,
    "charge.refunded": EVENT_CHARGE_REFUNDED,
}

REFUND_OK_STATUSES = {"succeeded", "pending"}


@dataclass(frozen=True)
class GatewayEvent:
    event_id: str
    kind: str
    gateway_type: str
    payment_ref: str | None = None
    resource_ref: str | None = None
    amount: int | None = None
    amount_refunded: int | None = None
    failure_reason: str | None = None
    metadata: GatewayMetadata = field(default_factory=GatewayMetadata)


@dataclass(frozen=True)
class PaymentIntent:
    payment_ref: str
    client_secret: str | None
    amount: int
    status: str


@dataclass(frozen=True)
class Refund:
    refund_id: str
    status: str
    amount: int | None


# =============================================================================
# SIGNATURES
# =============================================================================

def compute_signature(secret: str, payload: bytes, timestamp: int) -> str:
    signed = f"{timestamp}.".encode("utf-8") + payload
    return hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()


def signature_header(secret: str, payload: bytes, timestamp: int | None = None) -> str:
    """Build a header value the way the gateway does (used by tooling and tests)."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    return f"t={timestamp},v1={compute_signature(secret, payload, timestamp)}"


def verify_signature(
    secret: str,
    payload: bytes,
    header: str | None,
    *,
    tolerance_seconds: int = 300,
    now: float | None = None,
) -> None:
    """Raise InvalidSignatureError unless header carries a fresh, valid v1 signature."""
    if not secret:
        raise InvalidSignatureError("Webhook secret is not configured")
    if not header:
        raise InvalidSignatureError("Missing signature header")

    timestamp = None
    candidates = []
    for part in header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                raise InvalidSignatureError("Malformed signature timestamp")
        elif key == "v1" and value:
            candidates.append(value)

    if timestamp is None or not candidates:
        raise InvalidSignatureError("Malformed signature header")

    now = time.time() if now is None else now
    if abs(now - timestamp) > tolerance_seconds:
        raise InvalidSignatureError("Signature timestamp outside tolerance")

    expected = compute_signature(secret, payload, timestamp)
    if not any(hmac.compare_digest(expected, candidate) for candidate in candidates):
        raise InvalidSignatureError("Signature mismatch")


def _amount(obj: dict, *keys: str) -> int | None:
    """First present amount among keys, in minor units. Anything but a non-negative integer is malformed."""
    for key in keys:
        value = obj.get(key)
        if value is None:
            continue
        try:
            amount = coerce_int(key, value)
        except ValidationError as exc:
            raise BadRequestError(str(exc)) from exc
        if amount < 0:
            raise BadRequestError(f"Event {key} must not be negative")
        return amount
    return None


def _ref(value) -> str | None:
    return value if isinstance(value, str) and value else None


def parse_event(payload: bytes) -> GatewayEvent:
    """Normalize an authenticated gateway event body."""
    try:
        body = json.loads(payload)
    except ValueError:
        raise BadRequestError("Event body is not valid JSON")
    if not isinstance(body, dict) or not isinstance(body.get("data"), dict):
        raise BadRequestError("Event body is missing data")

    gateway_type = body.get("type") or ""
    obj = body["data"].get("object") or {}
    if not isinstance(obj, dict):
        raise BadRequestError("Event data.object must be an object")

    kind = GATEWAY_EVENT_KINDS.get(gateway_type, EVENT_IGNORED)
    metadata = GatewayMetadata.from_gateway(obj.get("metadata"))
    event_id = str(body.get("id") or "")

    if kind == EVENT_CHARGE_REFUNDED:
        return GatewayEvent(
            event_id=event_id,
            kind=kind,
            gateway_type=gateway_type,
            payment_ref=_ref(obj.get("payment_intent")),
            resource_ref=metadata.day_key,
            amount=_amount(obj, "amount"),
            amount_refunded=_amount(obj, "amount_refunded"),
            metadata=metadata,
        )

    failure = obj.get("last_payment_error") or {}
    return GatewayEvent(
        event_id=event_id,
        kind=kind,
        gateway_type=gateway_type,
        payment_ref=_ref(obj.get("id")),
        resource_ref=metadata.day_key,
        amount=_amount(obj, "amount_received", "amount"),
        failure_reason=failure.get("message") if isinstance(failure, dict) else None,
        metadata=metadata,
    )


# =============================================================================
# ADAPTERS
# =============================================================================

class PaymentGateway(ABC):
    @abstractmethod
    def construct_event(self, payload: bytes, signature: str | None) -> GatewayEvent: ...

    @abstractmethod
    def create_payment_intent(
        self,
        *,
        amount_cents: int,
        metadata: dict[str, str],
        idempotency_key: str,
        receipt_email: str | None = None,
        description: str | None = None,
    ) -> PaymentIntent: ...

    @abstractmethod
    def create_refund(
        self,
        *,
        payment_ref: str,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> Refund: ...


class StripeGateway(PaymentGateway):
    """Stripe-compatible adapter over httpx."""

    def __init__(
        self,
        *,
        api_key: str,
        webhook_secret: str,
        api_base: str = "https://api.stripe.com",
        currency: str = "usd",
        tolerance_seconds: int = 300,
        timeout: float = 15.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.webhook_secret = webhook_secret
        self.currency = currency
        self.tolerance_seconds = tolerance_seconds
        self._client = httpx.Client(
            base_url=api_base,
            timeout=timeout,
            transport=transport,
            headers={"Authorization": f"Bearer {api_key}"},
        )

    @classmethod
    def from_config(cls, config, *, transport: httpx.BaseTransport | None = None) -> "StripeGateway":
        return cls(
            api_key=config["PAYMENT_API_KEY"],
            webhook_secret=config["PAYMENT_WEBHOOK_SECRET"],
            api_base=config["PAYMENT_API_BASE"],
            currency=config["PAYMENT_CURRENCY"],
            tolerance_seconds=config["PAYMENT_WEBHOOK_TOLERANCE_SECONDS"],
            timeout=config["PAYMENT_TIMEOUT_SECONDS"],
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def construct_event(self, payload: bytes, signature: str | None) -> GatewayEvent:
        verify_signature(
            self.webhook_secret,
            payload,
            signature,
            tolerance_seconds=self.tolerance_seconds,
        )
        return parse_event(payload)

    def _post(self, path: str, data: dict, idempotency_key: str) -> dict:
        try:
            response = self._client.post(path, data=data, headers={"Idempotency-Key": idempotency_key})
        except httpx.HTTPError as exc:
            logger.error("Gateway request %s failed: %s", path, exc)
            raise UpstreamFailureError("Payment gateway unavailable") from exc

        if response.status_code >= 400:
            message = "Payment gateway rejected the request"
            try:
                message = response.json().get("error", {}).get("message") or message
            except ValueError:
                pass
            logger.error("Gateway %s returned %s: %s", path, response.status_code, message)
            raise UpstreamFailureError(message)

        try:
            body = response.json()
        except ValueError as exc:
            raise UpstreamFailureError("Payment gateway returned an unreadable response") from exc
        if not isinstance(body, dict) or not body.get("id"):
            raise UpstreamFailureError("Payment gateway response is missing an id")
        return body

    def create_payment_intent(
        self,
        *,
        amount_cents: int,
        metadata: dict[str, str],
        idempotency_key: str,
        receipt_email: str | None = None,
        description: str | None = None,
    ) -> PaymentIntent:
        data = {
            "amount": str(amount_cents),
            "currency": self.currency,
            "automatic_payment_methods[enabled]": "true",
        }
        if receipt_email:
            data["receipt_email"] = receipt_email
        if description:
            data["description"] = description
        for key, value in metadata.items():
            data[f"metadata[{key}]"] = value

        body = self._post("/v1/payment_intents", data, idempotency_key)
        return PaymentIntent(
            payment_ref=body["id"],
            client_secret=body.get("client_secret"),
            amount=int(body.get("amount", amount_cents)),
            status=body.get("status", ""),
        )

    def create_refund(
        self,
        *,
        payment_ref: str,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> Refund:
        data = {
            "payment_intent": payment_ref,
            "reason": "requested_by_customer",
        }
        for key, value in metadata.items():
            data[f"metadata[{key}]"] = value

        body = self._post("/v1/refunds", data, idempotency_key)
        return Refund(refund_id=body["id"], status=body.get("status", ""), amount=body.get("amount"))


def init_payment_gateway(app) -> None:
    app.extensions["payment_gateway"] = StripeGateway.from_config(app.config)


def get_gateway() -> PaymentGateway:
    return current_app.extensions["payment_gateway"]
