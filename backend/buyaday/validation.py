from __future__ import annotations

import json
import re
import unicodedata
from dataclasses import dataclass, field, asdict
from datetime import date
from typing import Any

from .time_utils import parse_iso_date


MAX_DEDICATION_LENGTH = 26

# Without emoji support the dedication is restricted to a printable ASCII subset
PLAIN_DEDICATION_RE = re.compile(r"^[a-zA-Z0-9 !@#&()\-_'\".,:;?+=%*]+$")

EMOJI_RE = re.compile(
    "["
    "\U0001F300-\U0001F9FF"
    "\u2600-\u26FF"
    "\u2700-\u27BF"
    "\uFE00-\uFE0F"
    "\U0001F000-\U0001FFFF"
    "]"
)

ZERO_WIDTH_JOINER = "\u200d"

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PHONE_RE = re.compile(r"^[\d\s\-+().]*$")
MONTH_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


# =============================================================================
# ERROR TAXONOMY
# =============================================================================

class DayServiceError(Exception):
    """Base class for domain errors. status_code is the HTTP status routes answer with."""
    status_code = 500


class ValidationError(DayServiceError, ValueError):
    """400-level input problem."""
    status_code = 400


class BadRequestError(DayServiceError):
    """400-level: request is well-formed but the target cannot support it."""
    status_code = 400


class NotFoundError(DayServiceError):
    """404-level: unknown calendar day or record."""
    status_code = 404


class ConflictError(DayServiceError):
    """409-level business rule conflict (e.g., day already held)."""
    status_code = 409

    def __init__(self, message: str, *, state: str | None = None):
        super().__init__(message)
        self.state = state


class InvalidTransition(ConflictError):
    """State machine edge that is not allowed."""


class InvalidSignatureError(DayServiceError):
    """Webhook payload failed signature verification."""
    status_code = 400


class UpstreamFailureError(DayServiceError):
    """Payment gateway call failed or returned an unusable status."""
    status_code = 502


class SalesClosedError(DayServiceError):
    """Sales window is not open."""
    status_code = 403

    def __init__(self, message: str, *, sales_status: str):
        super().__init__(message)
        self.sales_status = sales_status


class InvalidHoldTokenError(DayServiceError):
    status_code = 403


class HoldExpiredError(DayServiceError):
    status_code = 410


class EventProcessingError(DayServiceError):
    """Wraps any failure while applying a verified gateway event."""
    status_code = 500


def error_body(exc: DayServiceError) -> dict:
    body = {"error": str(exc)}
    if isinstance(exc, ConflictError) and exc.state:
        body["state"] = exc.state
    if isinstance(exc, SalesClosedError):
        body["sales_status"] = exc.sales_status
    return body


# =============================================================================
# PRIMITIVE COERCION
# =============================================================================

def coerce_int(name: str, value: Any) -> int:
    # Reject bools, floats and scientific notation
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped or not re.fullmatch(r"-?\d+", stripped):
            raise ValidationError(f"{name} must be a plain integer")
        return int(stripped)
    raise ValidationError(f"{name} must be an integer")


def coerce_bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    raise ValidationError(f"{name} must be true or false")


def coerce_page(page: Any, limit: Any, *, default_limit: int = 50, max_limit: int = 200) -> tuple[int, int]:
    page_num = coerce_int("page", page) if page not in (None, "") else 1
    limit_num = coerce_int("limit", limit) if limit not in (None, "") else default_limit
    if page_num < 1:
        raise ValidationError("page must be >= 1")
    if limit_num < 1:
        raise ValidationError("limit must be >= 1")
    return page_num, min(limit_num, max_limit)


def sanitize_text(text: str) -> str:
    """Trim and collapse internal whitespace."""
    return re.sub(r"\s+", " ", text.strip())


def _optional_str(payload: dict, key: str, *, max_len: int, min_len: int = 0, label: str | None = None) -> str | None:
    label = label or key
    value = payload.get(key)
    if value is None:
        if min_len:
            raise ValidationError(f"{label} is required")
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{label} must be a string")
    value = value.strip()
    if len(value) < min_len:
        raise ValidationError(f"{label} is required" if not value else f"{label} is too short")
    if len(value) > max_len:
        raise ValidationError(f"{label} must be at most {max_len} characters")
    return value or None


# =============================================================================
# CALENDAR DATES
# =============================================================================

def validate_calendar_date(value: Any, calendar_year: int) -> date:
    """Strict YYYY-MM-DD inside the configured calendar year."""
    parsed = parse_iso_date(value)
    if parsed is None:
        raise ValidationError("date must be formatted YYYY-MM-DD")
    if parsed.year != calendar_year:
        raise ValidationError(f"date must be within {calendar_year}")
    return parsed


def validate_month(value: Any) -> tuple[int, int]:
    if not isinstance(value, str) or not MONTH_RE.match(value):
        raise ValidationError("month must be formatted YYYY-MM")
    year, month = value.split("-")
    return int(year), int(month)


# =============================================================================
# DEDICATION TEXT
# =============================================================================

def contains_emoji(text: str) -> bool:
    return bool(EMOJI_RE.search(text))


def validate_dedication_text(
    text: Any,
    *,
    emojis_allowed: bool,
    required: bool,
) -> str | None:
    """
    Apply the dedication policy and return the sanitized text (None when empty).

    Length is counted in code points after whitespace is collapsed.
    """
    if text is None:
        text = ""
    if not isinstance(text, str):
        raise ValidationError("dedicationText must be a string")

    cleaned = sanitize_text(text)
    if not cleaned:
        if required:
            raise ValidationError("Dedication text is required")
        return None

    if len(cleaned) > MAX_DEDICATION_LENGTH:
        raise ValidationError(f"Dedication text must be at most {MAX_DEDICATION_LENGTH} characters")

    if emojis_allowed:
        for ch in cleaned:
            if ch == ZERO_WIDTH_JOINER or EMOJI_RE.match(ch):
                continue
            if unicodedata.category(ch)[0] not in "LNPSZ":
                raise ValidationError("Dedication text contains unsupported characters")
    else:
        if contains_emoji(cleaned):
            raise ValidationError("Emojis are not allowed in dedication text")
        if not PLAIN_DEDICATION_RE.match(cleaned):
            raise ValidationError("Dedication text contains unsupported characters")

    return cleaned


# =============================================================================
# BUYER INFO
# =============================================================================

@dataclass(frozen=True)
class BillingAddress:
    line1: str
    city: str
    state: str
    postal_code: str
    country: str = "US"
    line2: str | None = None

    @classmethod
    def from_payload(cls, payload: Any) -> "BillingAddress":
        if not isinstance(payload, dict):
            raise ValidationError("billingAddress is required")
        country = _optional_str(payload, "country", max_len=2, label="billingAddress.country") or "US"
        if len(country) != 2 or not country.isalpha():
            raise ValidationError("billingAddress.country must be a 2-letter code")
        return cls(
            line1=_optional_str(payload, "line1", min_len=1, max_len=100, label="billingAddress.line1"),
            line2=_optional_str(payload, "line2", max_len=100, label="billingAddress.line2"),
            city=_optional_str(payload, "city", min_len=1, max_len=60, label="billingAddress.city"),
            state=_optional_str(payload, "state", min_len=2, max_len=50, label="billingAddress.state"),
            postal_code=_optional_str(payload, "postal_code", min_len=3, max_len=20, label="billingAddress.postal_code"),
            country=country.upper(),
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class BuyerInfo:
    first_name: str
    last_name: str
    email: str
    billing_address: BillingAddress
    phone: str | None = None
    contact_opt_in: bool = False
    dedication_text: str | None = None

    def to_metadata(self) -> dict[str, str]:
        """Flat string map suitable for payment-intent metadata."""
        return {
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "phone": self.phone or "",
            "contact_opt_in": "true" if self.contact_opt_in else "false",
            "dedication_text": self.dedication_text or "",
            "billing_address": json.dumps(self.billing_address.to_dict(), sort_keys=True),
        }


def validate_buyer_info(payload: Any, *, emojis_allowed: bool, text_required: bool) -> BuyerInfo:
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")

    email = _optional_str(payload, "email", min_len=1, max_len=100)
    if not EMAIL_RE.match(email):
        raise ValidationError("email must be a valid email address")

    phone = _optional_str(payload, "phone", max_len=20)
    if phone and not PHONE_RE.match(phone):
        raise ValidationError("phone contains invalid characters")

    opt_in = payload.get("contactOptIn", False)

    return BuyerInfo(
        first_name=_optional_str(payload, "firstName", min_len=1, max_len=50),
        last_name=_optional_str(payload, "lastName", min_len=1, max_len=50),
        email=email.lower(),
        phone=phone,
        billing_address=BillingAddress.from_payload(payload.get("billingAddress")),
        contact_opt_in=coerce_bool("contactOptIn", opt_in),
        dedication_text=validate_dedication_text(
            payload.get("dedicationText"),
            emojis_allowed=emojis_allowed,
            required=text_required,
        ),
    )


@dataclass(frozen=True)
class GatewayMetadata:
    """
    Buyer fields carried on a payment intent.

    Parsed leniently: anything malformed is dropped rather than rejected, since
    the gateway event has already been authenticated.
    """
    day_key: str | None = None
    hold_token: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone: str | None = None
    dedication_text: str | None = None
    contact_opt_in: bool = False
    billing_address: dict | None = field(default=None)

    @classmethod
    def from_gateway(cls, metadata: Any) -> "GatewayMetadata":
        if not isinstance(metadata, dict):
            return cls()

        def _s(key: str) -> str | None:
            value = metadata.get(key)
            if not isinstance(value, str):
                return None
            return value.strip() or None

        address = None
        raw_address = metadata.get("billing_address")
        if isinstance(raw_address, str) and raw_address:
            try:
                decoded = json.loads(raw_address)
            except ValueError:
                decoded = None
            if isinstance(decoded, dict):
                address = decoded

        return cls(
            day_key=_s("day_key"),
            hold_token=_s("hold_token"),
            first_name=_s("first_name"),
            last_name=_s("last_name"),
            email=_s("email"),
            phone=_s("phone"),
            dedication_text=_s("dedication_text"),
            contact_opt_in=_s("contact_opt_in") == "true",
            billing_address=address,
        )
