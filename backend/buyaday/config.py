# backend/buyaday/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/buyaday.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///buyaday.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    CORS_ORIGINS = [
        origin.strip()
        for origin in os.environ.get(
            "CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173"
        ).split(",")
        if origin.strip()
    ]
    APP_URL = os.environ.get("APP_URL", "http://localhost:5173")

    # Reservations
    HOLD_DURATION_MINUTES = int(os.environ.get("HOLD_DURATION_MINUTES", "10"))
    DEFAULT_CALENDAR_YEAR = int(os.environ.get("CALENDAR_YEAR", "2027"))
    DEFAULT_PRICE_CENTS = int(os.environ.get("DEFAULT_PRICE_CENTS", "10000"))
    ORDER_PREFIX = os.environ.get("ORDER_PREFIX", "ACF")

    # Payment gateway (Stripe-compatible REST API)
    PAYMENT_API_BASE = os.environ.get("PAYMENT_API_BASE", "https://api.stripe.com")
    PAYMENT_API_KEY = os.environ.get("PAYMENT_API_KEY", "")
    PAYMENT_WEBHOOK_SECRET = os.environ.get("PAYMENT_WEBHOOK_SECRET", "")
    PAYMENT_WEBHOOK_TOLERANCE_SECONDS = int(os.environ.get("PAYMENT_WEBHOOK_TOLERANCE_SECONDS", "300"))
    PAYMENT_CURRENCY = os.environ.get("PAYMENT_CURRENCY", "usd")
    PAYMENT_TIMEOUT_SECONDS = float(os.environ.get("PAYMENT_TIMEOUT_SECONDS", "15"))

    # Outbound mail
    SMTP_HOST = os.environ.get("SMTP_HOST", "")
    SMTP_PORT = int(os.environ.get("SMTP_PORT", "587"))
    SMTP_USER = os.environ.get("SMTP_USER", "")
    SMTP_PASSWORD = os.environ.get("SMTP_PASSWORD", "")
    NOTIFY_FROM = os.environ.get("NOTIFY_FROM", "calendar@localhost")
    NOTIFY_ASYNC = _env_bool("NOTIFY_ASYNC", True)
    NOTIFY_MAX_WORKERS = int(os.environ.get("NOTIFY_MAX_WORKERS", "2"))
