"""
Order notifications by email via SMTP.

Sent after the sale has committed. Delivery never affects the sale: every
failure is logged and dropped. With NOTIFY_ASYNC the SMTP round-trips run on a
small worker pool owned by the Notifier and shut down at process exit.
"""
from __future__ import annotations

import atexit
import logging
import smtplib
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SmtpSettings:
    host: str
    port: int
    user: str
    password: str
    from_address: str

    @property
    def configured(self) -> bool:
        return bool(self.host)


@dataclass(frozen=True)
class OrderReceipt:
    order_ref: str
    date: str
    amount_cents: int | None
    buyer_name: str
    buyer_email: str | None
    dedication_text: str | None
    notification_email: str | None
    app_url: str


def _format_amount(cents: int | None) -> str:
    if cents is None:
        return "n/a"
    return f"${cents / 100:,.2f}"


def build_buyer_message(receipt: OrderReceipt, from_address: str) -> MIMEMultipart | None:
    if not receipt.buyer_email:
        return None
    lines = [
        f"Hi {receipt.buyer_name},",
        "",
        f"Thank you! Your calendar day {receipt.date} is confirmed.",
        f"Order: {receipt.order_ref}",
        f"Amount: {_format_amount(receipt.amount_cents)}",
    ]
    if receipt.dedication_text:
        lines.append(f"Dedication: {receipt.dedication_text}")
    lines += ["", f"View the calendar: {receipt.app_url}"]
    return _message(
        subject=f"Your calendar day is confirmed ({receipt.order_ref})",
        body="\n".join(lines),
        from_address=from_address,
        to_address=receipt.buyer_email,
    )


def build_internal_message(receipt: OrderReceipt, from_address: str) -> MIMEMultipart | None:
    if not receipt.notification_email:
        return None
    lines = [
        "New calendar day sold.",
        "",
        f"Date: {receipt.date}",
        f"Order: {receipt.order_ref}",
        f"Buyer: {receipt.buyer_name} <{receipt.buyer_email or 'no email'}>",
        f"Amount: {_format_amount(receipt.amount_cents)}",
        f"Dedication: {receipt.dedication_text or '(none)'}",
    ]
    return _message(
        subject=f"Calendar sale {receipt.date} ({receipt.order_ref})",
        body="\n".join(lines),
        from_address=from_address,
        to_address=receipt.notification_email,
    )


def _message(*, subject: str, body: str, from_address: str, to_address: str) -> MIMEMultipart:
    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = from_address
    msg["To"] = to_address
    msg.attach(MIMEText(body, "plain"))
    msg.attach(MIMEText(f"<pre style='font-family:sans-serif'>{body}</pre>", "html"))
    return msg


def send_message(smtp: SmtpSettings, msg: MIMEMultipart) -> bool:
    """Returns True if sent, False if skipped or failed."""
    if not smtp.configured:
        logger.debug("SMTP_HOST not set; skipping email to %s", msg["To"])
        return False
    try:
        with smtplib.SMTP(smtp.host, smtp.port, timeout=10) as server:
            server.starttls()
            if smtp.user and smtp.password:
                server.login(smtp.user, smtp.password)
            server.sendmail(smtp.from_address, [msg["To"]], msg.as_string())
        logger.info("Email sent to %s: %s", msg["To"], msg["Subject"])
        return True
    except Exception as e:
        logger.exception("Failed to send email to %s: %s", msg["To"], e)
        return False


class Notifier:
    """Flask extension owning SMTP settings and the delivery worker pool."""

    def __init__(self):
        self.smtp: SmtpSettings | None = None
        self._executor: ThreadPoolExecutor | None = None

    def init_app(self, app) -> None:
        self.smtp = SmtpSettings(
            host=app.config["SMTP_HOST"],
            port=app.config["SMTP_PORT"],
            user=app.config["SMTP_USER"],
            password=app.config["SMTP_PASSWORD"],
            from_address=app.config["NOTIFY_FROM"],
        )
        if app.config["NOTIFY_ASYNC"] and self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=app.config["NOTIFY_MAX_WORKERS"],
                thread_name_prefix="notify",
            )
            atexit.register(self.shutdown)
        elif not app.config["NOTIFY_ASYNC"]:
            self.shutdown()
        app.extensions["notifier"] = self

    def shutdown(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def _dispatch(self, msg: MIMEMultipart) -> None:
        if self._executor is None:
            send_message(self.smtp, msg)
            return
        try:
            self._executor.submit(send_message, self.smtp, msg)
        except RuntimeError:
            # pool already shut down (interpreter exiting)
            logger.warning("Notification pool closed; sending inline to %s", msg["To"])
            send_message(self.smtp, msg)

    def send_order_notifications(self, receipt: OrderReceipt) -> None:
        if self.smtp is None:
            logger.warning("Notifier not initialized; dropping notifications for %s", receipt.order_ref)
            return
        for build in (build_buyer_message, build_internal_message):
            msg = build(receipt, self.smtp.from_address)
            if msg is not None:
                self._dispatch(msg)
