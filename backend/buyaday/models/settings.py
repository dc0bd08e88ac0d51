from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


SETTINGS_ROW_ID = 1


class SalesSettings(db.Model):
    """
    Singleton row (id=1) holding pricing, sales window and dedication policy.

    Created at provisioning, mutated only by administrators, never deleted.
    """
    __tablename__ = "sales_settings"

    id = db.Column(db.Integer, primary_key=True)

    calendar_year = db.Column(db.Integer, nullable=False)
    price_cents = db.Column(db.Integer, nullable=False)
    # {"YYYY-MM-DD": cents} overrides for premium days
    premium_prices = db.Column(db.JSON, nullable=False, default=dict)

    sales_start_at = db.Column(db.DateTime, nullable=True)
    sales_end_at = db.Column(db.DateTime, nullable=True)

    text_required = db.Column(db.Boolean, nullable=False, default=False)
    emojis_allowed = db.Column(db.Boolean, nullable=False, default=False)

    notification_email = db.Column(db.String(255), nullable=True)

    updated_by = db.Column(db.String(255), nullable=True)
    updated_at = db.Column(db.DateTime, nullable=True)

    def to_dict(self) -> dict:
        return {
            "calendarYear": self.calendar_year,
            "priceInCents": self.price_cents,
            "premiumPrices": dict(self.premium_prices or {}),
            "salesStartDate": to_utc_z(self.sales_start_at),
            "salesEndDate": to_utc_z(self.sales_end_at),
            "textRequired": self.text_required,
            "emojisAllowed": self.emojis_allowed,
            "notificationEmail": self.notification_email,
            "updatedBy": self.updated_by,
            "updatedAt": to_utc_z(self.updated_at),
        }
