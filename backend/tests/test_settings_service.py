import unittest
from datetime import date, datetime

from buyaday import create_app
from buyaday.extensions import db
from buyaday.models import SalesSettings
from buyaday.services import settings_service
from buyaday.services.settings_service import SALES_ENDED, SALES_NOT_STARTED, SALES_OPEN
from buyaday.validation import ValidationError


class SettingsServiceTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.app = create_app({
            "SECRET_KEY": "test",
            "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
            "SQLALCHEMY_TRACK_MODIFICATIONS": False,
            "TESTING": True,
            "DEFAULT_CALENDAR_YEAR": 2027,
            "DEFAULT_PRICE_CENTS": 10000,
            "NOTIFY_ASYNC": False,
        })
        cls.ctx = cls.app.app_context()
        cls.ctx.push()
        db.create_all()

    @classmethod
    def tearDownClass(cls):
        db.session.remove()
        db.drop_all()
        cls.ctx.pop()

    def setUp(self):
        db.session.query(SalesSettings).delete()
        db.session.commit()
        db.session.remove()

    def test_singleton_created_with_defaults(self):
        settings = settings_service.ensure_settings()
        self.assertEqual(settings.id, 1)
        self.assertEqual(settings.calendar_year, 2027)
        self.assertEqual(settings.price_cents, 10000)
        self.assertEqual(settings.premium_prices, {})
        self.assertFalse(settings.text_required)
        self.assertFalse(settings.emojis_allowed)
        self.assertIs(settings_service.get_settings(), settings)
        self.assertEqual(db.session.query(SalesSettings).count(), 1)

    def test_patch_updates_fields_and_records_actor(self):
        settings_service.ensure_settings()
        settings = settings_service.update_settings(
            {
                "priceInCents": "15000",
                "textRequired": True,
                "notificationEmail": " Team@Example.org ",
                "premiumPrices": {"2027-02-14": 30000},
            },
            actor="ops@example.org",
        )
        self.assertEqual(settings.price_cents, 15000)
        self.assertTrue(settings.text_required)
        self.assertEqual(settings.notification_email, "team@example.org")
        self.assertEqual(settings.premium_prices, {"2027-02-14": 30000})
        self.assertEqual(settings.updated_by, "ops@example.org")
        self.assertIsNotNone(settings.updated_at)

        payload = settings.to_dict()
        self.assertEqual(payload["priceInCents"], 15000)
        self.assertEqual(payload["premiumPrices"], {"2027-02-14": 30000})

    def test_unknown_fields_rejected(self):
        settings_service.ensure_settings()
        with self.assertRaises(ValidationError):
            settings_service.update_settings({"calendarYear": 2030}, actor="ops@example.org")

    def test_price_bounds_enforced(self):
        settings_service.ensure_settings()
        for bad in (99, 1_000_001, True, 12.5, "1e4"):
            with self.assertRaises(ValidationError):
                settings_service.update_settings({"priceInCents": bad}, actor="ops@example.org")
        self.assertEqual(settings_service.get_settings().price_cents, 10000)

    def test_premium_dates_must_be_in_calendar_year(self):
        settings_service.ensure_settings()
        with self.assertRaises(ValidationError):
            settings_service.update_settings({"premiumPrices": {"2028-01-01": 20000}}, actor="ops@example.org")

    def test_window_start_must_precede_end(self):
        settings_service.ensure_settings()
        with self.assertRaises(ValidationError):
            settings_service.update_settings(
                {"salesStartDate": "2027-02-01T00:00:00Z", "salesEndDate": "2027-01-01T00:00:00Z"},
                actor="ops@example.org",
            )

    def test_sales_status_follows_window(self):
        settings = settings_service.update_settings(
            {"salesStartDate": "2026-11-01T00:00:00Z", "salesEndDate": "2027-12-31T23:59:59Z"},
            actor="ops@example.org",
        )
        self.assertEqual(settings_service.sales_status(settings, datetime(2026, 10, 1)), SALES_NOT_STARTED)
        self.assertEqual(settings_service.sales_status(settings, datetime(2027, 6, 1)), SALES_OPEN)
        self.assertEqual(settings_service.sales_status(settings, datetime(2028, 1, 1)), SALES_ENDED)

    def test_open_window_when_unset(self):
        settings = settings_service.ensure_settings()
        self.assertEqual(settings_service.sales_status(settings, datetime(1999, 1, 1)), SALES_OPEN)

    def test_price_for_date_uses_premium_override(self):
        settings = settings_service.update_settings(
            {"premiumPrices": {"2027-12-25": 50000}},
            actor="ops@example.org",
        )
        self.assertEqual(settings_service.price_for_date(settings, date(2027, 12, 25)), 50000)
        self.assertEqual(settings_service.price_for_date(settings, date(2027, 12, 24)), 10000)


if __name__ == "__main__":
    unittest.main()
