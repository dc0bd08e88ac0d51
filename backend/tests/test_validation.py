"""
Input validation: calendar dates, dedication text policy and buyer details.
"""

from datetime import date

import pytest

from buyaday.validation import (
    BuyerInfo,
    GatewayMetadata,
    ValidationError,
    coerce_page,
    validate_buyer_info,
    validate_calendar_date,
    validate_dedication_text,
    validate_month,
)

from conftest import buyer_payload


class TestCalendarDate:
    def test_strict_format(self):
        assert validate_calendar_date("2027-01-31", 2027) == date(2027, 1, 31)
        for bad in ("2027-1-31", "2027/01/31", "20270131", "2027-01-31T00:00", 20270131, None):
            with pytest.raises(ValidationError):
                validate_calendar_date(bad, 2027)

    def test_year_must_match(self):
        with pytest.raises(ValidationError):
            validate_calendar_date("2026-12-31", 2027)

    def test_month(self):
        assert validate_month("2027-02") == (2027, 2)
        with pytest.raises(ValidationError):
            validate_month("2027-00")


class TestDedicationText:
    def test_whitespace_is_collapsed(self):
        assert validate_dedication_text("  Hello   world  ", emojis_allowed=False, required=False) == "Hello world"

    def test_empty_text(self):
        assert validate_dedication_text("   ", emojis_allowed=False, required=False) is None
        with pytest.raises(ValidationError):
            validate_dedication_text("", emojis_allowed=False, required=True)

    def test_length_limit(self):
        assert validate_dedication_text("x" * 26, emojis_allowed=False, required=False) == "x" * 26
        with pytest.raises(ValidationError):
            validate_dedication_text("x" * 27, emojis_allowed=False, required=False)

    def test_emoji_policy(self):
        party = "Party \U0001F389"
        with pytest.raises(ValidationError):
            validate_dedication_text(party, emojis_allowed=False, required=False)
        assert validate_dedication_text(party, emojis_allowed=True, required=False) == party

    def test_joined_emoji_allowed_when_enabled(self):
        family = "Us \U0001F468‍\U0001F469‍\U0001F467"
        assert validate_dedication_text(family, emojis_allowed=True, required=False) == family

    def test_control_characters_rejected(self):
        with pytest.raises(ValidationError):
            validate_dedication_text("Hi\x07there", emojis_allowed=True, required=False)
        with pytest.raises(ValidationError):
            validate_dedication_text("<script>", emojis_allowed=False, required=False)

    def test_non_string_rejected(self):
        with pytest.raises(ValidationError):
            validate_dedication_text(42, emojis_allowed=False, required=False)


class TestBuyerInfo:
    def test_valid_payload(self):
        buyer = validate_buyer_info(buyer_payload(), emojis_allowed=False, text_required=False)
        assert isinstance(buyer, BuyerInfo)
        assert buyer.email == "ada@example.com"
        assert buyer.billing_address.country == "US"
        assert buyer.contact_opt_in is True

    def test_metadata_round_trips_through_gateway(self):
        buyer = validate_buyer_info(buyer_payload(), emojis_allowed=False, text_required=False)
        meta = GatewayMetadata.from_gateway({"day_key": "2027-01-01", **buyer.to_metadata()})
        assert meta.email == buyer.email
        assert meta.contact_opt_in is True
        assert meta.billing_address["city"] == "London"

    @pytest.mark.parametrize(
        "overrides",
        [
            {"firstName": ""},
            {"lastName": None},
            {"email": "not-an-email"},
            {"phone": "call me maybe"},
            {"billingAddress": None},
            {"billingAddress": {"line1": "1 Main", "city": "X", "state": "CA", "postal_code": "9"}},
            {"contactOptIn": "yes"},
        ],
    )
    def test_invalid_payloads(self, overrides):
        with pytest.raises(ValidationError):
            validate_buyer_info(buyer_payload(**overrides), emojis_allowed=False, text_required=False)

    def test_text_required_policy(self):
        with pytest.raises(ValidationError):
            validate_buyer_info(buyer_payload(dedicationText=""), emojis_allowed=False, text_required=True)


class TestPaging:
    def test_defaults_and_cap(self):
        assert coerce_page(None, None) == (1, 50)
        assert coerce_page("3", "1000") == (3, 200)
        with pytest.raises(ValidationError):
            coerce_page("abc", None)
