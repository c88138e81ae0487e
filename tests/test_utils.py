"""
DateUtils / ValidationUtils tests
"""

from datetime import datetime, timedelta, timezone

import pytest

from storefront.utils.date_utils import DateUtils
from storefront.utils.validators import ValidationUtils


class TestDateUtils:

    @pytest.mark.unit
    def test_now_is_aware(self):
        assert DateUtils.now_utc().tzinfo is not None

    @pytest.mark.unit
    def test_ensure_utc(self):
        naive = datetime(2026, 3, 1, 12, 0)

        assert DateUtils.ensure_utc(naive) == datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
        assert DateUtils.ensure_utc(None) is None

    @pytest.mark.unit
    def test_to_utc_from_named_zone(self):
        local = datetime(2026, 1, 15, 9, 30)

        assert DateUtils.to_utc(local, "America/New_York") == datetime(2026, 1, 15, 14, 30, tzinfo=timezone.utc)

    @pytest.mark.unit
    def test_parse_iso_string(self):
        assert DateUtils.parse_iso_string("2026-05-04T10:00:00+02:00").hour == 8
        with pytest.raises(ValueError):
            DateUtils.parse_iso_string("yesterday-ish")

    @pytest.mark.unit
    def test_expiry(self):
        now = DateUtils.now_utc()
        expiry = DateUtils.create_expiry_time(minutes=30, now=now)

        assert expiry - now == timedelta(minutes=30)
        assert not DateUtils.is_expired(expiry, now=now)
        assert DateUtils.is_expired(expiry, now=now + timedelta(minutes=31))
        assert not DateUtils.is_expired(None)

    @pytest.mark.unit
    def test_days_ago(self):
        now = DateUtils.now_utc()

        assert now - DateUtils.days_ago(3, now=now) == timedelta(days=3)


class TestValidationUtils:

    @pytest.mark.unit
    @pytest.mark.parametrize("email, valid", [
        ("jane@shopmail.com", True),
        ("jane.doe+orders@shopmail.co.uk", True),
        ("jane@", False),
        ("", False),
        (None, False),
    ])
    def test_validate_email(self, email, valid):
        assert ValidationUtils.validate_email(email) is valid

    @pytest.mark.unit
    def test_normalize_email(self):
        assert ValidationUtils.normalize_email("  Jane@ShopMail.COM ") == "jane@shopmail.com"

    @pytest.mark.unit
    @pytest.mark.parametrize("session_id, valid", [
        ("guest-session-0001", True),
        ("a1b2c3d4", True),
        ("short", False),
        ("has spaces in it", False),
        (None, False),
    ])
    def test_validate_session_id(self, session_id, valid):
        assert ValidationUtils.validate_session_id(session_id) is valid

    @pytest.mark.unit
    def test_slugify(self):
        assert ValidationUtils.slugify(" Limited Edition ") == "limited-edition"

    @pytest.mark.unit
    def test_sanitize_text(self):
        assert ValidationUtils.sanitize_text("  too   many\n spaces ") == "too many spaces"
        assert ValidationUtils.sanitize_text("abcdef", max_length=3) == "abc"
        assert ValidationUtils.sanitize_text(None) is None
