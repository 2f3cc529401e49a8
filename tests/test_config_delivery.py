"""
APARTRACK — Settings & Delivery Channel Tests
"""

import pytest

from apartrack.config import AppConfig, get_config, set_config, get_timezone, get_all_config, DEFAULT_TZ
from apartrack.delivery import get_channel, EmailDelivery, InternalDelivery
from apartrack.delivery.internal import get_notifications
from tests.conftest import db_query


class TestSettings:

    def test_defaults(self):
        assert get_config("inspection_window_minutes") == 30
        assert get_config("photo_max_age_hours") == 24
        assert get_config("timezone") == "Asia/Jakarta"

    def test_typed_values_survive_reload(self):
        set_config("fast_inspection_seconds", 90)
        set_config("scheduler_enabled", True)
        AppConfig.reset_cache()
        assert get_config("fast_inspection_seconds") == 90
        assert get_config("scheduler_enabled") is True

    def test_change_recorded_with_user(self):
        set_config("off_hours_end", 21, user="admin")
        row = db_query("SELECT value, updated_by FROM settings WHERE key = 'off_hours_end'")[0]
        assert row == {"value": "21", "updated_by": "admin"}

    def test_secret_from_environment(self, monkeypatch):
        monkeypatch.setenv("SENDGRID_API_KEY", "SG.env")
        AppConfig.reset_cache()
        assert get_config("sendgrid_api_key") == "SG.env"

    def test_unknown_timezone_falls_back(self):
        set_config("timezone", "Nowhere/Special")
        assert get_timezone().key == DEFAULT_TZ

    def test_all_config(self):
        assert "reminder_run_hour" in get_all_config()


class TestChannels:

    def test_factory_follows_setting(self):
        assert isinstance(get_channel(), InternalDelivery)
        set_config("reminder_channel", "email")
        assert isinstance(get_channel(), EmailDelivery)

    def test_unknown_channel(self):
        with pytest.raises(ValueError):
            get_channel("pigeon")

    def test_email_invalid_address(self):
        result = EmailDelivery().send("not-an-address", "s", "b")
        assert not result.success
        assert "Invalid email" in result.error

    def test_email_without_credentials_fails_without_raising(self):
        channel = EmailDelivery()
        assert not channel.is_configured()
        result = channel.send("budi@example.com", "s", "b")
        assert not result.success
        assert result.channel == "email"

    def test_smtp_without_credentials(self):
        set_config("email_provider", "smtp")
        result = EmailDelivery().send("budi@example.com", "s", "b")
        assert not result.success
        assert "SMTP not configured" in result.error

    def test_timeout_from_settings(self):
        set_config("send_timeout_seconds", 3)
        assert EmailDelivery().timeout == 3
        assert EmailDelivery(timeout=1).timeout == 1

    def test_internal_notification_stored(self):
        result = InternalDelivery().send("budi@example.com", "Reminder", "body", user_id=7, related_id=3)
        assert result.success
        notes = get_notifications(7)
        assert len(notes) == 1
        assert notes[0]["title"] == "Reminder"
        assert notes[0]["related_id"] == 3
        assert get_notifications(7, unread_only=True)[0]["id"] == int(result.message_id)
