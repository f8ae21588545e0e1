"""Tests for Settings validation."""

import pytest

from catalog.core.config import Settings, get_settings


def test_settings_reject_short_secret():
    """SECRET_KEY shorter than 32 characters is refused."""
    with pytest.raises(ValueError):
        Settings(_env_file=None, database_url="sqlite://", secret_key="short")


def test_settings_reject_invalid_database_url():
    """DATABASE_URL must look like a connection string."""
    with pytest.raises(ValueError):
        Settings(_env_file=None, database_url="not-a-url", secret_key="x" * 40)


def test_settings_defaults():
    """Audit defaults are applied when not configured."""
    settings = Settings(_env_file=None, database_url="sqlite://", secret_key="x" * 40)
    assert settings.audit_default_actor == "admin"
    assert settings.audit_retention_days == 30
    assert settings.admin_logs_page_size == 50


def test_get_settings_is_cached():
    """get_settings returns the same instance on every call."""
    assert get_settings() is get_settings()
