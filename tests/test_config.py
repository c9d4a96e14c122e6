import logging

from supportsync.config import (
    DEFAULT_FIRST_RESPONSE_MINUTES,
    DEFAULT_STATEMENT_TIMEOUT_MS,
    get_support_settings,
    is_enabled,
    reset_support_settings_cache,
)

_VARS = (
    "CHATWOOT_ENABLED",
    "CHATWOOT_BASE_URL",
    "CHATWOOT_WEBSITE_TOKEN",
    "CHATWOOT_HMAC_TOKEN",
    "CHATWOOT_WEBHOOK_TOKEN",
    "CHATWOOT_INBOX_ID",
    "CHATWOOT_DEFAULT_LOCALE",
    "SUPPORT_SLA_FIRST_RESPONSE_MINUTES",
    "SUPPORT_SLA_RESOLUTION_MINUTES",
    "SUPPRESS_SUPPORT_NOTIFICATIONS",
    "SUPPORT_NOTIFICATION_URL",
    "CACHE_URL",
    "SUPPORT_SYNC_STATEMENT_TIMEOUT_MS",
)


def _clear(monkeypatch):
    for name in _VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults_without_environment(monkeypatch):
    _clear(monkeypatch)

    settings = get_support_settings()

    assert settings.enabled is False
    assert settings.is_enabled is False
    assert settings.default_locale == "en"
    assert settings.sla.first_response_minutes == DEFAULT_FIRST_RESPONSE_MINUTES
    assert settings.notifications_enabled is True
    assert settings.statement_timeout_ms == DEFAULT_STATEMENT_TIMEOUT_MS


def test_enabled_requires_base_url_and_website_token(monkeypatch):
    _clear(monkeypatch)
    monkeypatch.setenv("CHATWOOT_ENABLED", "true")
    monkeypatch.setenv("CHATWOOT_BASE_URL", "https://support.example.com")

    assert is_enabled() is False

    monkeypatch.setenv("CHATWOOT_WEBSITE_TOKEN", "  token  ")
    reset_support_settings_cache()

    assert is_enabled() is True
    assert get_support_settings().website_token == "token"


def test_sla_minutes_are_clamped_and_validated(monkeypatch, caplog):
    _clear(monkeypatch)
    monkeypatch.setenv("SUPPORT_SLA_FIRST_RESPONSE_MINUTES", "0")
    monkeypatch.setenv("SUPPORT_SLA_RESOLUTION_MINUTES", "soon")

    with caplog.at_level(logging.WARNING, logger="supportsync.config"):
        settings = get_support_settings()

    assert settings.sla.first_response_minutes == 1
    assert settings.sla.resolution_minutes == 720
    assert "SUPPORT_SLA_RESOLUTION_MINUTES" in caplog.text


def test_notifications_and_cache_switches(monkeypatch):
    _clear(monkeypatch)
    monkeypatch.setenv("SUPPRESS_SUPPORT_NOTIFICATIONS", "1")
    monkeypatch.setenv("CACHE_URL", "redis://cache:6379/0")
    monkeypatch.setenv("SUPPORT_SYNC_STATEMENT_TIMEOUT_MS", "abc")

    settings = get_support_settings()

    assert settings.notifications_enabled is False
    assert settings.cache_url == "redis://cache:6379/0"
    assert settings.statement_timeout_ms == DEFAULT_STATEMENT_TIMEOUT_MS


def test_settings_are_cached_until_reset(monkeypatch):
    _clear(monkeypatch)
    first = get_support_settings()
    monkeypatch.setenv("CHATWOOT_INBOX_ID", "9")

    assert get_support_settings() is first

    reset_support_settings_cache()
    assert get_support_settings().inbox_id == "9"
