"""Runtime configuration for the Chatwoot support integration.

Settings are read from the environment once and cached; call
:func:`reset_support_settings_cache` after changing variables (tests do this
through ``monkeypatch``).
"""

from __future__ import annotations

import dataclasses
import logging
import os
from functools import lru_cache

logger = logging.getLogger(__name__)

DEFAULT_FIRST_RESPONSE_MINUTES = 30
DEFAULT_RESOLUTION_MINUTES = 720
DEFAULT_STATEMENT_TIMEOUT_MS = 5000

_TRUTHY = {"1", "true", "yes", "on"}


@dataclasses.dataclass(frozen=True)
class SlaSettings:
    """Service-level thresholds, in minutes."""

    first_response_minutes: int = DEFAULT_FIRST_RESPONSE_MINUTES
    resolution_minutes: int = DEFAULT_RESOLUTION_MINUTES


@dataclasses.dataclass(frozen=True)
class SupportSettings:
    """Connection parameters and behaviour switches for the integration."""

    enabled: bool = False
    base_url: str | None = None
    website_token: str | None = None
    hmac_token: str | None = None
    webhook_token: str | None = None
    inbox_id: str | None = None
    portal_token: str | None = None
    default_locale: str = "en"
    sla: SlaSettings = dataclasses.field(default_factory=SlaSettings)
    notifications_enabled: bool = True
    notification_url: str | None = None
    cache_url: str | None = None
    statement_timeout_ms: int = DEFAULT_STATEMENT_TIMEOUT_MS

    @property
    def is_enabled(self) -> bool:
        return bool(self.enabled and self.base_url and self.website_token)


def _optional(name: str) -> str | None:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def _flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUTHY


def _minutes(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r, using %s", name, raw, default)
        return default
    return max(value, 1)


@lru_cache(maxsize=1)
def get_support_settings() -> SupportSettings:
    """Load settings from the environment."""

    timeout_raw = os.getenv("SUPPORT_SYNC_STATEMENT_TIMEOUT_MS")
    try:
        timeout_ms = int(timeout_raw) if timeout_raw else DEFAULT_STATEMENT_TIMEOUT_MS
    except ValueError:
        logger.warning("Ignoring non-numeric SUPPORT_SYNC_STATEMENT_TIMEOUT_MS=%r", timeout_raw)
        timeout_ms = DEFAULT_STATEMENT_TIMEOUT_MS

    return SupportSettings(
        enabled=_flag("CHATWOOT_ENABLED"),
        base_url=_optional("CHATWOOT_BASE_URL"),
        website_token=_optional("CHATWOOT_WEBSITE_TOKEN"),
        hmac_token=_optional("CHATWOOT_HMAC_TOKEN"),
        webhook_token=_optional("CHATWOOT_WEBHOOK_TOKEN"),
        inbox_id=_optional("CHATWOOT_INBOX_ID"),
        portal_token=_optional("CHATWOOT_PORTAL_TOKEN"),
        default_locale=_optional("CHATWOOT_DEFAULT_LOCALE") or "en",
        sla=SlaSettings(
            first_response_minutes=_minutes(
                "SUPPORT_SLA_FIRST_RESPONSE_MINUTES", DEFAULT_FIRST_RESPONSE_MINUTES
            ),
            resolution_minutes=_minutes(
                "SUPPORT_SLA_RESOLUTION_MINUTES", DEFAULT_RESOLUTION_MINUTES
            ),
        ),
        notifications_enabled=not _flag("SUPPRESS_SUPPORT_NOTIFICATIONS"),
        notification_url=_optional("SUPPORT_NOTIFICATION_URL"),
        cache_url=_optional("CACHE_URL"),
        statement_timeout_ms=timeout_ms,
    )


def reset_support_settings_cache() -> None:
    """Clear cached settings; useful in tests when env vars change."""

    get_support_settings.cache_clear()


def is_enabled() -> bool:
    """Return whether the integration is fully configured."""

    return get_support_settings().is_enabled


__all__ = [
    "SlaSettings",
    "SupportSettings",
    "get_support_settings",
    "is_enabled",
    "reset_support_settings_cache",
]
