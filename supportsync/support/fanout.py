"""Post-commit side effects: cache invalidation and escalation notifications.

Both run after the unit of work has committed and are best effort. A failure
here is logged and never changes the webhook outcome.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Protocol

import requests

from ..config import SupportSettings
from .cache import CacheBackend

logger = logging.getLogger(__name__)

THREAD_LIST_PREFIX = "messaging:threads:list"


def thread_cache_key(thread_id: int) -> str:
    return f"messaging:thread:{thread_id}"


def messages_cache_prefix(thread_id: int) -> str:
    return f"messaging:messages:{thread_id}"


def inbox_cache_prefix(user_id: int) -> str:
    return f"messaging:inbox:{user_id}"


@dataclass(frozen=True)
class SupportEscalation:
    """Snapshot of a newly escalated case, built inside the transaction."""

    support_case_id: int
    thread_id: int
    conversation_id: str | None
    breaches: tuple[str, ...]
    sla: dict[str, Any] = field(default_factory=dict)
    reason: str = "Support case breached SLA targets after Chatwoot event."

    def to_notification(self) -> dict[str, Any]:
        return {
            "category": "support",
            "priority": "critical",
            "type": "support_sla_escalation",
            "title": "Support SLA escalation triggered",
            "body": self.reason,
            "metadata": {
                "support_case_id": self.support_case_id,
                "thread_id": self.thread_id,
                "chatwoot_conversation_id": self.conversation_id,
                "breaches": list(self.breaches),
                "sla": dict(self.sla),
            },
        }


class CacheInvalidator:
    """Evicts read caches touched by a reconciled event."""

    def __init__(self, cache: CacheBackend) -> None:
        self._cache = cache

    def invalidate_thread(self, thread_id: int | None, participant_ids: Iterable[int] = ()) -> None:
        try:
            self._cache.flush_by_prefix(THREAD_LIST_PREFIX)
            if thread_id:
                self._cache.delete(thread_cache_key(thread_id))
                self._cache.flush_by_prefix(messages_cache_prefix(thread_id))
            for user_id in {uid for uid in participant_ids if uid}:
                self._cache.flush_by_prefix(inbox_cache_prefix(user_id))
        except Exception:  # noqa: BLE001 - stale reads are tolerable
            logger.warning("Cache invalidation failed for thread %s", thread_id, exc_info=True)


class NotificationDispatcher(Protocol):
    def notify(self, notification: dict[str, Any]) -> None: ...


class NullNotificationDispatcher:
    """Used when support notifications are suppressed."""

    def notify(self, notification: dict[str, Any]) -> None:
        logger.debug("Support notification suppressed: %s", notification.get("type"))


class LoggingNotificationDispatcher:
    """Records escalations in the application log only."""

    def __init__(self, log: logging.Logger | None = None) -> None:
        self._log = log or logger

    def notify(self, notification: dict[str, Any]) -> None:
        metadata = notification.get("metadata", {})
        self._log.warning(
            "%s: case=%s thread=%s conversation=%s",
            notification.get("title"),
            metadata.get("support_case_id"),
            metadata.get("thread_id"),
            metadata.get("chatwoot_conversation_id"),
        )


class HttpNotificationDispatcher:
    """POSTs notifications as JSON to an alerting endpoint."""

    def __init__(
        self,
        url: str,
        *,
        session: requests.Session | None = None,
        timeout: float = 5.0,
    ) -> None:
        self.url = url
        self.session = session or requests.Session()
        self.timeout = timeout

    def notify(self, notification: dict[str, Any]) -> None:
        response = self.session.post(self.url, json=notification, timeout=self.timeout)
        response.raise_for_status()


def dispatch_escalation(dispatcher: NotificationDispatcher, escalation: SupportEscalation) -> bool:
    """Send ``escalation`` through ``dispatcher``; never raises.

    Returns ``True`` when the dispatcher accepted the notification.
    """

    try:
        dispatcher.notify(escalation.to_notification())
    except Exception:  # noqa: BLE001 - delivery is best effort
        logger.warning(
            "Failed to dispatch SLA escalation for support case %s",
            escalation.support_case_id,
            exc_info=True,
        )
        return False
    return True


def build_notification_dispatcher(settings: SupportSettings) -> NotificationDispatcher:
    if not settings.notifications_enabled:
        return NullNotificationDispatcher()
    if settings.notification_url:
        return HttpNotificationDispatcher(settings.notification_url)
    return LoggingNotificationDispatcher()


__all__ = [
    "CacheInvalidator",
    "HttpNotificationDispatcher",
    "LoggingNotificationDispatcher",
    "NotificationDispatcher",
    "NullNotificationDispatcher",
    "SupportEscalation",
    "THREAD_LIST_PREFIX",
    "build_notification_dispatcher",
    "dispatch_escalation",
    "inbox_cache_prefix",
    "messages_cache_prefix",
    "thread_cache_key",
]
