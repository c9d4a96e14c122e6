"""End-to-end handling of a Chatwoot webhook delivery."""

from __future__ import annotations

import datetime as dt
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from functools import lru_cache

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..config import SupportSettings, get_support_settings
from ..models.session import apply_statement_timeout, get_session_factory, session_scope
from .cache import CacheBackend, InMemoryCache, build_cache
from .errors import SupportValidationError, TransientSyncError, WebhookAuthenticationError
from .events import UnhandledEvent, normalize_event
from .fanout import (
    CacheInvalidator,
    NotificationDispatcher,
    build_notification_dispatcher,
    dispatch_escalation,
)
from .identity import IdentityResolver
from .reconciler import ReconcileResult, SupportReconciler
from .repository import SupportRepository
from .signatures import verify_signature
from .sla import SlaPolicy

logger = logging.getLogger(__name__)


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


@dataclass
class WebhookResult:
    """Acknowledgement returned to the webhook caller."""

    status: str
    event: str | None = None
    reason: str | None = None
    thread_id: int | None = None
    support_case_id: int | None = None
    message_created: bool = False
    duplicate: bool = False
    escalated: bool = False

    @property
    def ignored(self) -> bool:
        return self.status == "ignored"

    @classmethod
    def skipped(cls, reason: str, event: str | None = None) -> "WebhookResult":
        return cls(status="ignored", event=event or None, reason=reason)

    @classmethod
    def from_reconcile(cls, event: str, result: ReconcileResult) -> "WebhookResult":
        return cls(
            status="processed",
            event=event,
            thread_id=result.thread_id,
            support_case_id=result.support_case_id,
            message_created=result.message_created,
            duplicate=result.duplicate,
            escalated=result.escalation is not None,
        )


class SupportSyncService:
    """Authenticates, normalises and reconciles webhook deliveries.

    The reconciliation and SLA evaluation for one delivery run inside a single
    transaction. Cache invalidation and escalation notices run only after that
    transaction committed.
    """

    def __init__(
        self,
        settings: SupportSettings,
        session_factory: sessionmaker[Session],
        *,
        cache: CacheBackend | None = None,
        notifier: NotificationDispatcher | None = None,
        clock: Callable[[], dt.datetime] = _utcnow,
    ) -> None:
        self.settings = settings
        self._session_factory = session_factory
        self._invalidator = CacheInvalidator(cache if cache is not None else InMemoryCache())
        self._notifier = notifier or build_notification_dispatcher(settings)
        self._policy = SlaPolicy.from_settings(settings.sla)
        self._clock = clock

    def process_webhook(
        self,
        raw_body: bytes,
        *,
        signature: str | None = None,
        event_name: str | None = None,
    ) -> WebhookResult:
        """Process one delivery.

        Raises:
            WebhookAuthenticationError: a signing secret is configured and the
                signature is missing, malformed or wrong.
            TransientSyncError: storage failed; the transaction was rolled back
                and redelivery is safe.
        """

        if not self.settings.is_enabled:
            logger.debug("Chatwoot integration disabled; ignoring webhook")
            return WebhookResult.skipped("integration_disabled", event_name)

        if not verify_signature(raw_body, signature, self.settings.webhook_token):
            logger.warning("Rejected Chatwoot webhook with invalid signature")
            raise WebhookAuthenticationError("Invalid Chatwoot webhook signature.")

        try:
            payload = json.loads(raw_body.decode("utf-8")) if raw_body else {}
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring Chatwoot webhook with malformed JSON: %s", exc)
            return WebhookResult.skipped("malformed_payload", event_name)

        event = normalize_event(event_name, payload, now=self._clock())
        if isinstance(event, UnhandledEvent):
            if event.malformed:
                logger.warning("Skipped Chatwoot event %r: %s", event.name, event.reason)
            else:
                logger.debug("Received Chatwoot webhook event %r with no handler", event.name)
            return WebhookResult.skipped(event.reason, event.name)

        try:
            with session_scope(self._session_factory) as session:
                apply_statement_timeout(session, self.settings.statement_timeout_ms)
                reconciler = SupportReconciler(
                    SupportRepository(session),
                    IdentityResolver(session),
                    policy=self._policy,
                    clock=self._clock,
                )
                result = reconciler.reconcile(event)
        except SupportValidationError as exc:
            logger.warning(
                "Skipped Chatwoot %s for conversation %s: %s",
                event.name,
                event.conversation.id,
                exc,
            )
            return WebhookResult.skipped("validation_failed", event.name)
        except SQLAlchemyError as exc:
            logger.error(
                "Storage failure while syncing Chatwoot conversation %s: %s",
                event.conversation.id,
                exc,
            )
            raise TransientSyncError(
                f"Failed to sync Chatwoot conversation {event.conversation.id}."
            ) from exc

        self._invalidator.invalidate_thread(result.thread_id, result.participant_ids)
        if result.escalation is not None:
            dispatch_escalation(self._notifier, result.escalation)

        logger.info(
            "Synced Chatwoot %s for conversation %s (thread=%s, new_message=%s, duplicate=%s)",
            event.name,
            event.conversation.id,
            result.thread_id,
            result.message_created,
            result.duplicate,
        )
        return WebhookResult.from_reconcile(event.name, result)


@lru_cache(maxsize=1)
def get_support_service() -> SupportSyncService:
    """Process-wide service wired from environment settings."""

    settings = get_support_settings()
    return SupportSyncService(
        settings,
        get_session_factory(),
        cache=build_cache(settings.cache_url),
    )


__all__ = ["SupportSyncService", "WebhookResult", "get_support_service"]
