"""Widget session descriptors that seed the Chatwoot contact identity.

The contact identifier and the ``gigvora_user_id`` custom attribute issued
here are what :mod:`supportsync.support.identity` later uses to map inbound
conversations back to the platform user.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from typing import Any

from sqlalchemy.orm import Session, sessionmaker

from ..config import SupportSettings
from ..models import User
from ..models.session import get_session_factory
from .errors import WidgetSessionError
from .identity import USER_ID_ATTRIBUTE, build_identifier, parse_user_id
from .schemas import WidgetContact, WidgetSecureMode, WidgetSession, WidgetSla
from .sla import as_utc


def sanitize_base_url(base_url: str | None) -> str | None:
    if not base_url:
        return None
    return str(base_url).rstrip("/")


def _clean(values: Any) -> list[str]:
    cleaned = []
    for value in values:
        text = value.strip() if isinstance(value, str) else str(value)
        if text:
            cleaned.append(text)
    return cleaned


def normalize_memberships(raw: Any, fallback: Any = None) -> list[str]:
    """Accept a list, a JSON-encoded list or a comma-separated string.

    Falls back to the non-blank strings in ``fallback`` when ``raw`` is empty.
    """

    if isinstance(raw, (list, tuple)):
        return _clean(raw)
    if isinstance(raw, str) and raw.strip():
        try:
            parsed = json.loads(raw)
        except ValueError:
            parsed = None
        if isinstance(parsed, list):
            return _clean(parsed)
        return _clean(raw.split(","))
    if isinstance(fallback, (list, tuple)):
        return [value for value in fallback if isinstance(value, str) and value.strip()]
    return []


def identifier_hash(identifier: str, hmac_token: str | None) -> str | None:
    """HMAC-SHA256 of ``identifier`` used by Chatwoot's secure mode."""

    if not identifier or not hmac_token:
        return None
    return hmac.new(hmac_token.encode("utf-8"), identifier.encode("utf-8"), hashlib.sha256).hexdigest()


class WidgetSessionIssuer:
    """Builds :class:`WidgetSession` descriptors for signed-in users."""

    def __init__(
        self,
        settings: SupportSettings,
        session_factory: sessionmaker[Session] | None = None,
    ) -> None:
        self.settings = settings
        self._session_factory = session_factory

    def issue(
        self,
        user_id: Any,
        *,
        ip_address: str | None = None,
        session_id: str | None = None,
    ) -> WidgetSession:
        settings = self.settings
        if not settings.is_enabled:
            return WidgetSession(enabled=False)

        normalized_id = parse_user_id(user_id)
        if normalized_id is None:
            raise WidgetSessionError(
                "A valid user id is required to bootstrap the Chatwoot widget."
            )

        factory = self._session_factory or get_session_factory()
        with factory() as session:
            user = session.get(User, normalized_id)
            if user is None:
                raise WidgetSessionError("User not found.", not_found=True)
            return self._describe(user, ip_address=ip_address, session_id=session_id)

    def _describe(
        self, user: User, *, ip_address: str | None, session_id: str | None
    ) -> WidgetSession:
        settings = self.settings
        name_parts = [part for part in (user.first_name, user.last_name) if part]
        display_name = " ".join(name_parts) if name_parts else user.email or f"Member #{user.id}"
        memberships = normalize_memberships(user.memberships, [user.user_type])
        identifier = build_identifier(user.id)
        last_seen = as_utc(user.last_seen_at)

        return WidgetSession(
            enabled=True,
            base_url=sanitize_base_url(settings.base_url),
            website_token=settings.website_token,
            locale=settings.default_locale or "en",
            inbox_id=settings.inbox_id,
            portal_token=settings.portal_token,
            contact=WidgetContact(
                identifier=identifier,
                name=display_name,
                email=user.email,
                avatar_url=user.avatar_url,
            ),
            secure_mode=WidgetSecureMode(
                identifier=identifier,
                identifier_hash=identifier_hash(identifier, settings.hmac_token),
            ),
            custom_attributes={
                USER_ID_ATTRIBUTE: user.id,
                "memberships": memberships,
                "primary_dashboard": user.primary_dashboard or (memberships[0] if memberships else "user"),
                "user_type": user.user_type,
                "account_status": user.status,
                "location": user.location,
                "last_seen_at": last_seen.isoformat() if last_seen else None,
                "session_id": session_id,
                "ip_address": ip_address,
            },
            sla=WidgetSla(
                first_response_minutes=settings.sla.first_response_minutes,
                resolution_minutes=settings.sla.resolution_minutes,
            ),
        )


__all__ = [
    "WidgetSessionIssuer",
    "identifier_hash",
    "normalize_memberships",
    "sanitize_base_url",
]
