"""Resolution of Chatwoot contacts and agents to platform users.

Candidates are tried in priority order: explicit ``gigvora_user_id`` values
from attribute bags, then the contact identifier issued by the widget
(``gigvora-user-<id>``), then an e-mail lookup. A candidate only counts if the
user exists. Malformed candidates are skipped, never raised, and resolution
never creates users.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..models import User
from .events import NormalizedConversation, NormalizedMessage

logger = logging.getLogger(__name__)

USER_ID_ATTRIBUTE = "gigvora_user_id"
IDENTIFIER_PREFIX = "gigvora-user-"

_IDENTIFIER_RE = re.compile(rf"(?:{re.escape(IDENTIFIER_PREFIX)})?(\d+)", re.IGNORECASE)


def build_identifier(user_id: int) -> str:
    """Return the stable Chatwoot contact identifier for ``user_id``."""

    return f"{IDENTIFIER_PREFIX}{user_id}"


def parse_user_id(value: Any) -> int | None:
    """Parse an explicit numeric id; returns ``None`` unless it is a positive integer."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, float):
        return int(value) if value.is_integer() and value > 0 else None
    if isinstance(value, str):
        candidate = value.strip()
        if candidate.isdigit():
            number = int(candidate)
            return number if number > 0 else None
    return None


def parse_identifier(value: Any) -> int | None:
    """Parse a contact identifier such as ``gigvora-user-7`` or ``"7"``."""

    if not isinstance(value, str):
        return parse_user_id(value)
    match = _IDENTIFIER_RE.fullmatch(value.strip())
    if not match:
        return None
    return parse_user_id(match.group(1))


def _attribute(bag: Any, *path: str) -> Any:
    current = bag
    for key in path:
        if not isinstance(current, Mapping):
            return None
        current = current.get(key)
    return current


class IdentityResolver:
    """Read-only lookups of platform users for a single unit of work."""

    def __init__(self, session: Session) -> None:
        self._session = session
        self._known: dict[int, bool] = {}

    # ------------------------------------------------------------------
    # Public API

    def resolve_contact(self, conversation: NormalizedConversation) -> int | None:
        """Return the user id owning ``conversation`` or ``None``."""

        contact = conversation.contact
        explicit = (
            _attribute(conversation.additional_attributes, USER_ID_ATTRIBUTE),
            _attribute(conversation.custom_attributes, USER_ID_ATTRIBUTE),
            _attribute(conversation.meta, USER_ID_ATTRIBUTE),
            _attribute(contact, "custom_attributes", USER_ID_ATTRIBUTE),
            _attribute(contact, "additional_attributes", USER_ID_ATTRIBUTE),
        )
        return self._resolve(
            explicit,
            identifiers=(contact.get("identifier"),),
            emails=(contact.get("email"),),
        )

    def resolve_agent(
        self,
        conversation: NormalizedConversation,
        message: NormalizedMessage | None = None,
    ) -> int | None:
        """Return the user id of the message sender or conversation assignee."""

        sender = message.sender if message is not None else {}
        assignee = conversation.assignee
        explicit = (
            _attribute(sender, "additional_attributes", USER_ID_ATTRIBUTE),
            _attribute(sender, "custom_attributes", USER_ID_ATTRIBUTE),
            _attribute(assignee, "additional_attributes", USER_ID_ATTRIBUTE),
            _attribute(assignee, "custom_attributes", USER_ID_ATTRIBUTE),
        )
        return self._resolve(
            explicit,
            identifiers=(assignee.get("identifier"),),
            emails=(sender.get("email"), assignee.get("email")),
        )

    # ------------------------------------------------------------------
    # Helpers

    def _resolve(
        self,
        explicit: Iterable[Any],
        *,
        identifiers: Iterable[Any],
        emails: Iterable[Any],
    ) -> int | None:
        for candidate in explicit:
            user_id = parse_user_id(candidate)
            if user_id is not None and self._exists(user_id):
                return user_id
        for candidate in identifiers:
            user_id = parse_identifier(candidate)
            if user_id is not None and self._exists(user_id):
                return user_id
        for email in emails:
            user_id = self._by_email(email)
            if user_id is not None:
                return user_id
        return None

    def _exists(self, user_id: int) -> bool:
        if user_id not in self._known:
            self._known[user_id] = self._session.get(User, user_id) is not None
            if not self._known[user_id]:
                logger.debug("Skipping identity candidate %s: no such user", user_id)
        return self._known[user_id]

    def _by_email(self, email: Any) -> int | None:
        if not isinstance(email, str) or "@" not in email:
            return None
        statement = select(User.id).where(func.lower(User.email) == email.strip().lower())
        return self._session.execute(statement).scalars().first()


__all__ = [
    "IDENTIFIER_PREFIX",
    "IdentityResolver",
    "USER_ID_ATTRIBUTE",
    "build_identifier",
    "parse_identifier",
    "parse_user_id",
]
