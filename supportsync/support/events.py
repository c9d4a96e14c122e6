"""Normalisation of Chatwoot webhook envelopes.

Chatwoot nests the interesting payload differently per event: conversation
events carry the conversation at the top level (or under ``conversation``),
``message_created`` carries the message at the top level with the
conversation nested inside it, and some relays wrap everything in a
``payload`` key. :func:`normalize_event` folds all of these into one of three
event types so that downstream code never has to guess the shape again.
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Union

CONVERSATION_EVENTS = frozenset(
    {"conversation_created", "conversation_updated", "conversation_status_changed"}
)
MESSAGE_EVENTS = frozenset({"message_created"})

# Chatwoot's integer message_type enum, for relays that forward raw rows.
_MESSAGE_TYPE_CODES = {0: "incoming", 1: "outgoing", 2: "activity", 3: "template"}

_TAG_RE = re.compile(r"<[^>]*>")
_SPACE_RE = re.compile(r"\s+")
_EPOCH_MILLIS_CUTOFF = 9_999_999_999


@dataclass
class NormalizedConversation:
    """Canonical view of a Chatwoot conversation."""

    id: str
    inbox_id: Any = None
    account_id: Any = None
    status: str | None = None
    priority: str | None = None
    contact: dict[str, Any] = field(default_factory=dict)
    additional_attributes: dict[str, Any] = field(default_factory=dict)
    custom_attributes: dict[str, Any] = field(default_factory=dict)
    meta: dict[str, Any] = field(default_factory=dict)
    assignee: dict[str, Any] = field(default_factory=dict)
    last_activity_at: datetime | None = None
    updated_at: datetime | None = None
    last_message_content: Any = None


@dataclass
class NormalizedMessage:
    """Canonical view of a Chatwoot message."""

    id: str | None
    message_type: str
    content: Any
    body: str
    created_at: datetime
    sender: dict[str, Any] = field(default_factory=dict)
    attachments: list[dict[str, Any]] = field(default_factory=list)
    snapshot: dict[str, Any] = field(default_factory=dict)

    @property
    def is_incoming(self) -> bool:
        return self.message_type == "incoming"


@dataclass(frozen=True)
class ConversationEvent:
    name: str
    conversation: NormalizedConversation


@dataclass(frozen=True)
class MessageEvent:
    name: str
    conversation: NormalizedConversation
    message: NormalizedMessage


@dataclass(frozen=True)
class UnhandledEvent:
    name: str
    reason: str = "unrouted"

    @property
    def malformed(self) -> bool:
        return self.reason != "unrouted"


WebhookEvent = Union[ConversationEvent, MessageEvent, UnhandledEvent]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_dict(value: Any) -> dict[str, Any]:
    return dict(value) if isinstance(value, Mapping) else {}


def ensure_datetime(value: Any, *, default: datetime | None = None) -> datetime:
    """Coerce epoch seconds/milliseconds, ISO strings or datetimes to aware UTC.

    Unparseable or missing values fall back to ``default`` (or now).
    """

    fallback = default or _utcnow()
    if value is None or value == "":
        return fallback
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = value / 1000 if value > _EPOCH_MILLIS_CUTOFF else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return fallback
    elif isinstance(value, str):
        candidate = value.strip()
        if candidate.isdigit():
            return ensure_datetime(int(candidate), default=fallback)
        if candidate.endswith("Z"):
            candidate = candidate[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(candidate)
        except ValueError:
            return fallback
    else:
        return fallback
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


_UNPARSED = datetime.min.replace(tzinfo=timezone.utc)


def _optional_datetime(value: Any) -> datetime | None:
    if not value:
        return None
    parsed = ensure_datetime(value, default=_UNPARSED)
    return None if parsed == _UNPARSED else parsed


def sanitize_body(content: Any) -> str:
    """Render message content as plain, whitespace-collapsed text."""

    if content is None:
        return ""
    if isinstance(content, str):
        stripped = _TAG_RE.sub(" ", content)
        return _SPACE_RE.sub(" ", stripped).strip()
    if isinstance(content, (Mapping, list, tuple)):
        return json.dumps(content, sort_keys=True, default=str)
    return str(content)


def _normalize_message_type(value: Any) -> str:
    if isinstance(value, int) and not isinstance(value, bool):
        return _MESSAGE_TYPE_CODES.get(value, str(value))
    if value is None or value == "":
        return "text"
    return str(value).strip().lower()


def _unwrap(payload: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    nested = payload.get(key)
    while isinstance(nested, Mapping):
        payload = nested
        nested = payload.get(key)
    return payload


def normalize_conversation(
    payload: Mapping[str, Any] | None, *, fallback_id: Any = None
) -> NormalizedConversation | None:
    """Build a :class:`NormalizedConversation`, or ``None`` without an id."""

    if not isinstance(payload, Mapping):
        return None
    raw = _unwrap(payload, "conversation")
    conversation_id = raw.get("id", fallback_id)
    if conversation_id is None or conversation_id == "":
        return None
    meta = _as_dict(raw.get("meta"))
    contact = raw.get("contact") or raw.get("customer") or meta.get("sender")
    assignee = raw.get("assignee") or meta.get("assignee")
    last_activity = raw.get("last_activity_at")
    updated = raw.get("updated_at") or raw.get("timestamp")
    return NormalizedConversation(
        id=str(conversation_id),
        inbox_id=raw.get("inbox_id"),
        account_id=raw.get("account_id"),
        status=(str(raw["status"]).lower() if raw.get("status") is not None else None),
        priority=(str(raw["priority"]).lower() if raw.get("priority") is not None else None),
        contact=_as_dict(contact),
        additional_attributes=_as_dict(
            raw.get("additional_attributes") or raw.get("additionalAttributes")
        ),
        custom_attributes=_as_dict(raw.get("custom_attributes")),
        meta=meta,
        assignee=_as_dict(assignee),
        last_activity_at=_optional_datetime(last_activity),
        updated_at=_optional_datetime(updated),
        last_message_content=raw.get("last_message_content"),
    )


def normalize_message(
    payload: Mapping[str, Any] | None, *, now: datetime | None = None
) -> NormalizedMessage | None:
    if not isinstance(payload, Mapping):
        return None
    raw = _unwrap(payload, "message")
    message_id = raw.get("id", raw.get("message_id"))
    sender = _as_dict(raw.get("sender"))
    attachments = [
        dict(item) for item in raw.get("attachments") or [] if isinstance(item, Mapping)
    ]
    message_type = _normalize_message_type(raw.get("message_type"))
    snapshot = {
        "id": message_id,
        "message_type": message_type,
        "content": raw.get("content"),
        "sender_id": raw.get("sender_id", sender.get("id")),
        "sender_type": raw.get("sender_type", sender.get("type")),
        "account_id": raw.get("account_id"),
        "inbox_id": raw.get("inbox_id"),
        "created_at": raw.get("created_at"),
    }
    return NormalizedMessage(
        id=str(message_id) if message_id not in (None, "") else None,
        message_type=message_type,
        content=raw.get("content"),
        body=sanitize_body(raw.get("content")),
        created_at=ensure_datetime(raw.get("created_at"), default=now),
        sender=sender,
        attachments=attachments,
        snapshot=snapshot,
    )


def resolve_event_name(event_name: str | None, body: Mapping[str, Any]) -> str:
    name = event_name or body.get("event") or body.get("event_name") or ""
    return str(name).strip().lower()


def normalize_event(
    event_name: str | None, payload: Any, *, now: datetime | None = None
) -> WebhookEvent:
    """Classify a webhook payload and normalise it into a typed event."""

    if not isinstance(payload, Mapping):
        return UnhandledEvent(name=(event_name or "").lower(), reason="malformed_payload")
    wrapped = payload.get("payload")
    body: Mapping[str, Any] = wrapped if isinstance(wrapped, Mapping) else payload
    name = resolve_event_name(event_name, body)

    if name in CONVERSATION_EVENTS:
        conversation = normalize_conversation(body)
        if conversation is None:
            return UnhandledEvent(name=name, reason="missing_conversation")
        return ConversationEvent(name=name, conversation=conversation)

    if name in MESSAGE_EVENTS:
        nested = body.get("message")
        message_body: Mapping[str, Any] = nested if isinstance(nested, Mapping) else body
        conversation_id = message_body.get("conversation_id")
        conversation_source = body.get("conversation")
        if not isinstance(conversation_source, Mapping):
            conversation_source = message_body.get("conversation")
        if isinstance(conversation_source, Mapping):
            conversation = normalize_conversation(
                conversation_source, fallback_id=conversation_id
            )
        else:
            conversation = normalize_conversation({"id": conversation_id})
        message = normalize_message(message_body, now=now)
        if conversation is None:
            return UnhandledEvent(name=name, reason="missing_conversation")
        if message is None:
            return UnhandledEvent(name=name, reason="missing_message")
        return MessageEvent(name=name, conversation=conversation, message=message)

    return UnhandledEvent(name=name)


__all__ = [
    "CONVERSATION_EVENTS",
    "ConversationEvent",
    "MESSAGE_EVENTS",
    "MessageEvent",
    "NormalizedConversation",
    "NormalizedMessage",
    "UnhandledEvent",
    "WebhookEvent",
    "ensure_datetime",
    "normalize_conversation",
    "normalize_event",
    "normalize_message",
    "sanitize_body",
]
