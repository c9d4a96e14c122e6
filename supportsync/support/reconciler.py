"""Fold normalised Chatwoot events into threads, participants, messages and cases.

:class:`SupportReconciler` performs one event's worth of work against a single
session. It never commits; the caller owns the transaction, so any exception
raised here leaves nothing behind once the caller rolls back. Lookups take row
locks, which serialises concurrent deliveries for the same conversation.
"""

from __future__ import annotations

import datetime as dt
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from ..models import Message, MessageThread, SupportCase
from .errors import SupportValidationError
from .events import (
    ConversationEvent,
    MessageEvent,
    NormalizedConversation,
    NormalizedMessage,
    sanitize_body,
)
from .fanout import SupportEscalation
from .identity import IdentityResolver
from .repository import SupportRepository
from .sla import (
    FIRST_RESPONSE,
    SlaPolicy,
    apply_sla_escalations,
    as_utc,
    is_sla_escalated,
    parse_timestamp,
)

logger = logging.getLogger(__name__)

SUBJECT_MAX_LENGTH = 250
REASON_MAX_LENGTH = 255
PREVIEW_MAX_LENGTH = 300
DEFAULT_REASON = "Chatwoot conversation"

# Participant roles may only be promoted along this ranking.
ROLE_RANK = {"participant": 0, "system": 0, "support": 1, "owner": 2}

_CLOSED_STATUSES = frozenset({"resolved", "closed"})

# Chatwoot-side time of the latest resolution, compared with message timestamps.
RESOLVED_AT_KEY = "chatwoot_resolved_at"

_FIRST_RESPONSE_REASON = "Customer waited longer than the configured SLA for a response."
_RESOLUTION_REASON = "Support resolution SLA exceeded while handling a Chatwoot conversation."


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def map_conversation_status(status: str | None) -> str:
    """Translate a Chatwoot conversation status into a support case status."""

    value = (status or "").strip().lower()
    if value in _CLOSED_STATUSES:
        return value
    if value == "pending":
        return "waiting_on_customer"
    return "in_progress"


def map_conversation_priority(priority: str | None) -> str:
    value = (priority or "").strip().lower()
    if value in {"urgent", "high", "low"}:
        return value
    return "medium"


def merge_metadata(base: Mapping[str, Any] | None, patch: Mapping[str, Any]) -> dict[str, Any]:
    """Return ``base`` overlaid with the non-``None`` entries of ``patch``."""

    merged = dict(base or {})
    merged.update({key: value for key, value in patch.items() if value is not None})
    return merged


def build_message_metadata(message: NormalizedMessage) -> dict[str, Any]:
    return {
        "chatwoot_message_id": message.id,
        "chatwoot_message_type": message.message_type,
        "chatwoot_payload": dict(message.snapshot),
        "attachments": [
            {
                "id": attachment.get("id"),
                "file_type": attachment.get("file_type") or attachment.get("fileType"),
                "file_name": attachment.get("file_name") or attachment.get("fileName"),
                "file_size": attachment.get("file_size") or attachment.get("fileSize"),
                "data_url": attachment.get("data_url") or attachment.get("dataUrl"),
            }
            for attachment in message.attachments
        ],
    }


def _file_size(value: Any) -> int:
    try:
        size = int(value)
    except (TypeError, ValueError):
        return 0
    return max(size, 0)


def build_attachment_fields(attachment: Mapping[str, Any], message_id: str) -> dict[str, Any]:
    """Column values for a :class:`~supportsync.models.MessageAttachment`."""

    attachment_id = attachment.get("id")
    return {
        "storage_key": f"chatwoot:{attachment_id if attachment_id is not None else message_id}",
        "file_name": str(attachment.get("file_name") or attachment.get("fileName") or "attachment")[
            :255
        ],
        "mime_type": str(
            attachment.get("file_type")
            or attachment.get("content_type")
            or "application/octet-stream"
        )[:128],
        "file_size": _file_size(attachment.get("file_size") or attachment.get("fileSize")),
        "meta": {
            "chatwoot_attachment_id": attachment_id,
            "data_url": attachment.get("data_url") or attachment.get("dataUrl"),
            "fallback_url": attachment.get("thumb_url") or attachment.get("download_url"),
        },
    }


def _later(current: dt.datetime | None, candidate: dt.datetime) -> bool:
    current = as_utc(current)
    return current is None or candidate >= current


@dataclass
class ReconcileResult:
    """What a single event changed; consumed by the post-commit fan-out."""

    thread_id: int
    support_case_id: int | None
    conversation_id: str
    participant_ids: list[int] = field(default_factory=list)
    message_created: bool = False
    duplicate: bool = False
    message_id: int | None = None
    escalation: SupportEscalation | None = None


class SupportReconciler:
    """Apply conversation and message events inside the caller's transaction."""

    def __init__(
        self,
        repository: SupportRepository,
        resolver: IdentityResolver,
        *,
        policy: SlaPolicy | None = None,
        clock: Callable[[], dt.datetime] = _utcnow,
    ) -> None:
        self.repository = repository
        self.resolver = resolver
        self.policy = policy or SlaPolicy()
        self.clock = clock

    def reconcile(self, event: ConversationEvent | MessageEvent) -> ReconcileResult:
        conversation = event.conversation
        message = event.message if isinstance(event, MessageEvent) else None
        now = as_utc(self.clock())

        owner_id = self.resolver.resolve_contact(conversation)
        thread = self._ensure_thread(conversation, owner_id)
        if owner_id is not None:
            self._ensure_participant(thread.id, owner_id, "owner")
        support_case = self._ensure_case(thread, conversation, owner_id, now)

        record: Message | None = None
        duplicate = False
        if message is None:
            self._apply_conversation_status(support_case, conversation, now)
        elif message.id is None:
            logger.warning(
                "Skipping Chatwoot message without an id on conversation %s", conversation.id
            )
            self._apply_conversation_status(support_case, conversation, now)
        else:
            record = self.repository.find_message(thread.id, message.id)
            if record is not None:
                duplicate = True
                logger.debug(
                    "Duplicate delivery of Chatwoot message %s on thread %s", message.id, thread.id
                )
                record = None
            else:
                record = self._insert_message(thread, support_case, conversation, message, owner_id)

        evaluation = apply_sla_escalations(support_case, now=now, policy=self.policy)
        escalation = None
        if evaluation.first_escalation:
            escalation = SupportEscalation(
                support_case_id=support_case.id,
                thread_id=thread.id,
                conversation_id=conversation.id,
                breaches=evaluation.breaches,
                sla=dict(evaluation.sla),
                reason=(
                    _FIRST_RESPONSE_REASON
                    if FIRST_RESPONSE in evaluation.breaches
                    else _RESOLUTION_REASON
                ),
            )

        self.repository.flush()
        return ReconcileResult(
            thread_id=thread.id,
            support_case_id=support_case.id,
            conversation_id=conversation.id,
            participant_ids=self.repository.participant_user_ids(thread.id),
            message_created=record is not None,
            duplicate=duplicate,
            message_id=record.id if record is not None else None,
            escalation=escalation,
        )

    # ------------------------------------------------------------------
    # Threads and participants

    def _ensure_thread(
        self, conversation: NormalizedConversation, owner_id: int | None
    ) -> MessageThread:
        patch = {
            "chatwoot_conversation_id": conversation.id,
            "chatwoot_inbox_id": conversation.inbox_id,
            "chatwoot_account_id": conversation.account_id,
            "chatwoot_status": conversation.status,
            "chatwoot_priority": conversation.priority,
            "routing_key": conversation.additional_attributes.get("routing_key"),
        }
        thread = self.repository.find_thread_by_conversation_id(conversation.id)
        if thread is not None:
            thread.meta = merge_metadata(thread.meta, patch)
            return thread

        if owner_id is None:
            raise SupportValidationError(
                f"Unable to create support thread for conversation {conversation.id} "
                "without a resolvable user."
            )
        sender = conversation.meta.get("sender")
        subject = (
            (sender.get("name") if isinstance(sender, Mapping) else None)
            or conversation.additional_attributes.get("subject")
            or f"Support conversation #{conversation.id}"
        )
        thread = self.repository.create_thread(
            conversation_id=conversation.id,
            subject=str(subject)[:SUBJECT_MAX_LENGTH],
            created_by=owner_id,
            metadata=merge_metadata({}, patch),
            last_message_at=conversation.last_activity_at,
            last_message_preview=sanitize_body(conversation.last_message_content)[
                :PREVIEW_MAX_LENGTH
            ],
        )
        logger.info("Created support thread %s for conversation %s", thread.id, conversation.id)
        return thread

    def _ensure_participant(self, thread_id: int, user_id: int, role: str) -> None:
        participant = self.repository.get_participant(thread_id, user_id)
        if participant is None:
            self.repository.add_participant(thread_id, user_id, role)
            return
        if ROLE_RANK.get(role, 0) > ROLE_RANK.get(participant.role, 0):
            participant.role = role

    # ------------------------------------------------------------------
    # Support cases

    def _ensure_case(
        self,
        thread: MessageThread,
        conversation: NormalizedConversation,
        owner_id: int | None,
        now: dt.datetime,
    ) -> SupportCase:
        patch = {
            "chatwoot_conversation_id": conversation.id,
            "chatwoot_inbox_id": conversation.inbox_id,
            "chatwoot_account_id": conversation.account_id,
            "chatwoot_status": conversation.status,
            "routing_key": conversation.additional_attributes.get("routing_key"),
        }
        issue_type = conversation.additional_attributes.get("issue_type")
        support_case = self.repository.find_case(thread.id)
        if support_case is None:
            return self.repository.create_case(
                thread_id=thread.id,
                status=map_conversation_status(conversation.status),
                priority=map_conversation_priority(conversation.priority),
                reason=str(issue_type or DEFAULT_REASON)[:REASON_MAX_LENGTH],
                metadata=merge_metadata({}, patch),
                escalated_by=owner_id,
                escalated_at=now,
            )

        support_case.meta = merge_metadata(support_case.meta, patch)
        if issue_type:
            support_case.reason = str(issue_type)[:REASON_MAX_LENGTH]
        if conversation.priority is not None:
            priority = map_conversation_priority(conversation.priority)
            if support_case.priority == "urgent" and is_sla_escalated(support_case.meta):
                priority = "urgent"
            support_case.priority = priority
        return support_case

    def _apply_conversation_status(
        self,
        support_case: SupportCase,
        conversation: NormalizedConversation,
        now: dt.datetime,
    ) -> None:
        if conversation.status is None:
            return
        status = map_conversation_status(conversation.status)
        if status not in _CLOSED_STATUSES:
            _clear_resolution(support_case, status)
            return
        support_case.status = status
        if support_case.resolved_at is None:
            support_case.resolved_at = now
        resolver_id = self.resolver.resolve_agent(conversation)
        if resolver_id is not None:
            support_case.resolved_by = resolver_id
        support_case.meta = _mark_resolved(
            support_case.meta, conversation.updated_at or conversation.last_activity_at
        )

    # ------------------------------------------------------------------
    # Messages

    def _insert_message(
        self,
        thread: MessageThread,
        support_case: SupportCase,
        conversation: NormalizedConversation,
        message: NormalizedMessage,
        owner_id: int | None,
    ) -> Message:
        timestamp = message.created_at
        incoming = message.is_incoming
        if incoming:
            sender_id = owner_id
        else:
            sender_id = self.resolver.resolve_agent(conversation, message)
        if sender_id is not None:
            self._ensure_participant(thread.id, sender_id, "participant" if incoming else "support")

        record = self.repository.add_message(
            thread_id=thread.id,
            sender_id=sender_id,
            body=message.body,
            external_message_id=message.id,
            metadata=build_message_metadata(message),
            delivered_at=timestamp,
            attachments=[
                build_attachment_fields(attachment, message.id)
                for attachment in message.attachments
            ],
        )

        if _later(thread.last_message_at, timestamp):
            thread.last_message_at = timestamp
            thread.last_message_preview = message.body[:PREVIEW_MAX_LENGTH]
        thread.meta = merge_metadata(
            thread.meta,
            {"chatwoot_last_message_id": message.id, "chatwoot_status": conversation.status},
        )

        activity_key = "last_customer_message_at" if incoming else "last_agent_message_at"
        case_patch: dict[str, Any] = {}
        if _later(parse_timestamp((support_case.meta or {}).get(activity_key)), timestamp):
            case_patch[activity_key] = timestamp.isoformat()

        if not incoming:
            if support_case.first_response_at is None:
                support_case.first_response_at = timestamp
            if sender_id is not None:
                support_case.assigned_to = sender_id
                support_case.assigned_by = sender_id
                if support_case.assigned_at is None:
                    support_case.assigned_at = timestamp

        status = map_conversation_status(conversation.status)
        resolved_anchor = parse_timestamp((support_case.meta or {}).get(RESOLVED_AT_KEY))
        if (
            support_case.status in _CLOSED_STATUSES
            and resolved_anchor is not None
            and timestamp <= resolved_anchor
        ):
            logger.debug(
                "Message %s predates resolution of case %s; status kept",
                message.id,
                support_case.id,
            )
        elif incoming:
            _clear_resolution(support_case, "in_progress")
        elif conversation.status is not None and status in _CLOSED_STATUSES:
            support_case.status = status
            if support_case.resolved_at is None:
                support_case.resolved_at = timestamp
            if sender_id is not None:
                support_case.resolved_by = sender_id
            support_case.meta = _mark_resolved(
                support_case.meta, conversation.updated_at or timestamp
            )
        elif conversation.status is not None:
            _clear_resolution(support_case, status)

        support_case.meta = merge_metadata(support_case.meta, case_patch)
        return record


def _mark_resolved(metadata: Mapping[str, Any] | None, anchor: dt.datetime | None) -> dict[str, Any]:
    """Record a Chatwoot resolution; the anchor only moves forward."""

    patch: dict[str, Any] = {"resolution_source": "chatwoot"}
    anchor = as_utc(anchor)
    if anchor is not None and _later(parse_timestamp((metadata or {}).get(RESOLVED_AT_KEY)), anchor):
        patch[RESOLVED_AT_KEY] = anchor.isoformat()
    return merge_metadata(metadata, patch)


def _clear_resolution(support_case: SupportCase, status: str) -> None:
    support_case.status = status
    support_case.resolved_at = None
    support_case.resolved_by = None
    if RESOLVED_AT_KEY in (support_case.meta or {}):
        metadata = dict(support_case.meta)
        del metadata[RESOLVED_AT_KEY]
        support_case.meta = metadata


__all__ = [
    "ROLE_RANK",
    "ReconcileResult",
    "SupportReconciler",
    "build_attachment_fields",
    "build_message_metadata",
    "map_conversation_priority",
    "map_conversation_status",
    "merge_metadata",
]
