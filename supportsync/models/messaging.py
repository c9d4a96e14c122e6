"""Messaging and support-case SQLAlchemy models.

The reconciliation engine is the only writer of thread, participant, message
and support-case rows derived from Chatwoot events. ``users`` belongs to the
wider platform; it is mapped here so identities can be resolved and foreign
keys declared, but this service never creates users.

External identifiers are stored twice: as indexed columns
(``message_threads.external_conversation_id`` and
``messages.external_message_id``) that back lookups and uniqueness, and inside
each row's metadata map for free-form context.
"""

from __future__ import annotations

import datetime as dt
from typing import Any, List, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from . import Base

JsonDict = JSON().with_variant(JSONB(), "postgresql")

THREAD_STATES = ("active", "archived", "locked")
PARTICIPANT_ROLES = ("owner", "participant", "support", "system")
CASE_STATUSES = ("in_progress", "waiting_on_customer", "resolved", "closed")
CASE_PRIORITIES = ("low", "medium", "high", "urgent")


def _utcnow() -> dt.datetime:
    """Return the current UTC timestamp with timezone awareness."""

    return dt.datetime.now(dt.timezone.utc)


class _Timestamps:
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )


class User(_Timestamps, Base):
    """Platform member that Chatwoot contacts and agents resolve to."""

    __tablename__ = "users"
    __table_args__ = (Index("ix_users_email_unique", "email", unique=True),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(length=320), nullable=False)
    first_name: Mapped[Optional[str]] = mapped_column(String(length=120))
    last_name: Mapped[Optional[str]] = mapped_column(String(length=120))
    user_type: Mapped[str] = mapped_column(String(length=64), nullable=False, default="user")
    memberships: Mapped[Optional[Any]] = mapped_column(JsonDict)
    primary_dashboard: Mapped[Optional[str]] = mapped_column(String(length=64))
    avatar_url: Mapped[Optional[str]] = mapped_column(String(length=2048))
    status: Mapped[str] = mapped_column(String(length=32), nullable=False, default="active")
    location: Mapped[Optional[str]] = mapped_column(String(length=255))
    last_seen_at: Mapped[Optional[dt.datetime]] = mapped_column(DateTime(timezone=True))


class MessageThread(_Timestamps, Base):
    """Conversation surface correlated 1:1 with a Chatwoot conversation."""

    __tablename__ = "message_threads"
    __table_args__ = (
        Index(
            "ix_message_threads_external_conversation_id",
            "external_conversation_id",
            unique=True,
        ),
        Index("ix_message_threads_channel_type", "channel_type"),
        Index("ix_message_threads_state", "state"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    subject: Mapped[Optional[str]] = mapped_column(String(length=255))
    channel_type: Mapped[str] = mapped_column(String(length=32), nullable=False, default="support")
    state: Mapped[str] = mapped_column(String(length=32), nullable=False, default="active")
    created_by: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    external_conversation_id: Mapped[Optional[str]] = mapped_column(String(length=128))
    last_message_at: Mapped[Optional[dt.datetime]] = mapped_column(DateTime(timezone=True))
    last_message_preview: Mapped[Optional[str]] = mapped_column(String(length=300))
    meta: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JsonDict, nullable=False, default=dict
    )

    participants: Mapped[List["MessageParticipant"]] = relationship(
        back_populates="thread",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    messages: Mapped[List["Message"]] = relationship(
        back_populates="thread",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Message.delivered_at",
    )
    support_case: Mapped[Optional["SupportCase"]] = relationship(
        back_populates="thread", uselist=False
    )


class MessageParticipant(_Timestamps, Base):
    """Membership of a user in a thread."""

    __tablename__ = "message_participants"
    __table_args__ = (
        UniqueConstraint("thread_id", "user_id", name="message_participants_thread_user_unique"),
        Index("ix_message_participants_user_id", "user_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    thread_id: Mapped[int] = mapped_column(
        ForeignKey("message_threads.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    role: Mapped[str] = mapped_column(String(length=32), nullable=False, default="participant")
    notifications_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    muted_until: Mapped[Optional[dt.datetime]] = mapped_column(DateTime(timezone=True))
    last_read_at: Mapped[Optional[dt.datetime]] = mapped_column(DateTime(timezone=True))

    thread: Mapped[MessageThread] = relationship(back_populates="participants")


class Message(_Timestamps, Base):
    """A single utterance; immutable once written by the sync engine."""

    __tablename__ = "messages"
    __table_args__ = (
        UniqueConstraint(
            "thread_id", "external_message_id", name="messages_thread_external_message_unique"
        ),
        Index("ix_messages_thread_id", "thread_id"),
        Index("ix_messages_sender_id", "sender_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    thread_id: Mapped[int] = mapped_column(
        ForeignKey("message_threads.id", ondelete="CASCADE"), nullable=False
    )
    sender_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    message_type: Mapped[str] = mapped_column(String(length=16), nullable=False, default="text")
    body: Mapped[Optional[str]] = mapped_column(Text)
    external_message_id: Mapped[Optional[str]] = mapped_column(String(length=128))
    meta: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JsonDict, nullable=False, default=dict
    )
    delivered_at: Mapped[Optional[dt.datetime]] = mapped_column(DateTime(timezone=True))

    thread: Mapped[MessageThread] = relationship(back_populates="messages")
    attachments: Mapped[List["MessageAttachment"]] = relationship(
        back_populates="message",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class MessageAttachment(_Timestamps, Base):
    """File shared alongside a message."""

    __tablename__ = "message_attachments"
    __table_args__ = (Index("ix_message_attachments_message_id", "message_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    message_id: Mapped[int] = mapped_column(
        ForeignKey("messages.id", ondelete="CASCADE"), nullable=False
    )
    storage_key: Mapped[str] = mapped_column(String(length=512), nullable=False)
    file_name: Mapped[str] = mapped_column(String(length=255), nullable=False)
    mime_type: Mapped[str] = mapped_column(String(length=128), nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    checksum: Mapped[Optional[str]] = mapped_column(String(length=128))
    meta: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JsonDict, nullable=False, default=dict
    )

    message: Mapped[Message] = relationship(back_populates="attachments")


class SupportCase(_Timestamps, Base):
    """Support lifecycle and SLA state attached to a thread.

    Attributes:
        status: One of :data:`CASE_STATUSES`.
        priority: One of :data:`CASE_PRIORITIES`; only ever raised
            automatically, by the SLA escalation rules.
        first_response_at: Set by the first agent reply and never cleared.
        resolved_at: Cleared again when the customer reopens the case.
        meta: Free-form map holding Chatwoot references, last customer/agent
            activity and the ``sla`` breach record.
    """

    __tablename__ = "support_cases"
    __table_args__ = (
        Index("ix_support_cases_thread_id", "thread_id", unique=True),
        Index("ix_support_cases_status", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    thread_id: Mapped[int] = mapped_column(
        ForeignKey("message_threads.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(String(length=32), nullable=False, default="in_progress")
    priority: Mapped[str] = mapped_column(String(length=16), nullable=False, default="medium")
    reason: Mapped[Optional[str]] = mapped_column(String(length=255))
    escalated_by: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    escalated_at: Mapped[Optional[dt.datetime]] = mapped_column(DateTime(timezone=True))
    assigned_to: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    assigned_by: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    assigned_at: Mapped[Optional[dt.datetime]] = mapped_column(DateTime(timezone=True))
    first_response_at: Mapped[Optional[dt.datetime]] = mapped_column(DateTime(timezone=True))
    resolved_at: Mapped[Optional[dt.datetime]] = mapped_column(DateTime(timezone=True))
    resolved_by: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    meta: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JsonDict, nullable=False, default=dict
    )

    thread: Mapped[MessageThread] = relationship(back_populates="support_case")


__all__ = [
    "CASE_PRIORITIES",
    "CASE_STATUSES",
    "Message",
    "MessageAttachment",
    "MessageParticipant",
    "MessageThread",
    "PARTICIPANT_ROLES",
    "SupportCase",
    "THREAD_STATES",
    "User",
]
