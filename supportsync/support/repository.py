"""Persistence operations used by the reconciliation engine."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..models import (
    Message,
    MessageAttachment,
    MessageParticipant,
    MessageThread,
    SupportCase,
)


class SupportRepository:
    """SQLAlchemy-backed access to threads, participants, messages and cases.

    Every lookup that precedes a mutation takes a row lock (``SELECT ... FOR
    UPDATE``) so two deliveries for the same conversation serialise on the
    thread and its case.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    # Threads -----------------------------------------------------------------
    def find_thread_by_conversation_id(self, conversation_id: str) -> Optional[MessageThread]:
        statement = (
            select(MessageThread)
            .where(MessageThread.external_conversation_id == conversation_id)
            .with_for_update()
        )
        return self._session.execute(statement).scalars().first()

    def create_thread(
        self,
        *,
        conversation_id: str,
        subject: str,
        created_by: int,
        metadata: Dict[str, Any],
        last_message_at: Optional[datetime],
        last_message_preview: str,
    ) -> MessageThread:
        thread = MessageThread(
            subject=subject,
            channel_type="support",
            state="active",
            created_by=created_by,
            external_conversation_id=conversation_id,
            meta=metadata,
            last_message_at=last_message_at,
            last_message_preview=last_message_preview,
        )
        self._session.add(thread)
        self._session.flush()
        return thread

    # Participants ------------------------------------------------------------
    def get_participant(self, thread_id: int, user_id: int) -> Optional[MessageParticipant]:
        statement = (
            select(MessageParticipant)
            .where(
                MessageParticipant.thread_id == thread_id,
                MessageParticipant.user_id == user_id,
            )
            .with_for_update()
        )
        return self._session.execute(statement).scalars().first()

    def add_participant(self, thread_id: int, user_id: int, role: str) -> MessageParticipant:
        participant = MessageParticipant(thread_id=thread_id, user_id=user_id, role=role)
        self._session.add(participant)
        self._session.flush()
        return participant

    def participant_user_ids(self, thread_id: int) -> List[int]:
        statement = (
            select(MessageParticipant.user_id)
            .where(MessageParticipant.thread_id == thread_id)
            .order_by(MessageParticipant.id)
        )
        return [user_id for user_id in self._session.execute(statement).scalars() if user_id]

    # Support cases -----------------------------------------------------------
    def find_case(self, thread_id: int) -> Optional[SupportCase]:
        statement = (
            select(SupportCase).where(SupportCase.thread_id == thread_id).with_for_update()
        )
        return self._session.execute(statement).scalars().first()

    def create_case(
        self,
        *,
        thread_id: int,
        status: str,
        priority: str,
        reason: str,
        metadata: Dict[str, Any],
        escalated_by: Optional[int],
        escalated_at: datetime,
    ) -> SupportCase:
        support_case = SupportCase(
            thread_id=thread_id,
            status=status,
            priority=priority,
            reason=reason,
            meta=metadata,
            escalated_by=escalated_by,
            escalated_at=escalated_at,
            created_at=escalated_at,
        )
        self._session.add(support_case)
        self._session.flush()
        return support_case

    # Messages ----------------------------------------------------------------
    def find_message(self, thread_id: int, external_message_id: str) -> Optional[Message]:
        statement = (
            select(Message)
            .where(
                Message.thread_id == thread_id,
                Message.external_message_id == external_message_id,
            )
            .with_for_update()
        )
        return self._session.execute(statement).scalars().first()

    def add_message(
        self,
        *,
        thread_id: int,
        sender_id: Optional[int],
        body: str,
        external_message_id: str,
        metadata: Dict[str, Any],
        delivered_at: datetime,
        attachments: Iterable[Dict[str, Any]] = (),
    ) -> Message:
        message = Message(
            thread_id=thread_id,
            sender_id=sender_id,
            message_type="text",
            body=body,
            external_message_id=external_message_id,
            meta=metadata,
            delivered_at=delivered_at,
        )
        message.attachments = [MessageAttachment(**fields) for fields in attachments]
        self._session.add(message)
        self._session.flush()
        return message

    def flush(self) -> None:
        self._session.flush()


__all__ = ["SupportRepository"]
