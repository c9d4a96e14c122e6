"""SQLAlchemy declarative base and messaging models.

This package exposes the single declarative ``Base`` used across the service
plus the messaging/support entities the reconciliation engine reads and
writes. Individual models live in dedicated modules within this package.
"""

from __future__ import annotations

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy declarative models."""


# Re-export models so callers can import them via ``from supportsync.models
# import SupportCase`` instead of touching private modules.
from .messaging import (  # noqa: E402
    Message,
    MessageAttachment,
    MessageParticipant,
    MessageThread,
    SupportCase,
    User,
)


__all__ = [
    "Base",
    "Message",
    "MessageAttachment",
    "MessageParticipant",
    "MessageThread",
    "SupportCase",
    "User",
]
