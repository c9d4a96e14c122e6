"""Exceptions raised by the support synchronisation engine."""

from __future__ import annotations


class SupportSyncError(RuntimeError):
    """Base class for support synchronisation failures."""


class WebhookAuthenticationError(SupportSyncError):
    """Raised when a webhook delivery fails signature verification."""


class SupportValidationError(SupportSyncError):
    """Raised when an event can never be reconciled (e.g. no owner for a new thread)."""


class TransientSyncError(SupportSyncError):
    """Raised when storage fails mid unit-of-work; redelivery is safe."""


class WidgetSessionError(SupportSyncError):
    """Raised when a widget session cannot be issued for the requested user."""

    def __init__(self, message: str, *, not_found: bool = False) -> None:
        super().__init__(message)
        self.not_found = not_found


__all__ = [
    "SupportSyncError",
    "SupportValidationError",
    "TransientSyncError",
    "WebhookAuthenticationError",
    "WidgetSessionError",
]
