"""Chatwoot conversation synchronisation and SLA escalation."""

from . import schemas
from .errors import (
    SupportSyncError,
    SupportValidationError,
    TransientSyncError,
    WebhookAuthenticationError,
    WidgetSessionError,
)
from .reconciler import ReconcileResult, SupportReconciler
from .service import SupportSyncService, WebhookResult
from .widget import WidgetSessionIssuer

__all__ = [
    "ReconcileResult",
    "SupportReconciler",
    "SupportSyncError",
    "SupportSyncService",
    "SupportValidationError",
    "TransientSyncError",
    "WebhookAuthenticationError",
    "WebhookResult",
    "WidgetSessionError",
    "WidgetSessionIssuer",
    "schemas",
]
