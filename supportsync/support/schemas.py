"""Pydantic schemas for the support HTTP endpoints."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class WebhookAck(BaseModel):
    status: str
    event: str | None = None
    reason: str | None = None
    thread_id: int | None = None
    support_case_id: int | None = None
    message_created: bool = False
    duplicate: bool = False
    escalated: bool = False


class WidgetContact(BaseModel):
    identifier: str
    name: str
    email: str | None = None
    avatar_url: str | None = None


class WidgetSecureMode(BaseModel):
    identifier: str
    identifier_hash: str | None = None


class WidgetSla(BaseModel):
    first_response_minutes: int
    resolution_minutes: int


class WidgetSession(BaseModel):
    """Descriptor the Chatwoot web widget is bootstrapped with.

    Only ``enabled`` is populated while the integration is not configured.
    """

    enabled: bool
    base_url: str | None = None
    website_token: str | None = None
    locale: str | None = None
    inbox_id: str | None = None
    portal_token: str | None = None
    contact: WidgetContact | None = None
    secure_mode: WidgetSecureMode | None = None
    custom_attributes: dict[str, Any] = Field(default_factory=dict)
    sla: WidgetSla | None = None


__all__ = [
    "WebhookAck",
    "WidgetContact",
    "WidgetSecureMode",
    "WidgetSession",
    "WidgetSla",
]
