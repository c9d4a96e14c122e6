"""Webhook ingestion route for the Chatwoot support inbox."""

from __future__ import annotations

import asyncio
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, status

from ..support.errors import TransientSyncError, WebhookAuthenticationError
from ..support.schemas import WebhookAck
from ..support.service import SupportSyncService, get_support_service
from ..support.signatures import extract_signature_header

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])

EVENT_HEADER = "X-Chatwoot-Event"

ServiceDep = Annotated[SupportSyncService, Depends(get_support_service)]


@contextmanager
def _service_context() -> Iterator[None]:
    try:
        yield
    except WebhookAuthenticationError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)
        ) from exc
    except TransientSyncError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)
        ) from exc


@router.post("/chatwoot", response_model=WebhookAck)
async def ingest_chatwoot_webhook(request: Request, service: ServiceDep) -> WebhookAck:
    """Reconcile one Chatwoot delivery.

    Ignored deliveries are still acknowledged with 200 so that Chatwoot does
    not retry events that can never be applied. Reconciliation runs in a worker
    thread so slow storage or notification calls never block the event loop.
    """

    body_bytes = await request.body()
    with _service_context():
        result = await asyncio.to_thread(
            service.process_webhook,
            body_bytes,
            signature=extract_signature_header(request.headers),
            event_name=request.headers.get(EVENT_HEADER),
        )
    return WebhookAck(
        status=result.status,
        event=result.event,
        reason=result.reason,
        thread_id=result.thread_id,
        support_case_id=result.support_case_id,
        message_created=result.message_created,
        duplicate=result.duplicate,
        escalated=result.escalated,
    )
