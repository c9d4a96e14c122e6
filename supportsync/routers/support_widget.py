"""Widget session bootstrap for signed-in users."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, status

from ..config import get_support_settings
from ..core.auth import AccessTokenPayload, get_current_user
from ..support.errors import WidgetSessionError
from ..support.schemas import WidgetSession
from ..support.widget import WidgetSessionIssuer

router = APIRouter(prefix="/api/support", tags=["support"])


def get_widget_issuer() -> WidgetSessionIssuer:
    return WidgetSessionIssuer(get_support_settings())


CurrentUser = Annotated[AccessTokenPayload, Depends(get_current_user)]
IssuerDep = Annotated[WidgetSessionIssuer, Depends(get_widget_issuer)]


def _client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


@router.get("/widget-session", response_model=WidgetSession, response_model_exclude_none=True)
def widget_session(request: Request, user: CurrentUser, issuer: IssuerDep) -> WidgetSession:
    """Return the Chatwoot widget descriptor for the signed-in user."""

    try:
        return issuer.issue(
            user.get("user_id"),
            ip_address=_client_ip(request),
            session_id=user.get("session_id"),
        )
    except WidgetSessionError as exc:
        status_code = (
            status.HTTP_404_NOT_FOUND if exc.not_found else status.HTTP_400_BAD_REQUEST
        )
        raise HTTPException(status_code=status_code, detail=str(exc)) from exc
