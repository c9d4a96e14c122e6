"""Platform access tokens for the widget session endpoint.

The widget endpoint trusts the platform's own login: a short-lived HS256 JWT
carrying ``user_id`` (and the platform ``session_id``, echoed into the widget
custom attributes). Verification settings come from ``AUTH_TOKEN_*``
variables and are read per request so rotated secrets apply immediately.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import TypedDict, cast

import jwt
from fastapi import HTTPException, Request, status
from jwt import ExpiredSignatureError, InvalidTokenError

__all__ = [
    "AccessTokenPayload",
    "TokenConfigurationError",
    "TokenValidationError",
    "decode_access_token",
    "get_current_user",
]


class TokenConfigurationError(RuntimeError):
    """Raised when ``AUTH_TOKEN_*`` settings are missing."""


class TokenValidationError(ValueError):
    """Raised for expired, forged or incomplete access tokens."""


class _AccessTokenRequiredClaims(TypedDict):
    user_id: str


class AccessTokenPayload(_AccessTokenRequiredClaims, total=False):
    aud: str | list[str]
    email: str
    exp: int
    iat: int
    iss: str
    session_id: str
    type: str


@dataclass(frozen=True)
class _TokenSettings:
    secret: str
    audience: str
    issuer: str
    algorithm: str = "HS256"


def _token_settings() -> _TokenSettings:
    values = {
        name: (os.getenv(f"AUTH_TOKEN_{name.upper()}") or "").strip()
        for name in ("secret", "audience", "issuer")
    }
    missing = [f"AUTH_TOKEN_{name.upper()}" for name, value in values.items() if not value]
    if missing:
        raise TokenConfigurationError(
            f"Access token validation requires {', '.join(missing)} to be set."
        )
    algorithm = (os.getenv("AUTH_TOKEN_ALGORITHM") or "HS256").strip()
    return _TokenSettings(algorithm=algorithm, **values)


def decode_access_token(token: str) -> AccessTokenPayload:
    """Verify ``token`` and return its claims.

    ``exp``, ``aud`` and ``iss`` are mandatory. Refresh tokens (``type`` other
    than ``access``) are refused.
    """

    settings = _token_settings()
    try:
        payload = jwt.decode(
            token,
            settings.secret,
            algorithms=[settings.algorithm],
            audience=settings.audience,
            issuer=settings.issuer,
            options={"require": ["exp", "aud", "iss"]},
        )
    except ExpiredSignatureError as exc:
        raise TokenValidationError("Access token has expired.") from exc
    except InvalidTokenError as exc:
        raise TokenValidationError("Access token is invalid.") from exc

    if "user_id" not in payload:
        raise TokenValidationError("Access token payload must include 'user_id'.")
    if payload.get("type", "access") != "access":
        raise TokenValidationError("Token must be an access token.")
    return cast(AccessTokenPayload, payload)


def _bearer_credentials(request: Request) -> str:
    scheme, _, credentials = (request.headers.get("Authorization") or "").partition(" ")
    if not scheme:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing Authorization header.",
        )
    if scheme.lower() != "bearer" or not credentials.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header must use Bearer scheme.",
        )
    return credentials.strip()


async def get_current_user(request: Request) -> AccessTokenPayload:
    """FastAPI dependency resolving the signed-in platform user.

    Answers 401 for missing or invalid tokens and 500 when the service itself
    is misconfigured.
    """

    token = _bearer_credentials(request)
    try:
        return decode_access_token(token)
    except TokenConfigurationError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)
        ) from exc
    except TokenValidationError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
