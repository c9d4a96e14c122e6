"""HMAC verification of inbound Chatwoot webhook deliveries."""

from __future__ import annotations

import hashlib
import hmac
import string
from collections.abc import Mapping

SIGNATURE_HEADERS = ("X-Chatwoot-Signature", "X-Hub-Signature-256", "X-Signature")

_HEX_DIGITS = frozenset(string.hexdigits)


def extract_signature_header(headers: Mapping[str, str]) -> str | None:
    """Return the first signature header present in ``headers``."""

    for name in SIGNATURE_HEADERS:
        value = headers.get(name)
        if value:
            return value
    return None


def normalize_signature(header_value: str | None) -> str | None:
    """Strip an optional ``scheme=`` prefix and return the lowercase hex digest.

    Returns ``None`` for absent, empty or non-hexadecimal values.
    """

    if not header_value:
        return None
    value = str(header_value).strip()
    if "=" in value:
        _, _, value = value.partition("=")
        value = value.strip()
    if not value or not set(value) <= _HEX_DIGITS:
        return None
    return value.lower()


def compute_signature(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, header_value: str | None, secret: str | None) -> bool:
    """Check ``header_value`` against an HMAC-SHA256 of the raw ``body``.

    The digest is computed over the bytes exactly as received. When no
    ``secret`` is configured verification is disabled and every request is
    accepted.
    """

    if not secret:
        return True
    declared = normalize_signature(header_value)
    if declared is None:
        return False
    expected = compute_signature(body, secret)
    return hmac.compare_digest(expected, declared)


__all__ = [
    "SIGNATURE_HEADERS",
    "compute_signature",
    "extract_signature_header",
    "normalize_signature",
    "verify_signature",
]
