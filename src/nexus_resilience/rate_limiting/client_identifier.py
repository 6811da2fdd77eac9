"""
Client Identification

Resolves the identity a request is rate limited under.

Priority:
1. Session cookie value (stable per browser, ``is_fingerprint=False``)
2. Header fingerprint for first-time clients: SHA-256 over 12 request headers
   joined with ``|``, truncated to 32 hex chars, prefixed ``fp-``

Header values are only hashed, never stored or logged.
"""

import hashlib
import uuid
from dataclasses import dataclass

from fastapi import Request

from nexus_resilience.core.config.constants import (
    FINGERPRINT_HASH_LENGTH,
    FINGERPRINT_HEADERS,
    FINGERPRINT_PREFIX,
    SESSION_COOKIE_NAME,
)


@dataclass(frozen=True)
class ClientIdentifier:
    id: str
    is_fingerprint: bool


def fingerprint_headers(request: Request, fingerprint_prefix: str = FINGERPRINT_PREFIX) -> str:
    """Fingerprint id for a request with no session cookie."""
    material = "|".join(request.headers.get(name, "") for name in FINGERPRINT_HEADERS)
    digest = hashlib.sha256(material.encode("utf-8")).hexdigest()[:FINGERPRINT_HASH_LENGTH]
    return f"{fingerprint_prefix}-{digest}"


def get_client_identifier(
    request: Request,
    cookie_name: str = SESSION_COOKIE_NAME,
    fingerprint_prefix: str = FINGERPRINT_PREFIX,
) -> ClientIdentifier:
    """
    Resolve the rate-limit identity of ``request``.

    Args:
        request: Incoming request (only ``cookies`` and ``headers`` are read)
        cookie_name: Session cookie to prefer
        fingerprint_prefix: Prefix for header-derived ids

    Returns:
        ClientIdentifier with the id and whether it is a fingerprint
    """
    session_id = request.cookies.get(cookie_name)
    if session_id:
        return ClientIdentifier(id=session_id, is_fingerprint=False)

    return ClientIdentifier(
        id=fingerprint_headers(request, fingerprint_prefix), is_fingerprint=True
    )


def generate_session_id(prefix: str = "session") -> str:
    """New opaque session id, e.g. ``session-1b4e28ba-2fa1-11d2-883f-0016d3cca427``."""
    return f"{prefix}-{uuid.uuid4()}"


def is_fingerprint(identifier: str, prefix: str = FINGERPRINT_PREFIX) -> bool:
    return identifier.startswith(f"{prefix}-")
