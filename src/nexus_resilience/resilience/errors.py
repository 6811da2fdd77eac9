"""
Provider error classification.

Decides whether a failure should count against a provider's circuit. Only
transient upstream problems count: network faults, timeouts, rate limits,
5xx responses, overload and unknown models. Client-side problems (bad API
key, bad request, content policy) are the caller's fault and never trip a
circuit or trigger failover.
"""

import asyncio
from typing import Any

from nexus_resilience.core.exceptions import (
    ProviderAuthenticationError,
    ProviderNotAvailableError,
    ProviderNotConfiguredError,
    ProviderTimeoutError,
    ValidationError,
)

# Checked before the provider patterns: a client error mentioning "model" or
# "connection" must still be excluded.
CLIENT_ERROR_PATTERNS: tuple[str, ...] = (
    "invalid api key",
    "incorrect api key",
    "invalid x-api-key",
    "unauthorized",
    "permission denied",
    "bad request",
    "content policy",
    "content_policy",
    "safety system",
)

PROVIDER_ERROR_PATTERNS: tuple[str, ...] = (
    # network
    "network",
    "econnrefused",
    "econnreset",
    "etimedout",
    "socket hang up",
    "fetch failed",
    "connection",
    # timeouts
    "timeout",
    "timed out",
    # rate limiting
    "rate limit",
    "too many requests",
    "429",
    # upstream 5xx
    "500",
    "502",
    "503",
    "504",
    "internal server error",
    "bad gateway",
    "service unavailable",
    "overloaded",
    "incomplete response",
    # model availability
    "model not found",
    "model_not_found",
    "unknown model",
    "invalid model",
)


def error_text(error: Any) -> str:
    """Lowercased message of an exception or string; empty for None."""
    if error is None:
        return ""
    if isinstance(error, str):
        return error.lower()
    return str(error).lower()


def is_provider_error(error: Any) -> bool:
    """
    Return True when ``error`` is a transient upstream failure.

    Accepts exceptions, plain strings or None. Internal provider exceptions are
    classified by type; everything else by case-insensitive substring match.

    Examples:
        >>> is_provider_error("503 Service Unavailable")
        True
        >>> is_provider_error("Invalid API key")
        False
    """
    if error is None:
        return False

    if isinstance(error, (ProviderAuthenticationError, ProviderNotConfiguredError, ValidationError)):
        return False
    if isinstance(error, (ProviderTimeoutError, ProviderNotAvailableError)):
        return True
    if isinstance(error, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return True

    text = error_text(error)
    if not text:
        return False
    if any(pattern in text for pattern in CLIENT_ERROR_PATTERNS):
        return False
    return any(pattern in text for pattern in PROVIDER_ERROR_PATTERNS)
