"""
Rate Limiting Module

Per-client rate limiting with an in-memory or Redis backend, plus client
identification (session cookie or header fingerprint).
"""

from nexus_resilience.core.config.constants import (
    MAX_CONTENT_LENGTH,
    MAX_HISTORY,
    MAX_MESSAGES_PER_WINDOW,
    MAX_TRANSCRIPTIONS_PER_WINDOW,
    SESSION_COOKIE_NAME,
)
from nexus_resilience.rate_limiting.client_identifier import (
    ClientIdentifier,
    generate_session_id,
    get_client_identifier,
    is_fingerprint,
)
from nexus_resilience.rate_limiting.rate_limiter import (
    CHAT_NAMESPACE,
    TRANSCRIBE_NAMESPACE,
    RateLimiter,
    RateLimitResult,
    build_rate_limit_response,
    is_distributed_store_configured,
    is_fail_closed_enabled,
    sanitize_messages,
)
from nexus_resilience.rate_limiting.store import (
    InMemoryRateLimitStore,
    RateLimitRecord,
    RateLimitStore,
    RedisRateLimitStore,
)

__all__ = [
    "CHAT_NAMESPACE",
    "TRANSCRIBE_NAMESPACE",
    "MAX_CONTENT_LENGTH",
    "MAX_HISTORY",
    "MAX_MESSAGES_PER_WINDOW",
    "MAX_TRANSCRIPTIONS_PER_WINDOW",
    "SESSION_COOKIE_NAME",
    "ClientIdentifier",
    "InMemoryRateLimitStore",
    "RateLimitRecord",
    "RateLimitResult",
    "RateLimitStore",
    "RateLimiter",
    "RedisRateLimitStore",
    "build_rate_limit_response",
    "generate_session_id",
    "get_client_identifier",
    "is_distributed_store_configured",
    "is_fail_closed_enabled",
    "is_fingerprint",
    "sanitize_messages",
]
