"""
System Constants and Enumerations

This module defines system-wide constants and enumerations used across
the AI resilience layer: provider identifiers and priority, circuit breaker
thresholds, cache bounds, rate-limit windows and message limits.

Policy constants live here so that settings defaults, tests and runtime code
all agree on one value.
"""

from enum import Enum

# ============================================================================
# Stage Identifiers (for structured logging)
# ============================================================================


class Stage(str, Enum):
    """
    Request processing stages used as the ``stage`` field of log entries.

    Format: {SEQUENCE}_{DESCRIPTIVE_NAME}
    """

    # Main request lifecycle
    INITIALIZATION = "0.0_INITIALIZATION"
    RATE_LIMITING = "1.0_RATE_LIMITING"
    REQUEST_VALIDATION = "2.0_REQUEST_VALIDATION"
    CACHE_LOOKUP = "3.0_CACHE_LOOKUP"
    PROVIDER_SELECTION = "4.0_PROVIDER_SELECTION"
    PROVIDER_CALL = "5.0_PROVIDER_CALL"
    CACHE_STORE = "6.0_CACHE_STORE"

    # Cross-cutting concerns
    CIRCUIT_BREAKER = "CB_CIRCUIT_BREAKER"
    FAILOVER = "F_FAILOVER"
    RETRY = "R_RETRY_LOGIC"
    STREAM_RECOVERY = "SR_STREAM_RECOVERY"


# ============================================================================
# AI Providers
# ============================================================================


class AIProvider(str, Enum):
    """Supported upstream AI providers."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"
    XAI = "xai"
    MOONSHOTAI = "moonshotai"


# Failover priority: GPT -> Gemini -> Claude -> Grok -> Kimi
PROVIDER_PRIORITY: tuple[str, ...] = (
    AIProvider.OPENAI.value,
    AIProvider.GOOGLE.value,
    AIProvider.ANTHROPIC.value,
    AIProvider.XAI.value,
    AIProvider.MOONSHOTAI.value,
)

# Providers always reported by the health snapshot
KNOWN_PROVIDERS: tuple[str, ...] = (
    AIProvider.OPENAI.value,
    AIProvider.ANTHROPIC.value,
    AIProvider.GOOGLE.value,
    AIProvider.XAI.value,
    AIProvider.MOONSHOTAI.value,
)

DEFAULT_PRIMARY_PROVIDER = AIProvider.OPENAI.value
DEFAULT_FALLBACK_PROVIDER = AIProvider.ANTHROPIC.value

# ============================================================================
# Circuit Breaker
# ============================================================================

CIRCUIT_FAILURE_THRESHOLD = 3  # consecutive failures before opening
CIRCUIT_RECOVERY_TIMEOUT = 60.0  # seconds before an open circuit allows a trial call

# ============================================================================
# Failover / Retry
# ============================================================================

FAILOVER_MAX_RETRIES = 1  # extra attempts on the fallback provider
FAILOVER_BACKOFF_BASE = 1.0  # seconds, doubled per attempt (1s, 2s, 4s...)
FAILOVER_ATTEMPT_TIMEOUT = 30.0  # seconds per provider attempt

STREAM_RECOVERY_MAX_RETRIES = 2
STREAM_RECOVERY_RETRY_DELAY_MS = 500  # doubled per attempt (500ms, 1s, 2s...)

# ============================================================================
# Response Cache
# ============================================================================

CACHE_KEY_PREFIX = "ai"
CACHE_MAX_SIZE = 100
CACHE_EVICTION_RATIO = 0.2  # share of oldest entries dropped on overflow
CACHE_MIN_KEY_TEXT_LENGTH = 10  # shorter user messages are not cacheable
CACHE_MIN_RESPONSE_LENGTH = 50  # shorter responses are never stored
CACHE_DEFAULT_TTL_MS = 60 * 60 * 1000
CACHE_DIGEST_LENGTH = 16
CACHE_STATS_TOP_ENTRIES = 10

# ============================================================================
# Rate Limiting
# ============================================================================

RATE_LIMIT_WINDOW_MS = 5 * 60 * 1000
MAX_MESSAGES_PER_WINDOW = 20

TRANSCRIBE_RATE_LIMIT_WINDOW_MS = 5 * 60 * 1000
MAX_TRANSCRIPTIONS_PER_WINDOW = 10

RATE_LIMIT_BURST_WINDOW_MS = 10 * 1000
RATE_LIMIT_BURST_MAX = 8

RATE_LIMIT_FAIL_CLOSED_RETRY_MS = 60 * 1000

SESSION_COOKIE_NAME = "metadjai-session"
SESSION_COOKIE_MAX_AGE = 60 * 60 * 24 * 30  # 30 days
FINGERPRINT_PREFIX = "fp"
FINGERPRINT_HASH_LENGTH = 32

# High-entropy header sources for fingerprinting, ordered by reliability and
# cross-browser availability. Order is part of the fingerprint.
FINGERPRINT_HEADERS: tuple[str, ...] = (
    "user-agent",
    "accept-language",
    "accept-encoding",
    "accept",
    "sec-ch-ua",
    "sec-ch-ua-platform",
    "sec-ch-ua-mobile",
    "sec-ch-ua-arch",
    "sec-ch-ua-model",
    "connection",
    "dnt",
    "upgrade-insecure-requests",
)

# ============================================================================
# Request / History Limits
# ============================================================================

MAX_MESSAGES_PER_REQUEST = 50
MAX_MESSAGE_CONTENT_LENGTH = 8000
MAX_MESSAGE_HISTORY = 12

# Aliases used by message sanitization
MAX_HISTORY = MAX_MESSAGE_HISTORY
MAX_CONTENT_LENGTH = MAX_MESSAGE_CONTENT_LENGTH

ALLOWED_MESSAGE_ROLES = frozenset({"user", "assistant"})

# ============================================================================
# Redis Key Prefixes
# ============================================================================

REDIS_KEY_RATE_LIMIT = "ratelimit"

# ============================================================================
# HTTP Headers
# ============================================================================

HEADER_REQUEST_ID = "X-Request-ID"
HEADER_RETRY_AFTER = "Retry-After"
HEADER_SERVED_BY = "X-AI-Provider"

# ============================================================================
# SSE Event Types
# ============================================================================

SSE_EVENT_CHUNK = "chunk"
SSE_EVENT_ERROR = "error"
SSE_EVENT_COMPLETE = "complete"
