from nexus_resilience.api.models.admin import (
    CacheEntryInfo,
    CacheInvalidateResponse,
    CacheStatsResponse,
    CacheSummary,
    CircuitResetRequest,
    CircuitResetResponse,
    HealthResponse,
    ProviderHealth,
)
from nexus_resilience.api.models.chat import ChatMessage, ChatRequest, ChatResponse, ErrorResponse

__all__ = [
    "CacheEntryInfo",
    "CacheInvalidateResponse",
    "CacheStatsResponse",
    "CacheSummary",
    "ChatMessage",
    "ChatRequest",
    "ChatResponse",
    "CircuitResetRequest",
    "CircuitResetResponse",
    "ErrorResponse",
    "HealthResponse",
    "ProviderHealth",
]
