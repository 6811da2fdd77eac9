"""
Exception Module

Structured exception hierarchy for the AI resilience layer, organized by theme:

- **base.py**: NexusBaseError base class + ConfigurationError
- **provider.py**: AI provider exceptions
- **rate_limit.py**: Rate limiting exceptions
- **streaming.py**: Stream recovery exceptions
- **validation.py**: Request validation exceptions
- **cache.py**: Response cache exceptions
"""

from nexus_resilience.core.exceptions.base import ConfigurationError, NexusBaseError
from nexus_resilience.core.exceptions.cache import CacheError
from nexus_resilience.core.exceptions.provider import (
    ALL_PROVIDERS_UNAVAILABLE_MESSAGE,
    AllProvidersUnavailableError,
    ProviderAPIError,
    ProviderAuthenticationError,
    ProviderError,
    ProviderNotAvailableError,
    ProviderNotConfiguredError,
    ProviderTimeoutError,
)
from nexus_resilience.core.exceptions.rate_limit import (
    RateLimitError,
    RateLimitExceededError,
    RateLimitStoreUnavailableError,
)
from nexus_resilience.core.exceptions.streaming import StreamCancelledError, StreamingError
from nexus_resilience.core.exceptions.validation import InvalidInputError, ValidationError

__all__ = [
    # Base
    "NexusBaseError",
    "ConfigurationError",
    # Cache
    "CacheError",
    # Provider
    "ALL_PROVIDERS_UNAVAILABLE_MESSAGE",
    "ProviderError",
    "ProviderNotAvailableError",
    "ProviderNotConfiguredError",
    "ProviderAuthenticationError",
    "ProviderTimeoutError",
    "ProviderAPIError",
    "AllProvidersUnavailableError",
    # Rate Limit
    "RateLimitError",
    "RateLimitExceededError",
    "RateLimitStoreUnavailableError",
    # Streaming
    "StreamingError",
    "StreamCancelledError",
    # Validation
    "ValidationError",
    "InvalidInputError",
]
