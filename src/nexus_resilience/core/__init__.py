"""
Core Module

Foundational components: configuration, logging, exceptions and metrics.
"""

from .exceptions import (
    AllProvidersUnavailableError,
    ConfigurationError,
    InvalidInputError,
    NexusBaseError,
    ProviderError,
    ProviderNotAvailableError,
    ProviderTimeoutError,
    RateLimitExceededError,
    StreamCancelledError,
    StreamingError,
    ValidationError,
)
from .logging import (
    clear_request_id,
    get_logger,
    get_request_id,
    log_stage,
    set_request_id,
    setup_logging,
)

__all__ = [
    "AllProvidersUnavailableError",
    "ConfigurationError",
    "InvalidInputError",
    "NexusBaseError",
    "ProviderError",
    "ProviderNotAvailableError",
    "ProviderTimeoutError",
    "RateLimitExceededError",
    "StreamCancelledError",
    "StreamingError",
    "ValidationError",
    "clear_request_id",
    "get_logger",
    "get_request_id",
    "log_stage",
    "set_request_id",
    "setup_logging",
]
