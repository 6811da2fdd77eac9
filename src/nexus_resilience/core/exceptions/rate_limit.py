"""
Rate Limiting Exceptions
"""

from nexus_resilience.core.exceptions.base import NexusBaseError


class RateLimitError(NexusBaseError):
    """Base exception for rate limiting errors."""
    pass


class RateLimitExceededError(RateLimitError):
    """
    Raised when a client exceeds its request window.

    ``remaining_ms`` is the time until the window resets; the HTTP layer turns
    it into a ``Retry-After`` header.
    """

    def __init__(self, message: str, remaining_ms: int, **kwargs):
        super().__init__(message, **kwargs)
        self.remaining_ms = remaining_ms
        self.details.setdefault("remaining_ms", remaining_ms)


class RateLimitStoreUnavailableError(RateLimitError):
    """
    Raised by the distributed rate-limit store when it cannot be reached.

    The limiter decides between fail-open and fail-closed; it never lets this
    escape silently.
    """
    pass
