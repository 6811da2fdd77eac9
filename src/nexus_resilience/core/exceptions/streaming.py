"""
Streaming Exceptions
"""

from nexus_resilience.core.exceptions.base import NexusBaseError


class StreamingError(NexusBaseError):
    """Base exception for streaming errors."""
    pass


class StreamCancelledError(StreamingError):
    """Raised when the client aborted before a retry could be attempted."""
    pass
