"""
Validation Exceptions

Validation errors are client-caused: they are never retried, never trip a
circuit and never trigger failover.
"""

from nexus_resilience.core.exceptions.base import NexusBaseError


class ValidationError(NexusBaseError):
    """Base exception for request validation errors."""
    pass


class InvalidInputError(ValidationError):
    """Raised when a chat request payload is malformed or out of bounds."""
    pass
