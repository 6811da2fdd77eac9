"""
Cache Exceptions
"""

from nexus_resilience.core.exceptions.base import NexusBaseError


class CacheError(NexusBaseError):
    """Base exception for response cache errors."""
    pass
