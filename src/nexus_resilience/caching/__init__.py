"""
Caching Module

Content-addressed response cache for final AI answers.
"""

from nexus_resilience.caching.response_cache import (
    CacheEntry,
    ResponseCache,
    create_cache_key,
    is_cache_enabled,
)

__all__ = ["CacheEntry", "ResponseCache", "create_cache_key", "is_cache_enabled"]
