"""
Content-Addressed AI Response Cache

In-memory cache of final AI responses keyed by the normalized last user
message, the chat mode and an optional context signature.

Architecture:
    ResponseCache (Public API)
        ├── create_cache_key (normalization + SHA-256 digest)
        ├── OrderedDict storage (insertion order = eviction order)
        └── MetricsCollector (hits / misses / evictions)

Key format:
    ai:{mode}:{first 16 hex chars of sha256(text [+ signature])}

Eviction:
    When full, the oldest 20% of entries (by insertion) are dropped before
    the new entry goes in. Expired entries are removed when read.

Enablement is re-read on every call: ``AI_CACHE_ENABLED`` true/1 or false/0
wins, otherwise the cache is only on in production.
"""

import hashlib
import re
import threading
import time
from collections import OrderedDict
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, replace
from typing import Any

from nexus_resilience.core.config.constants import (
    CACHE_DIGEST_LENGTH,
    CACHE_EVICTION_RATIO,
    CACHE_KEY_PREFIX,
    CACHE_MIN_KEY_TEXT_LENGTH,
    CACHE_MIN_RESPONSE_LENGTH,
    CACHE_STATS_TOP_ENTRIES,
    Stage,
)
from nexus_resilience.core.config.settings import get_feature_flags, get_settings
from nexus_resilience.core.exceptions import CacheError
from nexus_resilience.core.logging.logger import get_logger, log_stage
from nexus_resilience.core.observability.metrics import MetricsCollector, get_metrics_collector

logger = get_logger(__name__)

_WHITESPACE = re.compile(r"\s+")


def is_cache_enabled() -> bool:
    """Whether responses may be cached right now (read at call time)."""
    return get_feature_flags().cache_enabled


def _message_field(message: Any, name: str) -> Any:
    if isinstance(message, Mapping):
        return message.get(name)
    return getattr(message, name, None)


def _normalize(text: str) -> str:
    return _WHITESPACE.sub(" ", text.lower()).strip()


def create_cache_key(
    messages: Iterable[Any],
    mode: str,
    context_signature: str | None = None,
) -> str:
    """
    Build the cache key for a conversation.

    Only the last user message takes part. Returns an empty string, meaning
    "do not cache", when that message normalizes to fewer than 10 characters
    or when there is no user message at all.

    Args:
        messages: Chat messages (dicts or objects with ``role``/``content``)
        mode: Chat mode; different modes never share keys
        context_signature: Extra context that changes the answer

    Returns:
        Key such as ``ai:adaptive:3f2a9c0d1e4b5a6f`` or ``""``
    """
    last_user_content = None
    for message in reversed(list(messages)):
        if _message_field(message, "role") == "user":
            last_user_content = _message_field(message, "content")
            break

    if not isinstance(last_user_content, str):
        return ""

    text = _normalize(last_user_content)
    if len(text) < CACHE_MIN_KEY_TEXT_LENGTH:
        return ""

    material = f"{text}::{context_signature}" if context_signature else text
    digest = hashlib.sha256(material.encode("utf-8")).hexdigest()[:CACHE_DIGEST_LENGTH]
    return f"{CACHE_KEY_PREFIX}:{mode}:{digest}"


@dataclass
class CacheEntry:
    """A cached response with its bookkeeping."""

    key: str
    value: str
    model: str
    created_at: float  # epoch ms
    ttl_ms: int
    hits: int = 0

    def is_expired(self, now_ms: float) -> bool:
        return now_ms - self.created_at > self.ttl_ms


class ResponseCache:
    """
    Bounded in-process response cache.

    STAGE-3: Cache lookup / STAGE-6: Cache store

    ``get``/``set`` are coroutines so the chat path can swap in a remote
    store without changing callers; the map itself is guarded by a
    ``threading.Lock`` that is never held across an ``await``.
    """

    def __init__(
        self,
        max_size: int | None = None,
        default_ttl_ms: int | None = None,
        clock: Callable[[], float] = time.time,
        metrics: MetricsCollector | None = None,
    ):
        settings = get_settings().cache
        self._max_size = max_size if max_size is not None else settings.CACHE_MAX_SIZE
        if self._max_size < 1:
            raise CacheError("Response cache needs room for at least one entry", details={"max_size": self._max_size})
        self._default_ttl_ms = (
            default_ttl_ms if default_ttl_ms is not None else settings.CACHE_RESPONSE_TTL * 1000
        )
        self._clock = clock
        self._metrics = metrics or get_metrics_collector()
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def size(self) -> int:
        return len(self._entries)

    def _now_ms(self) -> float:
        return self._clock() * 1000

    async def get(self, key: str) -> str | None:
        """Return the cached response, or None when missing or expired."""
        entry = await self.get_entry(key)
        return entry.value if entry is not None else None

    async def get_entry(self, key: str) -> CacheEntry | None:
        """Like ``get`` but returns a copy of the whole entry (model, hits)."""
        if not key:
            return None

        with self._lock:
            entry = self._entries.get(key)
            expired = entry is not None and entry.is_expired(self._now_ms())
            if expired:
                del self._entries[key]
                entry = None
            if entry is not None:
                entry.hits += 1
                entry = replace(entry)

        if entry is None:
            self._metrics.record_cache_miss()
            log_stage(logger, Stage.CACHE_LOOKUP, "Cache miss", level="debug", cache_key=key, expired=expired)
            return None

        self._metrics.record_cache_hit()
        log_stage(logger, Stage.CACHE_LOOKUP, "Cache hit", cache_key=key, hits=entry.hits, model=entry.model)
        return entry

    async def set(self, key: str, response: str, model: str, ttl_ms: int | None = None) -> None:
        """
        Store a response.

        No-op when the cache is disabled, the key is empty or the response is
        shorter than 50 characters.
        """
        if not is_cache_enabled() or not key or len(response) < CACHE_MIN_RESPONSE_LENGTH:
            return

        evicted = 0
        with self._lock:
            if key in self._entries:
                del self._entries[key]
            elif len(self._entries) >= self._max_size:
                evicted = self._evict_oldest()

            self._entries[key] = CacheEntry(
                key=key,
                value=response,
                model=model,
                created_at=self._now_ms(),
                ttl_ms=ttl_ms if ttl_ms is not None else self._default_ttl_ms,
            )
            size = len(self._entries)

        if evicted:
            self._metrics.record_cache_eviction(evicted)
            logger.info("Cache full, evicted oldest entries", evicted=evicted, max_size=self._max_size)

        log_stage(logger, Stage.CACHE_STORE, "Response cached", cache_key=key, model=model, size=size)

    def _evict_oldest(self) -> int:
        count = min(max(1, int(self._max_size * CACHE_EVICTION_RATIO)), len(self._entries))
        for _ in range(count):
            self._entries.popitem(last=False)
        return count

    def invalidate_pattern(self, pattern: str) -> int:
        """Remove every entry whose key contains ``pattern``; return how many."""
        with self._lock:
            matching = [key for key in self._entries if pattern in key]
            for key in matching:
                del self._entries[key]

        if matching:
            logger.info("Cache entries invalidated", pattern=pattern, count=len(matching))
        return len(matching)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def get_cache_stats(self) -> dict[str, Any]:
        """
        Cache statistics for health and admin endpoints.

        ``entries`` lists at most 10 entries, most-hit first.
        """
        now_ms = self._now_ms()
        with self._lock:
            entries = sorted(self._entries.values(), key=lambda e: e.hits, reverse=True)
            top = [
                {
                    "key": entry.key,
                    "age_ms": int(now_ms - entry.created_at),
                    "hits": entry.hits,
                    "model": entry.model,
                }
                for entry in entries[:CACHE_STATS_TOP_ENTRIES]
            ]
            size = len(self._entries)

        return {
            "enabled": is_cache_enabled(),
            "size": size,
            "max_size": self._max_size,
            "entries": top,
        }
