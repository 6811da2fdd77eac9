"""
Rate Limiter

Per-client request limits for the chat and transcription endpoints.

Features:
- Fixed-window counters per identifier, chat and transcription counted
  independently (exhausting one never affects the other)
- Burst detection for session identifiers (8 requests per 10s by default);
  header fingerprints skip it because unrelated devices can share one
- In-memory counters by default, Redis counters when RATE_LIMIT_REDIS_URL
  is set
- Explicit failure policy for the Redis store: fail-closed rejects, fail-open
  counts in process memory; both are logged
- Message sanitization (history cap, HTML stripping, truncation, role
  normalization) and the 429 response body

Algorithm (per check):
1. Session identifiers: burst window check
2. Increment the window counter for ``{namespace}:{identifier}``
3. ``count > max`` -> rejected with ``remaining_ms = reset_at - now``
"""

import math
import re
import threading
import time
from collections import deque
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from nexus_resilience.core.config.constants import (
    ALLOWED_MESSAGE_ROLES,
    MAX_CONTENT_LENGTH,
    MAX_HISTORY,
    RATE_LIMIT_FAIL_CLOSED_RETRY_MS,
    Stage,
)
from nexus_resilience.core.config.settings import get_feature_flags, get_settings
from nexus_resilience.core.exceptions import RateLimitStoreUnavailableError
from nexus_resilience.core.logging.logger import get_logger, log_stage
from nexus_resilience.core.observability.metrics import MetricsCollector, get_metrics_collector
from nexus_resilience.rate_limiting.store import (
    InMemoryRateLimitStore,
    RateLimitMode,
    RateLimitRecord,
    RateLimitStore,
    RedisRateLimitStore,
    build_key,
)

logger = get_logger(__name__)

CHAT_NAMESPACE = "chat"
TRANSCRIBE_NAMESPACE = "transcribe"

_HTML_TAG = re.compile(r"<[^>]*>")


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining_ms: int | None = None


def is_fail_closed_enabled() -> bool:
    """``RATE_LIMIT_FAIL_CLOSED`` true/1 or false/0; otherwise on in production."""
    return get_feature_flags().fail_closed


def is_distributed_store_configured() -> bool:
    return bool(get_settings().rate_limit.RATE_LIMIT_REDIS_URL)


def build_rate_limit_response(remaining_ms: float) -> dict[str, Any]:
    """
    JSON body for a 429 response.

    ``retry_after`` is in whole seconds, rounded up (1100 ms -> 2).
    """
    retry_after = max(0, math.ceil(remaining_ms / 1000))
    return {
        "error": f"Rate limit exceeded. Please wait {retry_after} seconds before sending another message.",
        "retry_after": retry_after,
    }


def _field(message: Any, name: str) -> Any:
    if isinstance(message, Mapping):
        return message.get(name)
    return getattr(message, name, None)


def sanitize_messages(messages: Iterable[Any]) -> list[dict[str, str]]:
    """
    Clean a chat history before it reaches a provider.

    - Keeps only the last ``MAX_HISTORY`` messages
    - Strips HTML tags, then truncates content to ``MAX_CONTENT_LENGTH``
    - Rewrites roles other than user/assistant to ``user``
    """
    recent = list(messages)[-MAX_HISTORY:]

    sanitized = []
    for message in recent:
        role = _field(message, "role")
        content = _field(message, "content")
        content = "" if content is None else str(content)

        sanitized.append(
            {
                "role": role if role in ALLOWED_MESSAGE_ROLES else "user",
                "content": _HTML_TAG.sub("", content)[:MAX_CONTENT_LENGTH],
            }
        )
    return sanitized


class BurstTracker:
    """Sliding log of recent request times per key."""

    def __init__(self):
        self._events: dict[str, deque[float]] = {}
        self._lock = threading.Lock()

    def hit(self, key: str, window_ms: int, max_requests: int, now_ms: float) -> int | None:
        """
        Record a request. Returns None when allowed, otherwise the ms until
        the oldest request leaves the window.
        """
        with self._lock:
            events = self._events.setdefault(key, deque())
            while events and now_ms - events[0] >= window_ms:
                events.popleft()

            if len(events) >= max_requests:
                return max(1, math.ceil(events[0] + window_ms - now_ms))

            events.append(now_ms)
            return None

    def forget(self, keys: Iterable[str]) -> int:
        with self._lock:
            return sum(1 for key in keys if self._events.pop(key, None) is not None)

    def clear(self) -> None:
        with self._lock:
            self._events.clear()


class RateLimiter:
    """
    Chat and transcription rate limiter.

    STAGE-1: Rate limiting

    One instance per process. ``store`` is the primary backend (Redis in
    distributed mode); ``fallback_store`` holds fail-open counts and is the
    primary store in in-memory mode.
    """

    def __init__(
        self,
        store: RateLimitStore | None = None,
        clock: Callable[[], float] = time.time,
        metrics: MetricsCollector | None = None,
    ):
        self._settings = get_settings().rate_limit
        self._fallback_store = InMemoryRateLimitStore()
        self._store = store or self._fallback_store
        self._bursts = BurstTracker()
        self._clock = clock
        self._metrics = metrics or get_metrics_collector()

    @classmethod
    def from_settings(cls, **kwargs) -> "RateLimiter":
        """Build a limiter whose backend follows ``RATE_LIMIT_REDIS_URL``."""
        url = get_settings().rate_limit.RATE_LIMIT_REDIS_URL
        store = RedisRateLimitStore(url=url) if url else None
        return cls(store=store, **kwargs)

    @property
    def store(self) -> RateLimitStore:
        return self._store

    def get_rate_limit_mode(self) -> RateLimitMode:
        return self._store.mode

    async def check_rate_limit(self, identifier: str, is_fingerprint: bool) -> RateLimitResult:
        """Count one chat request for ``identifier``."""
        return await self._check(
            CHAT_NAMESPACE,
            identifier,
            is_fingerprint,
            window_ms=self._settings.RATE_LIMIT_WINDOW_MS,
            max_requests=self._settings.RATE_LIMIT_MAX_MESSAGES,
        )

    async def check_transcribe_rate_limit(self, identifier: str, is_fingerprint: bool) -> RateLimitResult:
        """Count one transcription request for ``identifier``."""
        return await self._check(
            TRANSCRIBE_NAMESPACE,
            identifier,
            is_fingerprint,
            window_ms=self._settings.TRANSCRIBE_RATE_LIMIT_WINDOW_MS,
            max_requests=self._settings.RATE_LIMIT_MAX_TRANSCRIPTIONS,
        )

    async def _check(
        self,
        namespace: str,
        identifier: str,
        is_fingerprint: bool,
        window_ms: int,
        max_requests: int,
    ) -> RateLimitResult:
        key = build_key(namespace, identifier)
        now_ms = self._clock() * 1000

        if not is_fingerprint:
            burst_wait = self._bursts.hit(
                key,
                self._settings.RATE_LIMIT_BURST_WINDOW_MS,
                self._settings.RATE_LIMIT_BURST_MAX,
                now_ms,
            )
            if burst_wait is not None:
                return self._reject(namespace, is_fingerprint, "burst", burst_wait)

        try:
            record = await self._store.increment(key, window_ms, now_ms)
        except RateLimitStoreUnavailableError as e:
            if is_fail_closed_enabled():
                log_stage(
                    logger,
                    Stage.RATE_LIMITING,
                    "Rate limit store unavailable, failing closed",
                    level="error",
                    namespace=namespace,
                    error=str(e),
                )
                return self._reject(namespace, is_fingerprint, "fail_closed", RATE_LIMIT_FAIL_CLOSED_RETRY_MS)

            log_stage(
                logger,
                Stage.RATE_LIMITING,
                "Rate limit store unavailable, failing open to in-memory counters",
                level="warning",
                namespace=namespace,
                error=str(e),
            )
            record = await self._fallback_store.increment(key, window_ms, now_ms)

        return self._evaluate(namespace, is_fingerprint, record, max_requests, now_ms)

    def _evaluate(
        self,
        namespace: str,
        is_fingerprint: bool,
        record: RateLimitRecord,
        max_requests: int,
        now_ms: float,
    ) -> RateLimitResult:
        if record.count > max_requests:
            remaining_ms = max(1, math.ceil(record.reset_at - now_ms))
            return self._reject(namespace, is_fingerprint, "window", remaining_ms)
        return RateLimitResult(allowed=True)

    def _reject(self, namespace: str, is_fingerprint: bool, reason: str, remaining_ms: int) -> RateLimitResult:
        self._metrics.record_rate_limit_exceeded(namespace, reason)
        log_stage(
            logger,
            Stage.RATE_LIMITING,
            "Rate limit exceeded",
            level="warning",
            namespace=namespace,
            reason=reason,
            identifier_kind="fingerprint" if is_fingerprint else "session",
            remaining_ms=remaining_ms,
        )
        return RateLimitResult(allowed=False, remaining_ms=remaining_ms)

    async def clear_rate_limit(self, identifier: str) -> bool:
        """Drop every counter for ``identifier``. Returns True if any existed."""
        keys = [build_key(ns, identifier) for ns in (CHAT_NAMESPACE, TRANSCRIBE_NAMESPACE)]
        removed = await self._fallback_store.delete(keys)
        if self._store is not self._fallback_store:
            removed += await self._store.delete(keys)
        removed += self._bursts.forget(keys)
        return removed > 0

    async def clear_all_rate_limits(self) -> None:
        await self._fallback_store.clear()
        if self._store is not self._fallback_store:
            await self._store.clear()
        self._bursts.clear()
        logger.info("All rate limits cleared")

    async def close(self) -> None:
        await self._store.close()
