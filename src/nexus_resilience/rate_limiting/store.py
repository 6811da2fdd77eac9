"""
Rate Limit Storage Backends

Fixed-window counters keyed by ``ratelimit:{namespace}:{identifier}``.

Architecture:
    RateLimitStore (interface)
        ├── InMemoryRateLimitStore (default, per-process dict)
        └── RedisRateLimitStore (distributed, redis.asyncio)

Window semantics (both backends):
    - First hit, or a hit after ``reset_at``: ``{count: 1, reset_at: now + window}``
    - Hit at or before ``reset_at``: ``count += 1``

The Redis backend never decides fail-open/fail-closed on its own: any Redis
failure surfaces as ``RateLimitStoreUnavailableError`` and the limiter applies
the configured policy.
"""

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Literal

import redis.asyncio as redis
from redis.exceptions import RedisError

from nexus_resilience.core.config.constants import REDIS_KEY_RATE_LIMIT
from nexus_resilience.core.exceptions import RateLimitStoreUnavailableError
from nexus_resilience.core.logging.logger import get_logger

logger = get_logger(__name__)

RateLimitMode = Literal["in-memory", "distributed"]


def build_key(namespace: str, identifier: str) -> str:
    return f"{REDIS_KEY_RATE_LIMIT}:{namespace}:{identifier}"


@dataclass
class RateLimitRecord:
    """Counter state for one identifier in one namespace."""

    count: int
    reset_at: float  # epoch ms


class RateLimitStore(ABC):
    """Interface implemented by every rate-limit backend."""

    mode: RateLimitMode

    @abstractmethod
    async def increment(self, key: str, window_ms: int, now_ms: float) -> RateLimitRecord:
        """Count one request against ``key`` and return the updated record."""

    @abstractmethod
    async def delete(self, keys: list[str]) -> int:
        """Remove ``keys``; return how many existed."""

    @abstractmethod
    async def clear(self) -> None:
        """Remove every rate-limit record."""

    async def close(self) -> None:
        return None


class InMemoryRateLimitStore(RateLimitStore):
    """
    Per-process counters.

    Single-instance deployments only: counters are not shared between
    workers. Every read-modify-write happens under one ``threading.Lock``.
    """

    mode: RateLimitMode = "in-memory"

    def __init__(self):
        self._records: dict[str, RateLimitRecord] = {}
        self._lock = threading.Lock()

    async def increment(self, key: str, window_ms: int, now_ms: float) -> RateLimitRecord:
        with self._lock:
            record = self._records.get(key)
            if record is None or now_ms > record.reset_at:
                record = RateLimitRecord(count=1, reset_at=now_ms + window_ms)
                self._records[key] = record
            else:
                record.count += 1
            return RateLimitRecord(count=record.count, reset_at=record.reset_at)

    async def delete(self, keys: list[str]) -> int:
        with self._lock:
            return sum(1 for key in keys if self._records.pop(key, None) is not None)

    async def clear(self) -> None:
        with self._lock:
            self._records.clear()


class RedisRateLimitStore(RateLimitStore):
    """
    Distributed counters in Redis.

    STAGE-1.1: Distributed rate limit check

    One pipeline per check: INCR + PTTL, then PEXPIRE when the key is new
    (or lost its TTL). ``reset_at`` is derived from the remaining TTL so all
    instances agree on when a window ends.
    """

    mode: RateLimitMode = "distributed"

    def __init__(self, url: str | None = None, client: redis.Redis | None = None):
        if client is None and url is None:
            raise ValueError("RedisRateLimitStore needs a url or a client")
        self._client = client or redis.from_url(url, decode_responses=True)

    async def increment(self, key: str, window_ms: int, now_ms: float) -> RateLimitRecord:
        try:
            pipe = self._client.pipeline()
            pipe.incr(key)
            pipe.pttl(key)
            count, ttl_ms = await pipe.execute()

            if int(count) == 1 or int(ttl_ms) < 0:
                await self._client.pexpire(key, window_ms)
                ttl_ms = window_ms
        except (RedisError, OSError) as e:
            raise RateLimitStoreUnavailableError.from_exception(
                e, message="Distributed rate limit store unavailable", key=key
            ) from e

        return RateLimitRecord(count=int(count), reset_at=now_ms + int(ttl_ms))

    async def delete(self, keys: list[str]) -> int:
        if not keys:
            return 0
        try:
            return int(await self._client.delete(*keys))
        except (RedisError, OSError) as e:
            raise RateLimitStoreUnavailableError.from_exception(
                e, message="Distributed rate limit store unavailable"
            ) from e

    async def clear(self) -> None:
        try:
            keys = [key async for key in self._client.scan_iter(match=f"{REDIS_KEY_RATE_LIMIT}:*")]
            if keys:
                await self._client.delete(*keys)
        except (RedisError, OSError) as e:
            raise RateLimitStoreUnavailableError.from_exception(
                e, message="Distributed rate limit store unavailable"
            ) from e

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except (RedisError, OSError) as e:
            logger.warning("Rate limit store ping failed", error=str(e))
            return False

    async def close(self) -> None:
        await self._client.aclose()
        logger.info("Redis rate limit store closed")
