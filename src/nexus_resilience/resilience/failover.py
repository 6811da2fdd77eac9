"""
Provider Failover Orchestrator

Runs one logical AI call against a primary provider and, when that provider
is unhealthy, against a fallback provider with retries.

State machine per call:
    trying-primary -> {success | trying-fallback} -> {success | exhausted}

Routing rules:
1. Primary circuit open (and failover enabled): primary is never called.
2. Primary success: circuit success recorded, primary result returned.
3. Primary failure: client errors are re-raised untouched; provider errors are
   recorded against the primary circuit.
4. Failover disabled: the original error is re-raised.
5. Fallback circuit also open: ``AllProvidersUnavailableError``.
6. Fallback is retried ``max_retries`` extra times with 1s, 2s, 4s... backoff.

Architectural Decision: tenacity AsyncRetrying for the fallback loop
- Backoff and stop conditions are declarative
- ``sleep`` is injectable so tests never wait in real time
"""

import asyncio
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Generic, Literal, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from nexus_resilience.core.config.constants import (
    DEFAULT_FALLBACK_PROVIDER,
    DEFAULT_PRIMARY_PROVIDER,
    FAILOVER_BACKOFF_BASE,
    PROVIDER_PRIORITY,
    Stage,
)
from nexus_resilience.core.config.settings import get_feature_flags, get_settings
from nexus_resilience.core.exceptions import AllProvidersUnavailableError, ProviderTimeoutError
from nexus_resilience.core.logging.logger import get_logger, log_stage
from nexus_resilience.core.observability.metrics import MetricsCollector, get_metrics_collector
from nexus_resilience.resilience.circuit_breaker import CircuitBreaker
from nexus_resilience.resilience.errors import is_provider_error

logger = get_logger(__name__)

T = TypeVar("T")


def is_failover_enabled() -> bool:
    """Failover is on unless ``AI_FAILOVER_ENABLED`` is "false" or "0"."""
    return get_feature_flags().failover_enabled


@dataclass
class FailoverOptions:
    """
    Per-call failover options.

    Attributes:
        max_retries: Extra attempts on the fallback provider
        timeout: Seconds allowed per attempt (None disables the limit)
        enabled: Overrides ``AI_FAILOVER_ENABLED`` when set
        sleep: Backoff sleep coroutine (``asyncio.sleep`` by default)
    """

    max_retries: int | None = None
    timeout: float | None = None
    enabled: bool | None = None
    sleep: Callable[[float], Awaitable[None]] | None = None


@dataclass(frozen=True)
class FailoverResult(Generic[T]):
    """Outcome of a failover execution."""

    result: T
    provider: Literal["primary", "fallback"]
    used_fallback: bool
    duration_ms: float


class FailoverOrchestrator:
    """
    Executes provider calls with circuit-aware failover.

    Holds no per-call state; one instance is shared by every request and
    only talks to the injected ``CircuitBreaker``.
    """

    def __init__(
        self,
        circuit_breaker: CircuitBreaker,
        metrics: MetricsCollector | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._circuit_breaker = circuit_breaker
        self._metrics = metrics or get_metrics_collector()
        self._sleep = sleep

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        return self._circuit_breaker

    async def execute_with_failover(
        self,
        primary_fn: Callable[[], Awaitable[T]],
        fallback_fn: Callable[[], Awaitable[T]],
        primary_provider: str = DEFAULT_PRIMARY_PROVIDER,
        fallback_provider: str = DEFAULT_FALLBACK_PROVIDER,
        options: FailoverOptions | None = None,
    ) -> FailoverResult[T]:
        """
        Call ``primary_fn`` and fall back to ``fallback_fn`` on provider errors.

        Raises:
            AllProvidersUnavailableError: Both circuits are open
            Exception: The primary error (client error or failover disabled)
                or the last fallback error once retries are exhausted
        """
        options = options or FailoverOptions()
        enabled = options.enabled if options.enabled is not None else is_failover_enabled()
        max_retries = (
            options.max_retries
            if options.max_retries is not None
            else get_settings().failover.FAILOVER_MAX_RETRIES
        )
        started = time.perf_counter()

        if enabled and self._circuit_breaker.is_circuit_open(primary_provider):
            log_stage(
                logger,
                Stage.FAILOVER,
                "Primary circuit open, using fallback",
                primary_provider=primary_provider,
                fallback_provider=fallback_provider,
            )
            self._ensure_fallback_available(primary_provider, fallback_provider)
            return await self._execute_fallback(
                fallback_fn, primary_provider, fallback_provider, max_retries, options, started
            )

        try:
            result = await self._attempt(primary_fn, primary_provider, options.timeout)
        except Exception as primary_error:
            provider_error = is_provider_error(primary_error)
            log_stage(
                logger,
                Stage.FAILOVER,
                "Primary provider failed",
                level="warning",
                provider=primary_provider,
                error=str(primary_error),
                error_type=type(primary_error).__name__,
                is_provider_error=provider_error,
                failover_enabled=enabled,
            )

            if not provider_error:
                raise
            self._circuit_breaker.record_failure(primary_provider, str(primary_error))

            if not enabled:
                raise

            self._ensure_fallback_available(primary_provider, fallback_provider)
            log_stage(
                logger,
                Stage.FAILOVER,
                "Attempting failover",
                primary_provider=primary_provider,
                fallback_provider=fallback_provider,
            )
            return await self._execute_fallback(
                fallback_fn, primary_provider, fallback_provider, max_retries, options, started
            )

        self._circuit_breaker.record_success(primary_provider)
        return FailoverResult(
            result=result,
            provider="primary",
            used_fallback=False,
            duration_ms=_elapsed_ms(started),
        )

    def select_healthy_provider(
        self,
        preferred: str = DEFAULT_PRIMARY_PROVIDER,
        candidates: Iterable[str] | None = None,
    ) -> str | None:
        """
        Pick a provider whose circuit is not open.

        Returns ``preferred`` when healthy, otherwise the first healthy provider
        in priority order (openai, google, anthropic, xai, moonshotai), or None
        when every circuit is open. With ``candidates`` given, providers outside
        that set are never returned; priority order is kept within it.
        """
        allowed = set(candidates) if candidates is not None else set(PROVIDER_PRIORITY) | {preferred}

        if preferred in allowed and not self._circuit_breaker.is_circuit_open(preferred):
            return preferred

        for provider in PROVIDER_PRIORITY:
            if provider == preferred or provider not in allowed:
                continue
            if not self._circuit_breaker.is_circuit_open(provider):
                log_stage(
                    logger,
                    Stage.PROVIDER_SELECTION,
                    "Preferred provider unhealthy, selected alternative",
                    preferred=preferred,
                    selected=provider,
                )
                return provider

        log_stage(
            logger,
            Stage.PROVIDER_SELECTION,
            "No healthy provider available",
            level="error",
            preferred=preferred,
        )
        return None

    def _ensure_fallback_available(self, primary_provider: str, fallback_provider: str) -> None:
        if not self._circuit_breaker.is_circuit_open(fallback_provider):
            return
        log_stage(
            logger,
            Stage.FAILOVER,
            "Both providers have open circuits",
            level="error",
            primary_provider=primary_provider,
            fallback_provider=fallback_provider,
        )
        raise AllProvidersUnavailableError(
            details={"providers": [primary_provider, fallback_provider]}
        )

    async def _execute_fallback(
        self,
        fallback_fn: Callable[[], Awaitable[T]],
        primary_provider: str,
        fallback_provider: str,
        max_retries: int,
        options: FailoverOptions,
        started: float,
    ) -> FailoverResult[T]:
        self._metrics.record_failover(primary_provider, fallback_provider)

        def _log_retry(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            log_stage(
                logger,
                Stage.RETRY,
                "Fallback attempt failed, retrying",
                level="warning",
                provider=fallback_provider,
                attempt=retry_state.attempt_number,
                max_attempts=max_retries + 1,
                delay_s=retry_state.next_action.sleep if retry_state.next_action else None,
                error=str(error),
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(max_retries + 1),
            wait=wait_exponential(multiplier=FAILOVER_BACKOFF_BASE),
            retry=retry_if_exception(is_provider_error),
            before_sleep=_log_retry,
            sleep=options.sleep or self._sleep,
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    result = await self._attempt_recorded(
                        fallback_fn, fallback_provider, options.timeout
                    )
        except Exception as fallback_error:
            log_stage(
                logger,
                Stage.FAILOVER,
                "All failover attempts exhausted",
                level="error",
                providers_tried=[primary_provider, fallback_provider],
                attempts=max_retries + 1,
                error=str(fallback_error),
                error_type=type(fallback_error).__name__,
            )
            raise

        log_stage(
            logger,
            Stage.FAILOVER,
            "Fallback provider succeeded",
            provider=fallback_provider,
        )
        return FailoverResult(
            result=result,
            provider="fallback",
            used_fallback=True,
            duration_ms=_elapsed_ms(started),
        )

    async def _attempt_recorded(self, fn: Callable[[], Awaitable[T]], provider: str, timeout: float | None) -> T:
        """One fallback attempt with circuit bookkeeping."""
        try:
            result = await self._attempt(fn, provider, timeout)
        except Exception as e:
            if is_provider_error(e):
                self._circuit_breaker.record_failure(provider, str(e))
            raise
        self._circuit_breaker.record_success(provider)
        return result

    async def _attempt(self, fn: Callable[[], Awaitable[T]], provider: str, timeout: float | None) -> T:
        attempt_started = time.perf_counter()
        try:
            if timeout is None:
                result = await fn()
            else:
                result = await asyncio.wait_for(fn(), timeout=timeout)
        except asyncio.TimeoutError as e:
            self._metrics.record_provider_call(provider, "timeout", time.perf_counter() - attempt_started)
            raise ProviderTimeoutError(
                f"Provider {provider} timed out after {timeout}s",
                details={"provider": provider, "timeout": timeout},
            ) from e
        except Exception:
            self._metrics.record_provider_call(provider, "error", time.perf_counter() - attempt_started)
            raise
        self._metrics.record_provider_call(provider, "success", time.perf_counter() - attempt_started)
        return result


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


__all__ = [
    "FailoverOptions",
    "FailoverOrchestrator",
    "FailoverResult",
    "is_failover_enabled",
]
