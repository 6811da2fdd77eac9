"""
Chat Service

Composition root of the resilience layer. One instance is built at startup
(see ``app.lifespan``) and injected into route handlers; it owns the circuit
breaker, response cache, rate limiter, failover orchestrator and provider
registry, so no component relies on module-level state.

Request flow (``chat``):
    validate -> sanitize -> cache lookup -> failover(primary, fallback)
        each provider attempt wrapped in stream recovery
    -> cache store -> ChatResult

Request flow (``stream_chat``):
    validate -> sanitize -> pick healthy provider -> recoverable_stream
    -> circuit bookkeeping from the final event -> cache store

Provider selection for streams happens before the first event is sent, so
validation and "all providers down" still map to HTTP statuses.
"""

import asyncio
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import asdict, dataclass
from typing import Any

from nexus_resilience.caching.response_cache import ResponseCache, create_cache_key, is_cache_enabled
from nexus_resilience.core.config.constants import (
    KNOWN_PROVIDERS,
    MAX_MESSAGES_PER_REQUEST,
    PROVIDER_PRIORITY,
    SSE_EVENT_CHUNK,
    SSE_EVENT_COMPLETE,
    SSE_EVENT_ERROR,
    Stage,
)
from nexus_resilience.core.config.settings import get_settings
from nexus_resilience.core.exceptions import (
    AllProvidersUnavailableError,
    ConfigurationError,
    InvalidInputError,
    RateLimitExceededError,
)
from nexus_resilience.core.logging.logger import get_logger, log_stage
from nexus_resilience.core.observability.metrics import MetricsCollector, get_metrics_collector
from nexus_resilience.llm_providers.base_provider import BaseProvider, ProviderResponse
from nexus_resilience.llm_providers.registry import ProviderRegistry
from nexus_resilience.rate_limiting.client_identifier import ClientIdentifier
from nexus_resilience.rate_limiting.rate_limiter import RateLimiter, sanitize_messages
from nexus_resilience.resilience.circuit_breaker import CircuitBreaker
from nexus_resilience.resilience.failover import FailoverOptions, FailoverOrchestrator
from nexus_resilience.resilience.stream_recovery import (
    StreamErrorKind,
    StreamEvent,
    StreamRecoveryOptions,
    recoverable_stream,
    with_stream_recovery,
)

logger = get_logger(__name__)

# Stream faults that say nothing about provider health
_CLIENT_SIDE_STREAM_ERRORS = frozenset({StreamErrorKind.PARSE, StreamErrorKind.UNKNOWN})


@dataclass(frozen=True)
class ChatResult:
    """Outcome of one chat request."""

    content: str
    provider: str
    model: str
    cached: bool
    used_fallback: bool
    duration_ms: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class ChatService:
    """
    Resilient "ask the AI" service.

    All collaborators are injectable; anything omitted is built from settings.
    ``sleep`` is shared by failover backoff and stream recovery backoff.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        circuit_breaker: CircuitBreaker | None = None,
        cache: ResponseCache | None = None,
        rate_limiter: RateLimiter | None = None,
        metrics: MetricsCollector | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        primary_provider: str | None = None,
        fallback_provider: str | None = None,
    ):
        settings = get_settings()
        self.registry = registry
        self.metrics = metrics or get_metrics_collector()
        self.circuit_breaker = circuit_breaker or CircuitBreaker(metrics=self.metrics)
        self.cache = cache or ResponseCache(metrics=self.metrics)
        self.rate_limiter = rate_limiter or RateLimiter.from_settings(metrics=self.metrics)
        self.failover = FailoverOrchestrator(self.circuit_breaker, metrics=self.metrics, sleep=sleep)
        self._sleep = sleep
        self.primary_provider = primary_provider or settings.failover.FAILOVER_PRIMARY_PROVIDER
        self.fallback_provider = fallback_provider or settings.failover.FAILOVER_FALLBACK_PROVIDER
        for configured in (self.primary_provider, self.fallback_provider):
            if configured not in KNOWN_PROVIDERS:
                raise ConfigurationError(
                    f"Unknown provider in failover configuration: {configured}",
                    details={"provider": configured, "known": list(KNOWN_PROVIDERS)},
                )
        self._attempt_timeout = settings.failover.FAILOVER_ATTEMPT_TIMEOUT

    @classmethod
    def from_settings(cls, **kwargs) -> "ChatService":
        return cls(registry=ProviderRegistry.from_settings(), **kwargs)

    # ------------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------------

    async def enforce_rate_limit(self, client: ClientIdentifier) -> None:
        """
        Raises:
            RateLimitExceededError: The client is over its chat limit
        """
        result = await self.rate_limiter.check_rate_limit(client.id, client.is_fingerprint)
        if not result.allowed:
            raise RateLimitExceededError(
                "Chat rate limit exceeded", remaining_ms=result.remaining_ms or 0
            )

    async def enforce_transcribe_rate_limit(self, client: ClientIdentifier) -> None:
        result = await self.rate_limiter.check_transcribe_rate_limit(client.id, client.is_fingerprint)
        if not result.allowed:
            raise RateLimitExceededError(
                "Transcription rate limit exceeded", remaining_ms=result.remaining_ms or 0
            )

    # ------------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------------

    def _prepare_messages(self, messages: list[Any]) -> list[dict[str, str]]:
        if not messages:
            raise InvalidInputError("At least one message is required")
        if len(messages) > MAX_MESSAGES_PER_REQUEST:
            raise InvalidInputError(
                f"Too many messages (max {MAX_MESSAGES_PER_REQUEST})",
                details={"message_count": len(messages)},
            )

        sanitized = sanitize_messages(messages)
        if not any(m["role"] == "user" and m["content"].strip() for m in sanitized):
            raise InvalidInputError("A non-empty user message is required")
        return sanitized

    def _resolve_providers(self, requested: str | None) -> tuple[str, str]:
        """
        Primary and fallback for one call.

        A fallback equal to the primary, or one without an adapter, is replaced
        by the first configured provider in priority order.
        """
        primary = requested or self.primary_provider
        fallback = self.fallback_provider
        if fallback == primary or fallback not in self.registry:
            substitutes = [p for p in PROVIDER_PRIORITY if p != primary and p in self.registry]
            if substitutes:
                fallback = substitutes[0]
            elif fallback == primary:
                fallback = next(p for p in PROVIDER_PRIORITY if p != primary)
        return primary, fallback

    def _provider_call(
        self,
        provider: str,
        messages: list[dict[str, str]],
        model: str | None,
        cancel_event: asyncio.Event | None = None,
    ) -> Callable[[], Awaitable[ProviderResponse]]:
        async def call() -> ProviderResponse:
            adapter = self.registry.get(provider)
            return await with_stream_recovery(
                lambda: adapter.complete(messages, model),
                StreamRecoveryOptions(sleep=self._sleep, cancel_event=cancel_event),
            )

        return call

    async def chat(
        self,
        messages: list[Any],
        mode: str,
        model: str | None = None,
        provider: str | None = None,
        context_signature: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> ChatResult:
        """
        Answer a conversation through cache, failover and stream recovery.

        ``model`` only applies to the primary provider; the fallback uses its
        own default model. Once ``cancel_event`` is set (client gone), no
        further recovery retries are made.

        Raises:
            InvalidInputError: Malformed conversation
            AllProvidersUnavailableError: Both circuits open
            StreamCancelledError: ``cancel_event`` was set before a retry
            ProviderNotConfiguredError: The requested provider has no adapter
            ProviderError: Every attempt failed
        """
        started = time.perf_counter()
        sanitized = self._prepare_messages(messages)
        cache_key = create_cache_key(sanitized, mode, context_signature)

        if cache_key and is_cache_enabled():
            cached = await self.cache.get_entry(cache_key)
            if cached is not None:
                return ChatResult(
                    content=cached.value,
                    provider="cache",
                    model=cached.model,
                    cached=True,
                    used_fallback=False,
                    duration_ms=round((time.perf_counter() - started) * 1000, 2),
                )

        primary, fallback = self._resolve_providers(provider)
        outcome = await self.failover.execute_with_failover(
            self._provider_call(primary, sanitized, model, cancel_event),
            self._provider_call(fallback, sanitized, None, cancel_event),
            primary_provider=primary,
            fallback_provider=fallback,
            options=FailoverOptions(timeout=self._attempt_timeout),
        )
        response = outcome.result

        await self.cache.set(cache_key, response.content, response.model)

        log_stage(
            logger,
            Stage.PROVIDER_CALL,
            "Chat answered",
            provider=response.provider,
            model=response.model,
            used_fallback=outcome.used_fallback,
            duration_ms=outcome.duration_ms,
        )
        return ChatResult(
            content=response.content,
            provider=response.provider,
            model=response.model,
            cached=False,
            used_fallback=outcome.used_fallback,
            duration_ms=outcome.duration_ms,
        )

    def stream_chat(
        self,
        messages: list[Any],
        mode: str,
        model: str | None = None,
        provider: str | None = None,
        context_signature: str | None = None,
    ) -> tuple[str, AsyncIterator[StreamEvent]]:
        """
        Stream an answer from the healthiest provider.

        Validation and provider selection happen eagerly so their errors can
        still become HTTP statuses; mid-stream faults end the returned
        iterator with one friendly ``error`` event.

        Returns:
            (selected provider id, event iterator)

        Raises:
            InvalidInputError: Malformed conversation
            AllProvidersUnavailableError: Every configured provider has an open
                circuit, or none is configured
        """
        sanitized = self._prepare_messages(messages)
        preferred = provider or self.primary_provider
        configured = self.registry.available()
        selected = self.failover.select_healthy_provider(preferred, candidates=configured)
        if selected is None:
            raise AllProvidersUnavailableError(details={"providers": configured})

        adapter = self.registry.get(selected)
        stream_model = model if selected == preferred else None
        log_stage(
            logger,
            Stage.PROVIDER_SELECTION,
            "Streaming provider selected",
            provider=selected,
            preferred=preferred,
        )
        cache_key = create_cache_key(sanitized, mode, context_signature)
        return selected, self._stream_events(adapter, sanitized, stream_model, cache_key)

    async def _stream_events(
        self,
        adapter: BaseProvider,
        messages: list[dict[str, str]],
        model: str | None,
        cache_key: str,
    ) -> AsyncIterator[StreamEvent]:
        parts: list[str] = []

        async for event in recoverable_stream(adapter.stream(messages, model)):
            if event.type == SSE_EVENT_CHUNK:
                parts.append(event.content)
            elif event.type == SSE_EVENT_COMPLETE:
                self.circuit_breaker.record_success(adapter.name)
                await self.cache.set(cache_key, "".join(parts), model or adapter.config.default_model)
            elif event.type == SSE_EVENT_ERROR and event.error_kind not in _CLIENT_SIDE_STREAM_ERRORS:
                self.circuit_breaker.record_failure(adapter.name, event.error_kind.value)
            yield event

    # ------------------------------------------------------------------------
    # Health / admin
    # ------------------------------------------------------------------------

    def health(self) -> dict[str, Any]:
        settings = get_settings()
        providers = self.circuit_breaker.get_provider_health()
        all_open = all(not p["healthy"] for p in providers.values())
        stats = self.cache.get_cache_stats()
        return {
            "status": "degraded" if all_open else "healthy",
            "version": settings.app.APP_VERSION,
            "environment": settings.app.ENVIRONMENT,
            "providers": providers,
            "configured_providers": self.registry.available(),
            "rate_limit_mode": self.rate_limiter.get_rate_limit_mode(),
            "cache": {"enabled": stats["enabled"], "size": stats["size"], "max_size": stats["max_size"]},
        }

    async def close(self) -> None:
        await self.rate_limiter.close()
