"""
Unit Tests for ChatService

End-to-end behaviour of the resilience layer with fake providers: cache,
failover, per-attempt recovery, streaming and health reporting.
"""

import asyncio

import pytest

from nexus_resilience.core.exceptions import (
    AllProvidersUnavailableError,
    InvalidInputError,
    ProviderNotConfiguredError,
    RateLimitExceededError,
    StreamCancelledError,
)
from nexus_resilience.llm_providers.registry import ProviderRegistry
from nexus_resilience.rate_limiting.client_identifier import ClientIdentifier
from nexus_resilience.resilience.circuit_breaker import CircuitState
from nexus_resilience.resilience.stream_recovery import StreamErrorKind


def trip(breaker, *providers: str) -> None:
    for provider in providers:
        for _ in range(breaker.failure_threshold):
            breaker.record_failure(provider, "503")


async def collect(events):
    return [event async for event in events]


def only(providers, *names: str) -> ProviderRegistry:
    return ProviderRegistry({name: providers[name] for name in names})


@pytest.mark.unit
class TestChat:
    async def test_primary_answers(self, chat_service, sample_messages, fake_providers):
        result = await chat_service.chat(sample_messages, "adaptive")

        assert result.provider == "openai"
        assert result.model == "openai-fake"
        assert result.cached is False
        assert result.used_fallback is False
        assert "How do circuit breakers protect AI providers?" in result.content
        assert fake_providers["anthropic"].call_count == 0

    async def test_model_override_applies_to_primary(self, chat_service, sample_messages):
        result = await chat_service.chat(sample_messages, "adaptive", model="gpt-4o")
        assert result.model == "gpt-4o"

    async def test_provider_failure_fails_over(self, chat_service, sample_messages, fake_providers, circuit_breaker):
        fake_providers["openai"].fail_next(Exception("503 Service Unavailable"))

        result = await chat_service.chat(sample_messages, "adaptive", model="gpt-4o")

        assert result.provider == "anthropic"
        assert result.model == "anthropic-fake"
        assert result.used_fallback is True
        assert circuit_breaker.get_circuit_state("openai").failures == 1

    async def test_transient_fault_recovered_without_failover(
        self, chat_service, sample_messages, fake_providers, circuit_breaker, no_sleep
    ):
        fake_providers["openai"].fail_next(Exception("socket hang up"))

        result = await chat_service.chat(sample_messages, "adaptive")

        assert result.provider == "openai"
        assert result.used_fallback is False
        assert fake_providers["openai"].call_count == 2
        no_sleep.assert_awaited_once_with(0.5)
        assert circuit_breaker.get_circuit_state("openai").failures == 0

    async def test_exhausted_recovery_counts_one_circuit_failure(
        self, chat_service, sample_messages, fake_providers, circuit_breaker
    ):
        fake_providers["openai"].fail_next(*(Exception("socket hang up") for _ in range(3)))

        result = await chat_service.chat(sample_messages, "adaptive")

        assert result.used_fallback is True
        assert fake_providers["openai"].call_count == 3
        assert circuit_breaker.get_circuit_state("openai").failures == 1

    async def test_client_error_surfaces(self, chat_service, sample_messages, fake_providers, circuit_breaker):
        fake_providers["openai"].fail_next(Exception("Invalid API key"))

        with pytest.raises(Exception, match="Invalid API key"):
            await chat_service.chat(sample_messages, "adaptive")

        assert fake_providers["anthropic"].call_count == 0
        assert circuit_breaker.get_circuit_state("openai") is None

    async def test_both_circuits_open(self, chat_service, sample_messages, circuit_breaker, fake_providers):
        trip(circuit_breaker, "openai", "anthropic")

        with pytest.raises(AllProvidersUnavailableError):
            await chat_service.chat(sample_messages, "adaptive")

        assert fake_providers["openai"].call_count == 0

    async def test_requested_provider_becomes_primary(self, chat_service, sample_messages, fake_providers):
        result = await chat_service.chat(sample_messages, "adaptive", provider="google")
        assert result.provider == "google"

    async def test_fallback_never_equals_primary(self, chat_service, sample_messages, fake_providers):
        fake_providers["anthropic"].fail_next(Exception("503"))

        result = await chat_service.chat(sample_messages, "adaptive", provider="anthropic")

        assert result.provider == "openai"
        assert result.used_fallback is True

    async def test_unconfigured_fallback_is_replaced_by_configured_one(
        self, chat_service, sample_messages, fake_providers
    ):
        chat_service.registry = only(fake_providers, "openai", "xai")
        fake_providers["openai"].fail_next(Exception("503 Service Unavailable"))

        result = await chat_service.chat(sample_messages, "adaptive")

        assert result.provider == "xai"
        assert result.used_fallback is True

    async def test_missing_fallback_is_not_retried_or_tripped(
        self, chat_service, sample_messages, fake_providers, circuit_breaker, no_sleep
    ):
        chat_service.registry = only(fake_providers, "openai")
        fake_providers["openai"].fail_next(Exception("503 Service Unavailable"))

        with pytest.raises(ProviderNotConfiguredError):
            await chat_service.chat(sample_messages, "adaptive")

        no_sleep.assert_not_awaited()
        assert circuit_breaker.get_circuit_state("anthropic") is None
        assert circuit_breaker.get_circuit_state("openai").failures == 1

    async def test_cancel_event_stops_recovery_retries(
        self, chat_service, sample_messages, fake_providers, circuit_breaker
    ):
        cancelled = asyncio.Event()
        cancelled.set()
        fake_providers["openai"].fail_next(Exception("socket hang up"), Exception("socket hang up"))

        with pytest.raises(StreamCancelledError):
            await chat_service.chat(sample_messages, "adaptive", cancel_event=cancelled)

        assert fake_providers["openai"].call_count == 1
        assert fake_providers["anthropic"].call_count == 0
        assert circuit_breaker.get_circuit_state("openai") is None

    async def test_unset_cancel_event_changes_nothing(self, chat_service, sample_messages, fake_providers):
        fake_providers["openai"].fail_next(Exception("socket hang up"))

        result = await chat_service.chat(sample_messages, "adaptive", cancel_event=asyncio.Event())

        assert result.provider == "openai"
        assert fake_providers["openai"].call_count == 2

    @pytest.mark.parametrize(
        "messages",
        [
            [],
            [{"role": "user", "content": "hi"}] * 51,
            [{"role": "assistant", "content": "Only the assistant spoke"}],
            [{"role": "user", "content": "   "}],
        ],
    )
    async def test_invalid_conversations(self, chat_service, messages):
        with pytest.raises(InvalidInputError):
            await chat_service.chat(messages, "adaptive")


@pytest.mark.unit
@pytest.mark.usefixtures("cache_enabled")
class TestChatCaching:
    async def test_second_identical_request_is_served_from_cache(
        self, chat_service, sample_messages, fake_providers
    ):
        first = await chat_service.chat(sample_messages, "adaptive")
        second = await chat_service.chat(sample_messages, "adaptive")

        assert second.cached is True
        assert second.provider == "cache"
        assert second.model == first.model
        assert second.content == first.content
        assert fake_providers["openai"].call_count == 1

    async def test_mode_and_signature_separate_entries(self, chat_service, sample_messages, fake_providers):
        await chat_service.chat(sample_messages, "adaptive")
        await chat_service.chat(sample_messages, "creative")
        await chat_service.chat(sample_messages, "adaptive", context_signature="playlist-7")

        assert fake_providers["openai"].call_count == 3

    async def test_cache_hit_bypasses_open_circuits(self, chat_service, sample_messages, circuit_breaker):
        await chat_service.chat(sample_messages, "adaptive")
        trip(circuit_breaker, "openai", "anthropic")

        assert (await chat_service.chat(sample_messages, "adaptive")).cached is True

    async def test_outage_failover_then_cached_answer(
        self, chat_service, sample_messages, fake_providers, circuit_breaker
    ):
        """
        Three failed primary calls open its circuit; the next request goes
        straight to the fallback and is cached; repeating it calls nobody.
        """
        fake_providers["openai"].fail_next(*(Exception("503 Service Unavailable") for _ in range(3)))
        for i in range(3):
            warmup = await chat_service.chat(sample_messages, "adaptive", context_signature=f"warmup-{i}")
            assert warmup.used_fallback is True

        assert circuit_breaker.is_circuit_open("openai") is True

        answered = await chat_service.chat(sample_messages, "adaptive")

        assert answered.provider == "anthropic"
        assert answered.used_fallback is True
        assert fake_providers["openai"].call_count == 3
        assert fake_providers["anthropic"].call_count == 4

        replayed = await chat_service.chat(sample_messages, "adaptive")

        assert replayed.cached is True
        assert replayed.content == answered.content
        assert fake_providers["openai"].call_count == 3
        assert fake_providers["anthropic"].call_count == 4

    async def test_nothing_cached_when_disabled(self, chat_service, sample_messages, fake_providers, monkeypatch):
        monkeypatch.setenv("AI_CACHE_ENABLED", "false")

        await chat_service.chat(sample_messages, "adaptive")
        await chat_service.chat(sample_messages, "adaptive")

        assert fake_providers["openai"].call_count == 2


@pytest.mark.unit
class TestStreamChat:
    async def test_stream_completes_and_records_success(self, chat_service, sample_messages, circuit_breaker):
        circuit_breaker.record_failure("openai", "503")

        provider, events = chat_service.stream_chat(sample_messages, "adaptive")
        received = await collect(events)

        assert provider == "openai"
        assert received[-1].type == "complete"
        assert all(e.type == "chunk" for e in received[:-1])
        assert "circuit breakers" in "".join(e.content for e in received[:-1])
        assert circuit_breaker.get_circuit_state("openai").failures == 0

    async def test_mid_stream_fault_ends_with_error_event(
        self, chat_service, sample_messages, fake_providers, circuit_breaker
    ):
        fake_providers["openai"].fail_next(Exception("read ECONNRESET"))

        _, events = chat_service.stream_chat(sample_messages, "adaptive")
        received = await collect(events)

        assert received[0].type == "chunk"
        assert received[-1].type == "error"
        assert received[-1].error_kind is StreamErrorKind.CONNECTION
        assert circuit_breaker.get_circuit_state("openai").failures == 1

    async def test_unknown_stream_fault_does_not_trip_circuit(
        self, chat_service, sample_messages, fake_providers, circuit_breaker
    ):
        fake_providers["openai"].fail_next(ValueError("weird"))

        _, events = chat_service.stream_chat(sample_messages, "adaptive")
        received = await collect(events)

        assert received[-1].error_kind is StreamErrorKind.UNKNOWN
        assert circuit_breaker.get_circuit_state("openai") is None

    async def test_open_preferred_provider_is_skipped(self, chat_service, sample_messages, circuit_breaker):
        trip(circuit_breaker, "openai")

        provider, events = chat_service.stream_chat(sample_messages, "adaptive", model="gpt-4o")

        assert provider == "google"
        assert (await collect(events))[-1].type == "complete"

    def test_everything_open_raises_before_streaming(self, chat_service, sample_messages, circuit_breaker):
        trip(circuit_breaker, "openai", "google", "anthropic", "xai", "moonshotai")

        with pytest.raises(AllProvidersUnavailableError):
            chat_service.stream_chat(sample_messages, "adaptive")

    def test_unconfigured_provider_is_never_selected(self, chat_service, sample_messages, fake_providers):
        chat_service.registry = only(fake_providers, "openai")

        provider, _ = chat_service.stream_chat(sample_messages, "adaptive", provider="xai")

        assert provider == "openai"

    async def test_open_preferred_falls_to_configured_alternative(
        self, chat_service, sample_messages, fake_providers, circuit_breaker
    ):
        chat_service.registry = only(fake_providers, "openai", "anthropic")
        trip(circuit_breaker, "openai")

        provider, events = chat_service.stream_chat(sample_messages, "adaptive")

        assert provider == "anthropic"
        assert (await collect(events))[-1].type == "complete"
        assert fake_providers["google"].call_count == 0

    def test_nothing_configured_raises_before_streaming(self, chat_service, sample_messages):
        chat_service.registry = ProviderRegistry()

        with pytest.raises(AllProvidersUnavailableError):
            chat_service.stream_chat(sample_messages, "adaptive")

    def test_validation_is_eager(self, chat_service):
        with pytest.raises(InvalidInputError):
            chat_service.stream_chat([], "adaptive")

    @pytest.mark.usefixtures("cache_enabled")
    async def test_completed_stream_is_cached(self, chat_service, sample_messages, fake_providers):
        _, events = chat_service.stream_chat(sample_messages, "adaptive")
        streamed = "".join(e.content for e in await collect(events) if e.type == "chunk")

        result = await chat_service.chat(sample_messages, "adaptive")

        assert result.cached is True
        assert result.content == streamed


@pytest.mark.unit
class TestRateLimitAndHealth:
    async def test_enforce_rate_limit(self, chat_service):
        client = ClientIdentifier(id="fp-abc", is_fingerprint=True)
        for _ in range(20):
            await chat_service.enforce_rate_limit(client)

        with pytest.raises(RateLimitExceededError) as exc_info:
            await chat_service.enforce_rate_limit(client)

        assert exc_info.value.remaining_ms == 300_000

    async def test_transcription_limit_is_separate(self, chat_service):
        client = ClientIdentifier(id="fp-abc", is_fingerprint=True)
        for _ in range(10):
            await chat_service.enforce_transcribe_rate_limit(client)

        with pytest.raises(RateLimitExceededError):
            await chat_service.enforce_transcribe_rate_limit(client)
        await chat_service.enforce_rate_limit(client)

    def test_health(self, chat_service, circuit_breaker):
        trip(circuit_breaker, "openai")

        health = chat_service.health()

        assert health["status"] == "healthy"
        assert health["providers"]["openai"]["state"] == CircuitState.OPEN.value
        assert health["configured_providers"] == ["openai", "anthropic", "google", "xai", "moonshotai"]
        assert health["rate_limit_mode"] == "in-memory"
        assert health["cache"] == {"enabled": False, "size": 0, "max_size": 10}
        assert health["environment"] == "test"

    def test_health_degraded_when_everything_open(self, chat_service, circuit_breaker):
        trip(circuit_breaker, "openai", "google", "anthropic", "xai", "moonshotai")
        assert chat_service.health()["status"] == "degraded"


@pytest.mark.unit
def test_unknown_configured_provider_is_rejected(provider_registry, circuit_breaker, response_cache, rate_limiter):
    from nexus_resilience.core.exceptions import ConfigurationError
    from nexus_resilience.services.chat_service import ChatService

    with pytest.raises(ConfigurationError) as exc_info:
        ChatService(
            registry=provider_registry,
            circuit_breaker=circuit_breaker,
            cache=response_cache,
            rate_limiter=rate_limiter,
            primary_provider="mistral",
        )

    assert exc_info.value.details["provider"] == "mistral"
