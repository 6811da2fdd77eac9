"""
Pytest Configuration and Shared Test Fixtures

This module provides reusable fixtures for all tests. All fixtures defined
here are automatically available to every test file.

Time never really passes in these tests: components take a ``clock`` and a
``sleep`` and the fixtures below hand them a ``FakeClock`` and an
``AsyncMock``.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from nexus_resilience.core.config.constants import KNOWN_PROVIDERS
from nexus_resilience.core.config.settings import reload_settings
from nexus_resilience.core.observability.metrics import MetricsCollector

# Environment variables that would change behaviour between machines
_ISOLATED_ENV = (
    "AI_CACHE_ENABLED",
    "AI_FAILOVER_ENABLED",
    "RATE_LIMIT_FAIL_CLOSED",
    "RATE_LIMIT_REDIS_URL",
    "USE_FAKE_PROVIDERS",
    "OPENAI_API_KEY",
    "ANTHROPIC_API_KEY",
    "GOOGLE_API_KEY",
    "XAI_API_KEY",
    "MOONSHOT_API_KEY",
    "CB_FAILURE_THRESHOLD",
    "CB_RECOVERY_TIMEOUT",
)


class FakeClock:
    """Manually advanced epoch-seconds clock."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ============================================================================
# Environment / Settings
# ============================================================================


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch):
    """Run every test in a clean ``test`` environment with fresh settings."""
    for name in _ISOLATED_ENV:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("ENVIRONMENT", "test")
    reload_settings()
    yield
    reload_settings()


@pytest.fixture
def cache_enabled(monkeypatch):
    """Force the response cache on (it is production-only by default)."""
    monkeypatch.setenv("AI_CACHE_ENABLED", "true")


# ============================================================================
# Time / Metrics
# ============================================================================


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def no_sleep():
    """Backoff sleep that returns immediately and records requested delays."""
    return AsyncMock(return_value=None)


@pytest.fixture
def mock_metrics():
    return MagicMock(spec=MetricsCollector)


# ============================================================================
# Resilience Components
# ============================================================================


@pytest.fixture
def circuit_breaker(fake_clock, mock_metrics):
    from nexus_resilience.resilience.circuit_breaker import CircuitBreaker

    return CircuitBreaker(
        failure_threshold=3, recovery_timeout=60.0, clock=fake_clock, metrics=mock_metrics
    )


@pytest.fixture
def orchestrator(circuit_breaker, mock_metrics, no_sleep):
    from nexus_resilience.resilience.failover import FailoverOrchestrator

    return FailoverOrchestrator(circuit_breaker, metrics=mock_metrics, sleep=no_sleep)


@pytest.fixture
def response_cache(fake_clock, mock_metrics):
    from nexus_resilience.caching.response_cache import ResponseCache

    return ResponseCache(max_size=10, default_ttl_ms=60_000, clock=fake_clock, metrics=mock_metrics)


@pytest.fixture
def rate_limiter(fake_clock, mock_metrics):
    from nexus_resilience.rate_limiting.rate_limiter import RateLimiter

    return RateLimiter(clock=fake_clock, metrics=mock_metrics)


# ============================================================================
# Providers / Service
# ============================================================================


@pytest.fixture
def fake_providers():
    """One FakeProvider per known provider id."""
    from nexus_resilience.llm_providers.fake_provider import FakeProvider

    return {name: FakeProvider.named(name) for name in KNOWN_PROVIDERS}


@pytest.fixture
def provider_registry(fake_providers):
    from nexus_resilience.llm_providers.registry import ProviderRegistry

    return ProviderRegistry(fake_providers)


@pytest.fixture
def chat_service(provider_registry, circuit_breaker, response_cache, rate_limiter, mock_metrics, no_sleep):
    from nexus_resilience.services.chat_service import ChatService

    return ChatService(
        registry=provider_registry,
        circuit_breaker=circuit_breaker,
        cache=response_cache,
        rate_limiter=rate_limiter,
        metrics=mock_metrics,
        sleep=no_sleep,
        primary_provider="openai",
        fallback_provider="anthropic",
    )


# ============================================================================
# Sample Data
# ============================================================================


@pytest.fixture
def sample_messages():
    return [
        {"role": "user", "content": "Hello there"},
        {"role": "assistant", "content": "Hi! How can I help?"},
        {"role": "user", "content": "How do circuit breakers protect AI providers?"},
    ]
