#!/usr/bin/env python3
"""
Metrics Collector with Prometheus Integration

Prometheus metrics for the resilience layer:
- Circuit breaker state and recorded failures per provider
- Failover activations and provider call latency
- Response cache hits, misses and evictions
- Rate limit rejections by namespace and reason

Architectural Decision: prometheus-client for industry-standard metrics
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from nexus_resilience.core.logging.logger import get_logger

logger = get_logger(__name__)


# ============================================================================
# Metric Definitions
# ============================================================================

CIRCUIT_BREAKER_STATE = Gauge(
    "nexus_ai_circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=half-open, 2=open)",
    ["provider"],
)

CIRCUIT_BREAKER_FAILURES = Counter(
    "nexus_ai_circuit_breaker_failures_total",
    "Total circuit breaker recorded failures",
    ["provider"],
)

FAILOVER_EVENTS = Counter(
    "nexus_ai_failover_total",
    "Requests served by the fallback provider",
    ["primary", "fallback"],
)

PROVIDER_REQUESTS = Counter(
    "nexus_ai_provider_requests_total",
    "Total requests to AI providers",
    ["provider", "status"],
)

PROVIDER_LATENCY = Histogram(
    "nexus_ai_provider_latency_seconds",
    "Provider response latency",
    ["provider"],
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

CACHE_HITS = Counter("nexus_ai_cache_hits_total", "Total response cache hits")
CACHE_MISSES = Counter("nexus_ai_cache_misses_total", "Total response cache misses")
CACHE_EVICTIONS = Counter("nexus_ai_cache_evictions_total", "Entries evicted on overflow")

RATE_LIMIT_EXCEEDED = Counter(
    "nexus_ai_rate_limit_exceeded_total",
    "Total rejected requests",
    ["namespace", "reason"],  # reason: window, burst, fail_closed
)

_STATE_VALUES = {"closed": 0, "half-open": 1, "open": 2}


class MetricsCollector:
    """
    Thin facade over the module-level Prometheus metrics.

    Components call the collector instead of touching metric objects so tests
    can swap it for a mock.
    """

    def record_circuit_state(self, provider: str, state: str) -> None:
        CIRCUIT_BREAKER_STATE.labels(provider=provider).set(_STATE_VALUES.get(state, 0))

    def record_circuit_failure(self, provider: str) -> None:
        CIRCUIT_BREAKER_FAILURES.labels(provider=provider).inc()

    def record_failover(self, primary: str, fallback: str) -> None:
        FAILOVER_EVENTS.labels(primary=primary, fallback=fallback).inc()

    def record_provider_call(self, provider: str, status: str, duration_s: float | None = None) -> None:
        PROVIDER_REQUESTS.labels(provider=provider, status=status).inc()
        if duration_s is not None:
            PROVIDER_LATENCY.labels(provider=provider).observe(duration_s)

    def record_cache_hit(self) -> None:
        CACHE_HITS.inc()

    def record_cache_miss(self) -> None:
        CACHE_MISSES.inc()

    def record_cache_eviction(self, count: int) -> None:
        CACHE_EVICTIONS.inc(count)

    def record_rate_limit_exceeded(self, namespace: str, reason: str) -> None:
        RATE_LIMIT_EXCEEDED.labels(namespace=namespace, reason=reason).inc()

    def get_prometheus_metrics(self) -> tuple[bytes, str]:
        """Return the exposition payload and its content type."""
        return generate_latest(REGISTRY), CONTENT_TYPE_LATEST


_metrics_collector: MetricsCollector | None = None


def get_metrics_collector() -> MetricsCollector:
    """Get global metrics collector instance."""
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector()
    return _metrics_collector
