"""
Resilience Module

Provider-facing resilience primitives:
- circuit_breaker: per-provider health tracking with lazy half-open probing
- failover: primary/fallback orchestration with retries
- stream_recovery: stream error classification and selective retry
"""

from nexus_resilience.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitSnapshot,
    CircuitState,
    ProviderCircuit,
    resolve_state,
)
from nexus_resilience.resilience.errors import is_provider_error
from nexus_resilience.resilience.failover import (
    FailoverOptions,
    FailoverOrchestrator,
    FailoverResult,
    is_failover_enabled,
)
from nexus_resilience.resilience.stream_recovery import (
    DEFAULT_STREAM_FALLBACK_MESSAGE,
    StreamErrorKind,
    StreamEvent,
    StreamRecoveryOptions,
    classify_stream_error,
    get_stream_error_message,
    is_recoverable_stream_error,
    recoverable_stream,
    with_stream_recovery,
)

__all__ = [
    # Circuit breaker
    "CircuitBreaker",
    "CircuitSnapshot",
    "CircuitState",
    "ProviderCircuit",
    "resolve_state",
    "is_provider_error",
    # Failover
    "FailoverOptions",
    "FailoverOrchestrator",
    "FailoverResult",
    "is_failover_enabled",
    # Stream recovery
    "DEFAULT_STREAM_FALLBACK_MESSAGE",
    "StreamErrorKind",
    "StreamEvent",
    "StreamRecoveryOptions",
    "classify_stream_error",
    "get_stream_error_message",
    "is_recoverable_stream_error",
    "recoverable_stream",
    "with_stream_recovery",
]
