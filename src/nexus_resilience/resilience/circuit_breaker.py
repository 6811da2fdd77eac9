"""
Circuit Breaker for AI Providers.

Per-provider health tracking that lets the failover layer skip providers that
are known to be down. Each provider gets its own ``pybreaker.CircuitBreaker``;
state changes go through pybreaker's ``open``/``half_open``/``close`` so the
registered listener sees every transition.

MECHANISM OF ACTION:
-------------------
1.  **State per provider**:
    A breaker is created the first time a success or a failure is recorded
    for a provider. Providers that were never seen are treated as healthy
    (closed).

2.  **State Transitions**:
    - **CLOSED**: Requests are allowed.
      - On Failure: the fail counter increments.
      - On Success: the fail counter resets to 0.
      - Threshold Reached: ``failures >= failure_threshold`` opens the circuit.

    - **OPEN**: Requests are skipped (fail fast).
      - Recovery: once ``recovery_timeout`` seconds have passed since the last
        failure, the next read moves the circuit to HALF-OPEN. There is no
        background timer; the transition is computed by ``resolve_state``
        against the injected clock.

    - **HALF-OPEN**: Probing mode.
      - On Success: back to CLOSED.
      - On Failure: straight back to OPEN, with the timer restarted.

3.  **Failure classification**:
    Callers decide whether an error counts via ``is_provider_error``. Client
    errors (bad API key, bad request, content policy) never trip a circuit.

All read-modify-write sequences on the breaker map run under one lock.
"""

import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any

import pybreaker

from nexus_resilience.core.config.constants import KNOWN_PROVIDERS, Stage
from nexus_resilience.core.config.settings import get_settings
from nexus_resilience.core.logging.logger import get_logger, log_stage
from nexus_resilience.core.observability.metrics import MetricsCollector, get_metrics_collector
from nexus_resilience.resilience.errors import is_provider_error

logger = get_logger(__name__)

__all__ = [
    "CircuitBreaker",
    "CircuitSnapshot",
    "CircuitState",
    "ClockedCircuitStorage",
    "ProviderCircuit",
    "ProviderCircuitListener",
    "is_provider_error",
    "resolve_state",
]


class CircuitState(str, Enum):
    """Enumeration of possible circuit breaker states (pybreaker's state names)."""

    CLOSED = pybreaker.STATE_CLOSED
    OPEN = pybreaker.STATE_OPEN
    HALF_OPEN = pybreaker.STATE_HALF_OPEN


@dataclass
class ProviderCircuit:
    """
    Point-in-time view of a single provider's circuit.

    Attributes:
        state: Stored state (may be stale until ``resolve_state`` runs)
        failures: Consecutive failures since the last success
        total_failures: Lifetime failure count, never reset
        last_failure_at: Epoch seconds of the last recorded failure
        last_success_at: Epoch seconds of the last recorded success
    """

    state: CircuitState = CircuitState.CLOSED
    failures: int = 0
    total_failures: int = 0
    last_failure_at: float | None = None
    last_success_at: float | None = None


@dataclass(frozen=True)
class CircuitSnapshot:
    """Read-only copy of a provider circuit handed out to callers."""

    provider: str
    state: CircuitState
    failures: int
    total_failures: int
    last_failure_at: float | None
    last_success_at: float | None

    @property
    def is_open(self) -> bool:
        return self.state is CircuitState.OPEN

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["state"] = self.state.value
        data["is_open"] = self.is_open
        return data


def resolve_state(circuit: ProviderCircuit, now: float, recovery_timeout: float) -> CircuitState:
    """
    Compute the effective state of a circuit at ``now``.

    Pure function: an OPEN circuit whose last failure is at least
    ``recovery_timeout`` seconds old is HALF-OPEN; every other state is
    returned unchanged.
    """
    if circuit.state is not CircuitState.OPEN:
        return circuit.state
    if circuit.last_failure_at is None:
        return CircuitState.HALF_OPEN
    if now - circuit.last_failure_at >= recovery_timeout:
        return CircuitState.HALF_OPEN
    return CircuitState.OPEN


class ClockedCircuitStorage(pybreaker.CircuitMemoryStorage):
    """
    In-memory pybreaker storage that also keeps lifetime failures and the
    last failure/success times on the breaker's own clock.
    """

    def __init__(self):
        super().__init__(pybreaker.STATE_CLOSED)
        self.total_failures = 0
        self.last_failure_at: float | None = None
        self.last_success_at: float | None = None


class ProviderCircuitListener(pybreaker.CircuitBreakerListener):
    """Publishes circuit transitions to Prometheus and the log."""

    def __init__(self, metrics: MetricsCollector):
        self._metrics = metrics

    def state_change(self, cb: pybreaker.CircuitBreaker, old_state, new_state) -> None:
        previous = old_state.name if old_state is not None else None
        self._metrics.record_circuit_state(cb.name, new_state.name)
        log_stage(
            logger,
            Stage.CIRCUIT_BREAKER,
            "Circuit state changed",
            level="error" if new_state.name == pybreaker.STATE_OPEN else "info",
            provider=cb.name,
            old_state=previous,
            new_state=new_state.name,
            failures=cb.fail_counter,
        )


class CircuitBreaker:
    """
    In-process circuit breaker keyed by provider id.

    Constructed once per process (see ``ChatService``) and shared by every
    request; ``clock`` is injectable so tests can move time forward.
    """

    def __init__(
        self,
        failure_threshold: int | None = None,
        recovery_timeout: float | None = None,
        clock: Callable[[], float] = time.time,
        known_providers: Iterable[str] = KNOWN_PROVIDERS,
        metrics: MetricsCollector | None = None,
    ):
        settings = get_settings().circuit_breaker
        self._failure_threshold = (
            failure_threshold if failure_threshold is not None else settings.CB_FAILURE_THRESHOLD
        )
        self._recovery_timeout = (
            recovery_timeout if recovery_timeout is not None else settings.CB_RECOVERY_TIMEOUT
        )
        self._clock = clock
        self._known_providers = tuple(known_providers)
        self._metrics = metrics or get_metrics_collector()
        self._listener = ProviderCircuitListener(self._metrics)
        self._breakers: dict[str, pybreaker.CircuitBreaker] = {}
        self._storages: dict[str, ClockedCircuitStorage] = {}
        self._lock = threading.Lock()

    @property
    def failure_threshold(self) -> int:
        return self._failure_threshold

    @property
    def recovery_timeout(self) -> float:
        return self._recovery_timeout

    def _get_breaker(self, provider: str) -> pybreaker.CircuitBreaker:
        breaker = self._breakers.get(provider)
        if breaker is None:
            storage = ClockedCircuitStorage()
            breaker = pybreaker.CircuitBreaker(
                fail_max=self._failure_threshold,
                reset_timeout=self._recovery_timeout,
                listeners=[self._listener],
                state_storage=storage,
                name=provider,
            )
            self._breakers[provider] = breaker
            self._storages[provider] = storage
        return breaker

    def _view(self, breaker: pybreaker.CircuitBreaker) -> ProviderCircuit:
        storage = self._storages[breaker.name]
        return ProviderCircuit(
            state=CircuitState(breaker.current_state),
            failures=breaker.fail_counter,
            total_failures=storage.total_failures,
            last_failure_at=storage.last_failure_at,
            last_success_at=storage.last_success_at,
        )

    def _resolve(self, breaker: pybreaker.CircuitBreaker) -> CircuitState:
        """Apply any expired OPEN -> HALF-OPEN transition and return the state."""
        effective = resolve_state(self._view(breaker), self._clock(), self._recovery_timeout)
        if effective is CircuitState.HALF_OPEN and breaker.current_state == pybreaker.STATE_OPEN:
            breaker.half_open()
        return effective

    def record_failure(self, provider: str, message: str | None = None) -> None:
        """
        Record a provider failure.

        Opens the circuit once the fail counter reaches the threshold. A
        failure while HALF-OPEN re-opens the circuit immediately.
        """
        with self._lock:
            breaker = self._get_breaker(provider)
            storage = self._storages[provider]
            previous = self._resolve(breaker)

            storage.increment_counter()
            storage.total_failures += 1
            storage.last_failure_at = self._clock()
            failures = breaker.fail_counter

            tripped = previous is CircuitState.HALF_OPEN or failures >= self._failure_threshold
            if tripped and previous is not CircuitState.OPEN:
                breaker.open()

        self._metrics.record_circuit_failure(provider)
        log_stage(
            logger,
            Stage.CIRCUIT_BREAKER,
            "Provider failure recorded",
            level="warning",
            provider=provider,
            failures=failures,
            threshold=self._failure_threshold,
            error=message,
        )

    def record_success(self, provider: str) -> None:
        """Close the circuit and reset consecutive failures (lifetime count is kept)."""
        with self._lock:
            breaker = self._get_breaker(provider)
            storage = self._storages[provider]
            if breaker.current_state != pybreaker.STATE_CLOSED:
                breaker.close()
            storage.reset_counter()
            storage.last_success_at = self._clock()

    def is_circuit_open(self, provider: str) -> bool:
        """
        Whether calls to ``provider`` should be skipped.

        Unknown providers are never open. An expired OPEN circuit is moved to
        HALF-OPEN here and the call is let through as a trial.
        """
        with self._lock:
            breaker = self._breakers.get(provider)
            if breaker is None:
                return False
            return self._resolve(breaker) is CircuitState.OPEN

    def get_circuit_state(self, provider: str) -> CircuitSnapshot | None:
        """Snapshot of a provider's circuit, or None if it was never recorded."""
        with self._lock:
            breaker = self._breakers.get(provider)
            if breaker is None:
                return None
            circuit = self._view(breaker)
        return CircuitSnapshot(provider=provider, **asdict(circuit))

    def get_provider_health(self) -> dict[str, dict[str, Any]]:
        """
        Health snapshot for every known provider plus any other tracked one.

        Providers without state report healthy/closed/0. An OPEN circuit past
        its recovery timeout is reported as half-open; the stored state is
        left for ``is_circuit_open`` to move.
        """
        with self._lock:
            now = self._clock()
            providers = list(self._known_providers)
            providers.extend(p for p in self._breakers if p not in providers)

            health: dict[str, dict[str, Any]] = {}
            for provider in providers:
                breaker = self._breakers.get(provider)
                circuit = self._view(breaker) if breaker is not None else ProviderCircuit()
                state = resolve_state(circuit, now, self._recovery_timeout)
                health[provider] = {
                    "healthy": state is not CircuitState.OPEN,
                    "state": state.value,
                    "failures": circuit.failures,
                    "total_failures": circuit.total_failures,
                }
            return health

    def reset(self, provider: str) -> bool:
        """Forget a single provider's state. Returns True if it was tracked."""
        with self._lock:
            removed = self._breakers.pop(provider, None) is not None
            self._storages.pop(provider, None)
        if removed:
            self._metrics.record_circuit_state(provider, CircuitState.CLOSED.value)
        return removed

    def reset_all(self) -> list[str]:
        """Forget every circuit. Returns the providers that had state."""
        with self._lock:
            providers = list(self._breakers)
            self._breakers.clear()
            self._storages.clear()
        for provider in providers:
            self._metrics.record_circuit_state(provider, CircuitState.CLOSED.value)
        logger.info("All circuits reset", providers=providers)
        return providers
