"""
Unit Tests for the per-provider CircuitBreaker

Covers the closed -> open -> half-open -> closed/open cycle, lazy half-open
transition on read, health snapshots and resets.
"""

from concurrent.futures import ThreadPoolExecutor

import pytest

from nexus_resilience.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitState,
    ProviderCircuit,
    resolve_state,
)


def trip(breaker: CircuitBreaker, provider: str = "openai", times: int = 3) -> None:
    for _ in range(times):
        breaker.record_failure(provider, "503 Service Unavailable")


@pytest.mark.unit
class TestCircuitTransitions:
    def test_unknown_provider_is_closed(self, circuit_breaker):
        assert circuit_breaker.is_circuit_open("openai") is False
        assert circuit_breaker.get_circuit_state("openai") is None

    def test_stays_closed_below_threshold(self, circuit_breaker):
        trip(circuit_breaker, times=2)

        assert circuit_breaker.is_circuit_open("openai") is False
        snapshot = circuit_breaker.get_circuit_state("openai")
        assert snapshot.state is CircuitState.CLOSED
        assert snapshot.failures == 2

    def test_opens_at_threshold(self, circuit_breaker, mock_metrics):
        trip(circuit_breaker, times=3)

        assert circuit_breaker.is_circuit_open("openai") is True
        assert circuit_breaker.get_circuit_state("openai").state is CircuitState.OPEN
        mock_metrics.record_circuit_state.assert_called_with("openai", "open")
        assert mock_metrics.record_circuit_failure.call_count == 3

    def test_success_resets_consecutive_failures_only(self, circuit_breaker):
        trip(circuit_breaker, times=2)
        circuit_breaker.record_success("openai")
        trip(circuit_breaker, times=2)

        snapshot = circuit_breaker.get_circuit_state("openai")
        assert snapshot.state is CircuitState.CLOSED
        assert snapshot.failures == 2
        assert snapshot.total_failures == 4

    def test_providers_are_independent(self, circuit_breaker):
        trip(circuit_breaker, "openai")

        assert circuit_breaker.is_circuit_open("openai") is True
        assert circuit_breaker.is_circuit_open("anthropic") is False


@pytest.mark.unit
class TestHalfOpenTrial:
    def test_still_open_before_recovery_timeout(self, circuit_breaker, fake_clock):
        trip(circuit_breaker)
        fake_clock.advance(59.9)

        assert circuit_breaker.is_circuit_open("openai") is True

    def test_half_open_after_recovery_timeout(self, circuit_breaker, fake_clock, mock_metrics):
        trip(circuit_breaker)
        fake_clock.advance(60)

        assert circuit_breaker.is_circuit_open("openai") is False
        assert circuit_breaker.get_circuit_state("openai").state is CircuitState.HALF_OPEN
        mock_metrics.record_circuit_state.assert_called_with("openai", "half-open")

    def test_trial_success_closes(self, circuit_breaker, fake_clock):
        trip(circuit_breaker)
        fake_clock.advance(61)
        circuit_breaker.is_circuit_open("openai")

        circuit_breaker.record_success("openai")

        snapshot = circuit_breaker.get_circuit_state("openai")
        assert snapshot.state is CircuitState.CLOSED
        assert snapshot.failures == 0

    def test_transitions_are_published(self, circuit_breaker, fake_clock, mock_metrics):
        trip(circuit_breaker)
        fake_clock.advance(60)
        circuit_breaker.is_circuit_open("openai")
        circuit_breaker.record_success("openai")

        published = [c.args for c in mock_metrics.record_circuit_state.call_args_list]
        assert published == [("openai", "open"), ("openai", "half-open"), ("openai", "closed")]

    def test_trial_failure_reopens_immediately(self, circuit_breaker, fake_clock):
        trip(circuit_breaker)
        fake_clock.advance(61)
        assert circuit_breaker.is_circuit_open("openai") is False

        circuit_breaker.record_failure("openai", "timeout")

        assert circuit_breaker.is_circuit_open("openai") is True
        # Timer restarted from the trial failure
        fake_clock.advance(59)
        assert circuit_breaker.is_circuit_open("openai") is True
        fake_clock.advance(1)
        assert circuit_breaker.is_circuit_open("openai") is False

    def test_failure_after_unread_timeout_also_reopens(self, circuit_breaker, fake_clock):
        """An expired OPEN circuit counts as half-open even if nobody read it yet."""
        trip(circuit_breaker)
        fake_clock.advance(120)

        circuit_breaker.record_failure("openai", "timeout")

        assert circuit_breaker.is_circuit_open("openai") is True


@pytest.mark.unit
class TestResolveState:
    @pytest.mark.parametrize(
        "state,elapsed,expected",
        [
            (CircuitState.CLOSED, 1000, CircuitState.CLOSED),
            (CircuitState.HALF_OPEN, 0, CircuitState.HALF_OPEN),
            (CircuitState.OPEN, 10, CircuitState.OPEN),
            (CircuitState.OPEN, 60, CircuitState.HALF_OPEN),
        ],
    )
    def test_resolve_state(self, state, elapsed, expected):
        circuit = ProviderCircuit(state=state, failures=3, last_failure_at=100.0)
        assert resolve_state(circuit, 100.0 + elapsed, 60.0) is expected

    def test_open_without_failure_time_is_half_open(self):
        circuit = ProviderCircuit(state=CircuitState.OPEN)
        assert resolve_state(circuit, 0.0, 60.0) is CircuitState.HALF_OPEN


@pytest.mark.unit
class TestHealthAndReset:
    def test_health_reports_known_providers(self, circuit_breaker):
        health = circuit_breaker.get_provider_health()

        assert set(health) == {"openai", "anthropic", "google", "xai", "moonshotai"}
        assert health["google"] == {
            "healthy": True,
            "state": "closed",
            "failures": 0,
            "total_failures": 0,
        }

    def test_health_reflects_open_circuit(self, circuit_breaker):
        trip(circuit_breaker, "anthropic")

        health = circuit_breaker.get_provider_health()["anthropic"]
        assert health["healthy"] is False
        assert health["state"] == "open"
        assert health["total_failures"] == 3

    def test_health_reports_expired_open_circuit_as_half_open(self, circuit_breaker, fake_clock):
        trip(circuit_breaker, "anthropic")
        fake_clock.advance(60)

        health = circuit_breaker.get_provider_health()["anthropic"]

        assert health == {"healthy": True, "state": "half-open", "failures": 3, "total_failures": 3}
        # Reading health does not move the stored state
        assert circuit_breaker.get_circuit_state("anthropic").state is CircuitState.OPEN

    def test_health_includes_unlisted_providers(self, circuit_breaker):
        circuit_breaker.record_failure("mistral")
        assert "mistral" in circuit_breaker.get_provider_health()

    def test_reset_single_provider(self, circuit_breaker):
        trip(circuit_breaker, "openai")

        assert circuit_breaker.reset("openai") is True
        assert circuit_breaker.is_circuit_open("openai") is False
        assert circuit_breaker.reset("openai") is False

    def test_reset_all_returns_tracked_providers(self, circuit_breaker):
        trip(circuit_breaker, "openai")
        circuit_breaker.record_success("google")

        assert sorted(circuit_breaker.reset_all()) == ["google", "openai"]
        assert circuit_breaker.get_circuit_state("openai") is None

    def test_snapshot_to_dict(self, circuit_breaker):
        trip(circuit_breaker)
        data = circuit_breaker.get_circuit_state("openai").to_dict()

        assert data["provider"] == "openai"
        assert data["state"] == "open"
        assert data["is_open"] is True

    def test_defaults_come_from_settings(self, monkeypatch, mock_metrics):
        from nexus_resilience.core.config.settings import reload_settings

        monkeypatch.setenv("CB_FAILURE_THRESHOLD", "5")
        reload_settings()

        breaker = CircuitBreaker(metrics=mock_metrics)
        assert breaker.failure_threshold == 5
        assert breaker.recovery_timeout == 60.0


@pytest.mark.unit
def test_concurrent_failures_are_all_counted(circuit_breaker):
    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(lambda _: circuit_breaker.record_failure("xai"), range(200)))

    assert circuit_breaker.get_circuit_state("xai").total_failures == 200
