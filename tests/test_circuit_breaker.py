"""Tests for the forwarder circuit breaker."""

import threading
import time

from homiegraf.utils.circuit_breaker import CircuitBreaker, CircuitState


class TestCircuitBreakerStates:
    """Tests for circuit breaker state transitions."""

    def test_initial_state_is_closed(self):
        cb = CircuitBreaker("telegraf")
        assert cb.state == CircuitState.CLOSED
        assert cb.can_execute() is True

    def test_stays_closed_below_threshold(self):
        cb = CircuitBreaker("telegraf", failure_threshold=3)
        cb.record_failure()
        cb.record_failure()
        assert cb.state == CircuitState.CLOSED

    def test_opens_at_failure_threshold(self):
        cb = CircuitBreaker("telegraf", failure_threshold=3)
        for _ in range(3):
            cb.record_failure()
        assert cb.state == CircuitState.OPEN
        assert cb.can_execute() is False

    def test_half_open_after_recovery_timeout(self):
        cb = CircuitBreaker("telegraf", failure_threshold=1, recovery_timeout=0.1)
        cb.record_failure()
        assert cb.state == CircuitState.OPEN
        time.sleep(0.15)
        assert cb.state == CircuitState.HALF_OPEN
        assert cb.can_execute() is True

    def test_probe_success_closes(self):
        cb = CircuitBreaker("telegraf", failure_threshold=1, recovery_timeout=0.1)
        cb.record_failure()
        time.sleep(0.15)
        cb.record_success()
        assert cb.state == CircuitState.CLOSED

    def test_probe_failure_reopens(self):
        cb = CircuitBreaker("telegraf", failure_threshold=1, recovery_timeout=0.1)
        cb.record_failure()
        time.sleep(0.15)
        assert cb.state == CircuitState.HALF_OPEN
        cb.record_failure()
        assert cb.state == CircuitState.OPEN

    def test_success_resets_consecutive_count(self):
        cb = CircuitBreaker("telegraf", failure_threshold=3)
        cb.record_failure()
        cb.record_failure()
        cb.record_success()
        cb.record_failure()
        assert cb.state == CircuitState.CLOSED

    def test_reset_closes_open_circuit(self):
        cb = CircuitBreaker("telegraf", failure_threshold=1)
        cb.record_failure()
        cb.reset()
        assert cb.state == CircuitState.CLOSED


class TestCircuitBreakerStats:
    """Tests for circuit breaker statistics."""

    def test_stats(self):
        cb = CircuitBreaker("telegraf", failure_threshold=1, recovery_timeout=60)
        cb.record_failure()
        cb.can_execute()
        cb.can_execute()
        assert cb.get_stats() == {
            "name": "telegraf",
            "state": "open",
            "failure_count": 1,
            "total_failures": 1,
            "total_rejected": 2,
        }

    def test_concurrent_failures(self):
        cb = CircuitBreaker("telegraf", failure_threshold=1000)

        def record_many():
            for _ in range(50):
                cb.record_failure()

        threads = [threading.Thread(target=record_many) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert cb.get_stats()["total_failures"] == 200
