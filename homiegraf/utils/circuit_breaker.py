"""
homiegraf - Circuit Breaker

Failure protection for outbound destinations. After enough consecutive
send failures the circuit "opens" and records are dropped immediately
instead of stalling the MQTT loop on a dead collector. Once the recovery
timeout has passed, one send is let through to probe the destination.

States:
  CLOSED    -> normal operation, sends pass through
  OPEN      -> destination failing, sends are dropped
  HALF_OPEN -> probing, the next send decides
"""

import logging
import threading
import time
from enum import Enum
from typing import Any, Dict

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Consecutive-failure circuit breaker. Thread-safe."""

    def __init__(
        self,
        name: str,
        failure_threshold: int = 3,
        recovery_timeout: float = 30.0,
    ):
        self._name = name
        self._failure_threshold = failure_threshold
        self._recovery_timeout = recovery_timeout

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: float = 0
        self._total_failures = 0
        self._total_rejected = 0
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return self._name

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._check_recovery()
            return self._state

    def can_execute(self) -> bool:
        """True if a send may be attempted; counts a rejection otherwise."""
        with self._lock:
            self._check_recovery()
            if self._state == CircuitState.OPEN:
                self._total_rejected += 1
                return False
            return True

    def record_success(self) -> None:
        with self._lock:
            self._failure_count = 0
            if self._state != CircuitState.CLOSED:
                self._state = CircuitState.CLOSED
                logger.info("Circuit '%s' recovered -> CLOSED", self._name)

    def record_failure(self) -> None:
        with self._lock:
            self._total_failures += 1
            self._failure_count += 1
            self._last_failure_time = time.time()

            if self._state == CircuitState.HALF_OPEN:
                self._state = CircuitState.OPEN
                logger.warning("Circuit '%s' probe failed -> OPEN", self._name)
            elif (
                self._state == CircuitState.CLOSED
                and self._failure_count >= self._failure_threshold
            ):
                self._state = CircuitState.OPEN
                logger.warning(
                    "Circuit '%s' tripped (%d failures) -> OPEN, dropping records for %.0fs",
                    self._name,
                    self._failure_count,
                    self._recovery_timeout,
                )

    def reset(self) -> None:
        with self._lock:
            self._failure_count = 0
            self._state = CircuitState.CLOSED

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            self._check_recovery()
            return {
                "name": self._name,
                "state": self._state.value,
                "failure_count": self._failure_count,
                "total_failures": self._total_failures,
                "total_rejected": self._total_rejected,
            }

    def _check_recovery(self) -> None:
        """OPEN -> HALF_OPEN once the recovery timeout elapsed. Lock must be held."""
        if self._state != CircuitState.OPEN:
            return
        if time.time() - self._last_failure_time >= self._recovery_timeout:
            self._state = CircuitState.HALF_OPEN
            logger.info("Circuit '%s' probing -> HALF_OPEN", self._name)
