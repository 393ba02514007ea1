"""
homiegraf - Broker Reconnect Backoff

Delay before the next MQTT connect attempt after N consecutive failures:

  min(2s * 2 ** (N - 1), 120s), stretched by up to 25% random jitter

The jitter spreads out reconnects when several bridges lose the same
broker at once. There is no retry limit: the bridge keeps trying until
it is stopped.
"""

import random

BASE_DELAY = 2.0
MAX_DELAY = 120.0
JITTER = 0.25

# 2 ** 32 seconds is far past any cap; keeps the float math finite
_MAX_EXPONENT = 32


def backoff_delay(failures: int, base: float = BASE_DELAY,
                  cap: float = MAX_DELAY, jitter: float = JITTER) -> float:
    """Seconds to wait after *failures* consecutive failed connects."""
    if failures < 1:
        return 0.0
    delay = min(base * 2 ** min(failures - 1, _MAX_EXPONENT), cap)
    return delay * (1 + random.uniform(0, jitter))


class BrokerBackoff:
    """Failure counter for one connection loop. Owned by a single thread."""

    def __init__(self, base: float = BASE_DELAY, cap: float = MAX_DELAY,
                 jitter: float = JITTER):
        self._base = base
        self._cap = cap
        self._jitter = jitter
        self.failures = 0

    def failed(self) -> float:
        """Record a failed connect and return how long to wait."""
        self.failures += 1
        return backoff_delay(self.failures, self._base, self._cap, self._jitter)

    def connected(self) -> None:
        self.failures = 0
