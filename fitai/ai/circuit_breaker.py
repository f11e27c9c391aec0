"""Circuit breaker for the optional premium provider tier.

States:
- closed: normal operation, the premium tier is tried first
- open: premium tier bypassed; the stable providers serve traffic
- half-open: recovery time elapsed, exactly one trial call allowed

Breakers are process-wide, one per feature name, and live for the
lifetime of the process.  Only ``reset()`` (exposed through the admin
endpoint) clears one early.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Literal

logger = logging.getLogger(__name__)

CircuitStateName = Literal["closed", "open", "half-open"]


@dataclass(frozen=True, slots=True)
class CircuitStatus:
    """Snapshot of a breaker for monitoring."""

    name: str
    state: CircuitStateName
    failures: int
    last_failure_at: float | None


class CircuitBreaker:
    """Consecutive-failure breaker with a single half-open trial.

    Args:
        name: Feature name used in logs and the registry.
        failure_threshold: Open after this many consecutive failures.
        recovery_time: Seconds after the last failure before a trial call.
        clock: Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 3,
        recovery_time: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_time = recovery_time
        self._clock = clock
        self._lock = threading.Lock()
        self._state: CircuitStateName = "closed"
        self._failures = 0
        self._last_failure_at: float | None = None
        self._trial_started_at: float | None = None

    @property
    def state(self) -> CircuitStateName:
        return self._state

    def allow_request(self) -> bool:
        """Return ``True`` if the guarded tier may be called now."""
        with self._lock:
            now = self._clock()
            if self._state == "closed":
                return True

            if self._state == "open":
                if now - (self._last_failure_at or 0.0) < self.recovery_time:
                    return False
                self._state = "half-open"
                self._trial_started_at = now
                logger.info(
                    "Circuit half-open, testing recovery",
                    extra={"event": "circuit_half_open", "circuit": self.name},
                )
                return True

            # half-open: one trial at a time; a trial that never reported
            # back is abandoned after another recovery period.
            if self._trial_started_at is not None and now - self._trial_started_at < self.recovery_time:
                return False
            self._trial_started_at = now
            return True

    def record_success(self) -> None:
        with self._lock:
            if self._state == "half-open":
                logger.info(
                    "Circuit recovered, closed",
                    extra={"event": "circuit_closed", "circuit": self.name},
                )
            self._failures = 0
            self._state = "closed"
            self._trial_started_at = None

    def record_failure(self) -> None:
        with self._lock:
            if self._state == "open":
                # Late result of a call admitted before the circuit opened.
                return

            now = self._clock()
            self._failures += 1
            self._last_failure_at = now

            if self._state == "half-open" or self._failures >= self.failure_threshold:
                self._state = "open"
                self._trial_started_at = None
                logger.error(
                    "Circuit OPEN after %d failures; bypassing for %.0fs",
                    self._failures,
                    self.recovery_time,
                    extra={"event": "circuit_open", "circuit": self.name, "state": "open"},
                )

    def status(self) -> CircuitStatus:
        with self._lock:
            return CircuitStatus(
                name=self.name,
                state=self._state,
                failures=self._failures,
                last_failure_at=self._last_failure_at,
            )

    def reset(self) -> None:
        """Administrative reset to ``closed``."""
        with self._lock:
            self._failures = 0
            self._state = "closed"
            self._last_failure_at = None
            self._trial_started_at = None
        logger.warning("Circuit reset", extra={"event": "circuit_reset", "circuit": self.name})


# ---------------------------------------------------------------------------
# Process-wide registry
# ---------------------------------------------------------------------------

_breakers: dict[str, CircuitBreaker] = {}
_registry_lock = threading.Lock()


def get_circuit_breaker(
    name: str,
    failure_threshold: int = 3,
    recovery_time: float = 60.0,
) -> CircuitBreaker:
    """Return the process-wide breaker for *name*, creating it on first use."""
    with _registry_lock:
        breaker = _breakers.get(name)
        if breaker is None:
            breaker = CircuitBreaker(name, failure_threshold, recovery_time)
            _breakers[name] = breaker
        return breaker


def find_circuit_breaker(name: str) -> CircuitBreaker | None:
    with _registry_lock:
        return _breakers.get(name)


def all_circuit_statuses() -> list[CircuitStatus]:
    with _registry_lock:
        breakers = list(_breakers.values())
    return [b.status() for b in breakers]
