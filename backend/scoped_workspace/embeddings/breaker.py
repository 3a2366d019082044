"""Circuit breaker guarding the embedding provider."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from enum import Enum

from scoped_workspace.core.errors import ProviderUnavailableError
from scoped_workspace.core.logging import get_logger
from scoped_workspace.core.metrics import BREAKER_STATE
from scoped_workspace.utils.time import Clock, now_s

logger = get_logger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


_GAUGE_VALUES = {CircuitState.CLOSED: 0.0, CircuitState.HALF_OPEN: 0.5, CircuitState.OPEN: 1.0}


@dataclass(slots=True, frozen=True)
class BreakerSnapshot:
    state: CircuitState
    consecutive_failures: int
    last_failure_at: float | None


class CircuitBreaker:
    """closed -> open after ``threshold`` consecutive failures; open -> half-open
    once ``cooldown`` has elapsed since the last failure; half-open admits a
    single trial call whose outcome closes or reopens the circuit.
    """

    def __init__(self, threshold: int = 5, cooldown: float = 60.0, clock: Clock = now_s) -> None:
        self.threshold = max(1, threshold)
        self.cooldown = cooldown
        self.clock = clock
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._last_failure_at: float | None = None
        self._trial_in_flight = False

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state

    def before_call(self) -> None:
        """Admit a call or raise ProviderUnavailableError without calling out."""
        with self._lock:
            if self._state is CircuitState.CLOSED:
                return
            if self._state is CircuitState.OPEN:
                elapsed = self.clock() - (self._last_failure_at or 0.0)
                if elapsed < self.cooldown:
                    raise ProviderUnavailableError(
                        f"circuit open; retry in {self.cooldown - elapsed:.1f}s"
                    )
                self._transition(CircuitState.HALF_OPEN)
            if self._trial_in_flight:
                raise ProviderUnavailableError("circuit half-open; trial call in progress")
            self._trial_in_flight = True

    def record_success(self) -> None:
        with self._lock:
            self._failures = 0
            self._trial_in_flight = False
            if self._state is not CircuitState.CLOSED:
                self._transition(CircuitState.CLOSED)

    def record_failure(self) -> None:
        with self._lock:
            self._failures += 1
            self._last_failure_at = self.clock()
            trial_failed = self._state is CircuitState.HALF_OPEN
            self._trial_in_flight = False
            if trial_failed or (self._state is CircuitState.CLOSED and self._failures >= self.threshold):
                self._transition(CircuitState.OPEN)

    def release_trial(self) -> None:
        """Give back an admitted call that never reached the provider."""
        with self._lock:
            self._trial_in_flight = False

    def snapshot(self) -> BreakerSnapshot:
        with self._lock:
            return BreakerSnapshot(self._state, self._failures, self._last_failure_at)

    def reset(self) -> None:
        with self._lock:
            self._failures = 0
            self._last_failure_at = None
            self._trial_in_flight = False
            self._transition(CircuitState.CLOSED)

    def _transition(self, state: CircuitState) -> None:
        # caller holds the lock
        if state is not self._state:
            log = logger.warning if state is CircuitState.OPEN else logger.info
            log(
                "Circuit breaker %s -> %s",
                self._state.value,
                state.value,
                extra={"ctx_failures": self._failures},
            )
        self._state = state
        BREAKER_STATE.set(_GAUGE_VALUES[state])


__all__ = ["CircuitBreaker", "CircuitState", "BreakerSnapshot"]
