"""Circuit breaker guarding remote backend calls during daemon ticks."""

import logging
import threading
import time
from enum import Enum
from typing import Callable

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_THRESHOLD = 3
DEFAULT_COOLDOWN = 30.0


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Requests go through
    OPEN = "open"  # Requests blocked until cooldown expires
    HALF_OPEN = "half_open"  # One trial request allowed


class CircuitBreaker:
    """Stop calling a failing remote.

    After ``failure_threshold`` consecutive failures the circuit opens and
    ``can_proceed`` returns False until ``cooldown`` seconds have passed. The
    next call is then let through as a trial: success closes the circuit,
    failure opens it again.
    """

    def __init__(
        self,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        cooldown: float = DEFAULT_COOLDOWN,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.failure_threshold = failure_threshold
        self.cooldown = cooldown
        self._clock = clock
        self._lock = threading.Lock()
        self._failures = 0
        self._opened_at = 0.0
        self._state = CircuitState.CLOSED

    @property
    def state(self) -> CircuitState:
        """Current state, accounting for an expired cooldown."""
        with self._lock:
            self._maybe_half_open()
            return self._state

    @property
    def failures(self) -> int:
        """Consecutive failures recorded so far."""
        return self._failures

    def _maybe_half_open(self) -> None:
        if (
            self._state == CircuitState.OPEN
            and self._clock() - self._opened_at >= self.cooldown
        ):
            self._state = CircuitState.HALF_OPEN
            logger.info("Circuit half-open, allowing trial request")

    def can_proceed(self) -> bool:
        """Whether a remote call may be attempted now."""
        with self._lock:
            self._maybe_half_open()
            return self._state != CircuitState.OPEN

    def record_success(self) -> None:
        """Reset the failure count and close the circuit."""
        with self._lock:
            self._failures = 0
            if self._state != CircuitState.CLOSED:
                self._state = CircuitState.CLOSED
                logger.info("Circuit closed (remote recovered)")

    def record_failure(self) -> None:
        """Count a failure; open the circuit at the threshold or on a failed trial."""
        with self._lock:
            self._failures += 1
            if (
                self._state == CircuitState.HALF_OPEN
                or self._failures >= self.failure_threshold
            ):
                if self._state != CircuitState.OPEN:
                    logger.warning(
                        "Circuit opened after %d consecutive failures "
                        "(cooldown: %.0fs)",
                        self._failures,
                        self.cooldown,
                    )
                self._state = CircuitState.OPEN
                self._opened_at = self._clock()

    def reset(self) -> None:
        """Force the circuit closed."""
        with self._lock:
            self._failures = 0
            self._state = CircuitState.CLOSED
