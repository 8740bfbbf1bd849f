"""Retry policy and circuit breaker used by the OData transport."""

import logging
import random
import threading
import time
from typing import Any, Callable, Dict, Optional

from ..errors import CircuitOpenError

logger = logging.getLogger(__name__)


class CircuitState:
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half-open"


class RetryPolicy:
    """
    Exponential backoff with uniform jitter.

    The delay before retry ``attempt`` (0-based) is
    ``min(base * 2**attempt, max_delay) + uniform[0, jitter)`` milliseconds.
    """

    def __init__(
        self,
        max_retries: int = 3,
        base_delay_ms: int = 1000,
        max_delay_ms: int = 10000,
        jitter_ms: int = 500,
        rng: Optional[Callable[[], float]] = None,
    ):
        self.max_retries = max_retries
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms
        self.jitter_ms = jitter_ms
        self._rng = rng or random.random

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def base_delay(self, attempt: int) -> int:
        """Delay in milliseconds before jitter."""
        return min(self.base_delay_ms * (2 ** attempt), self.max_delay_ms)

    def delay_for(self, attempt: int) -> float:
        """Delay in seconds including jitter."""
        jitter = self._rng() * self.jitter_ms
        return (self.base_delay(attempt) + jitter) / 1000.0


class CircuitBreaker:
    """
    Circuit breaker guarding a single request attempt.

    closed -> open after ``failure_threshold`` consecutive failures;
    open -> half-open once ``reset_timeout_ms`` has elapsed since the last failure;
    half-open -> closed on a successful probe, back to open on a failed one.
    A success in the closed state resets the failure count.

    Calls already executing when the breaker opens are allowed to finish;
    only new calls fail fast.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        reset_timeout_ms: int = 60000,
        half_open_max: int = 1,
        on_state_change: Optional[Callable[[str, str], None]] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.failure_threshold = failure_threshold
        self.reset_timeout_ms = reset_timeout_ms
        self.half_open_max = half_open_max
        self.on_state_change = on_state_change
        self._clock = clock or time.monotonic
        self._lock = threading.Lock()

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_at: Optional[float] = None
        self._half_open_attempts = 0

    @property
    def state(self) -> str:
        return self._state

    def get_stats(self) -> Dict[str, Any]:
        return {
            "state": self._state,
            "failureCount": self._failure_count,
            "successCount": self._success_count,
            "lastFailureTime": self._last_failure_at,
        }

    def reset(self) -> None:
        with self._lock:
            previous = self._state
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._success_count = 0
            self._last_failure_at = None
            self._half_open_attempts = 0
        if previous != CircuitState.CLOSED:
            self._notify(previous, CircuitState.CLOSED)

    def call(
        self,
        func: Callable[[], Any],
        should_trip: Optional[Callable[[BaseException], bool]] = None,
    ) -> Any:
        """
        Run ``func`` through the breaker.

        Args:
            func: The guarded operation
            should_trip: Predicate deciding whether an exception counts as a
                failure. Exceptions it rejects propagate without touching the
                failure count.

        Returns:
            Whatever ``func`` returns

        Raises:
            CircuitOpenError: If the breaker rejects the call
        """
        self._before_call()
        try:
            result = func()
        except Exception as e:
            if should_trip is None or should_trip(e):
                self._on_failure()
            else:
                self._release_probe()
            raise
        self._on_success()
        return result

    def _before_call(self) -> None:
        transition = None
        with self._lock:
            if self._state == CircuitState.OPEN:
                if self._reset_window_elapsed():
                    transition = (self._state, CircuitState.HALF_OPEN)
                    self._state = CircuitState.HALF_OPEN
                    self._half_open_attempts = 0
                else:
                    raise CircuitOpenError(
                        f"Circuit breaker is open ({self._failure_count} failures)",
                        {"state": self._state, "failure_count": self._failure_count},
                    )

            if self._state == CircuitState.HALF_OPEN:
                if self._half_open_attempts >= self.half_open_max:
                    raise CircuitOpenError(
                        "Circuit breaker is half-open, probe already in flight",
                        {"state": self._state},
                    )
                self._half_open_attempts += 1

        if transition:
            self._notify(*transition)

    def _reset_window_elapsed(self) -> bool:
        if self._last_failure_at is None:
            return True
        elapsed_ms = (self._clock() - self._last_failure_at) * 1000
        return elapsed_ms >= self.reset_timeout_ms

    def _on_success(self) -> None:
        transition = None
        with self._lock:
            self._success_count += 1
            self._failure_count = 0
            if self._state == CircuitState.HALF_OPEN:
                transition = (self._state, CircuitState.CLOSED)
                self._state = CircuitState.CLOSED
                self._half_open_attempts = 0
        if transition:
            self._notify(*transition)

    def _on_failure(self) -> None:
        transition = None
        with self._lock:
            self._failure_count += 1
            self._last_failure_at = self._clock()
            if self._state == CircuitState.HALF_OPEN:
                transition = (self._state, CircuitState.OPEN)
                self._state = CircuitState.OPEN
            elif self._state == CircuitState.CLOSED and self._failure_count >= self.failure_threshold:
                transition = (self._state, CircuitState.OPEN)
                self._state = CircuitState.OPEN
        if transition:
            self._notify(*transition)

    def _release_probe(self) -> None:
        with self._lock:
            if self._state == CircuitState.HALF_OPEN and self._half_open_attempts > 0:
                self._half_open_attempts -= 1

    def _notify(self, from_state: str, to_state: str) -> None:
        logger.warning(f"Circuit breaker {from_state} -> {to_state}")
        if self.on_state_change:
            self.on_state_change(from_state, to_state)
