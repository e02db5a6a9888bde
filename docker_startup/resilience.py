"""
Circuit breaker and bounded retry for container engine calls.
"""

from __future__ import annotations

import enum
import logging
import threading
import time
from typing import Any, Callable, TypeVar

from prometheus_client import Counter, Gauge

logger = logging.getLogger("docker-startup")

T = TypeVar("T")


# =============================================================================
# Prometheus Metrics
# =============================================================================

CIRCUIT_STATE = Gauge(
    "docker_startup_circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=open, 2=half_open)",
    ["name"],
)

CIRCUIT_TRIPS = Counter(
    "docker_startup_circuit_breaker_trips_total",
    "Number of times the circuit breaker tripped to OPEN",
    ["name"],
)


# =============================================================================
# Circuit Breaker
# =============================================================================

class CircuitState(enum.Enum):
    CLOSED = 0
    OPEN = 1
    HALF_OPEN = 2


class CircuitOpenError(Exception):
    """Raised when the circuit breaker is OPEN and calls are rejected."""

    def __init__(self, name: str, retry_after: float) -> None:
        self.name = name
        self.retry_after = retry_after
        super().__init__(f"Circuit '{name}' is OPEN (retry after {retry_after:.0f}s)")


class CircuitBreaker:
    """Thread-safe circuit breaker.

    - CLOSED: calls pass through; consecutive failures are counted.
    - After ``failure_threshold`` consecutive failures the circuit trips to OPEN.
    - OPEN: ``CircuitOpenError`` is raised immediately (no engine call).
    - After ``recovery_timeout`` seconds the state moves to HALF_OPEN: one
      probe call is allowed through.
    - Probe success -> CLOSED; probe failure -> back to OPEN.

    Exceptions listed in ``ignored`` are answers from a healthy engine
    (e.g. "no such container") and count as successes.
    """

    def __init__(
        self,
        name: str = "docker",
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        ignored: tuple[type[BaseException], ...] = (),
    ) -> None:
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.ignored = ignored

        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: float = 0.0

        CIRCUIT_STATE.labels(name=self.name).set(CircuitState.CLOSED.value)

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._maybe_half_open()
            return self._state

    def call(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Execute *func* through the circuit breaker.

        The lock is released before the engine call so that concurrent
        threads are not serialized on the breaker while I/O is in flight.
        """
        with self._lock:
            self._maybe_half_open()
            if self._state == CircuitState.OPEN:
                elapsed = time.monotonic() - self._last_failure_time
                raise CircuitOpenError(self.name, max(0.0, self.recovery_timeout - elapsed))

        try:
            result = func(*args, **kwargs)
        except self.ignored:
            self._record_success()
            raise
        except Exception:
            self._record_failure()
            raise

        self._record_success()
        return result

    def reset(self) -> None:
        """Force-reset the circuit to CLOSED (admin / tests)."""
        with self._lock:
            self._failure_count = 0
            self._last_failure_time = 0.0
            self._set_state(CircuitState.CLOSED)

    # ------------------------------------------------------------------
    # Internal helpers (caller holds ``_lock``)
    # ------------------------------------------------------------------

    def _set_state(self, state: CircuitState) -> None:
        self._state = state
        CIRCUIT_STATE.labels(name=self.name).set(state.value)

    def _maybe_half_open(self) -> None:
        if (
            self._state == CircuitState.OPEN
            and time.monotonic() - self._last_failure_time >= self.recovery_timeout
        ):
            self._set_state(CircuitState.HALF_OPEN)

    def _trip(self) -> None:
        self._set_state(CircuitState.OPEN)
        CIRCUIT_TRIPS.labels(name=self.name).inc()
        logger.warning(f"Circuit '{self.name}' tripped to OPEN after {self._failure_count} failures")

    def _record_success(self) -> None:
        with self._lock:
            self._failure_count = 0
            if self._state == CircuitState.HALF_OPEN:
                self._set_state(CircuitState.CLOSED)

    def _record_failure(self) -> None:
        with self._lock:
            self._failure_count += 1
            self._last_failure_time = time.monotonic()

            if self._state == CircuitState.HALF_OPEN:
                self._trip()
            elif (
                self._state == CircuitState.CLOSED
                and self._failure_count >= self.failure_threshold
            ):
                self._trip()


# =============================================================================
# Bounded retry
# =============================================================================

def retry(
    func: Callable[[], T],
    retry_on: tuple[type[BaseException], ...],
    attempts: int,
    backoff: float,
    max_backoff: float,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call *func* up to *attempts* times, sleeping with exponential backoff
    between attempts while it raises one of *retry_on*.

    Args:
        func: Zero-argument callable
        retry_on: Exception types that trigger another attempt
        attempts: Total number of attempts (>= 1)
        backoff: Delay before the second attempt, doubled after each failure
        max_backoff: Upper bound for a single delay
        sleep: Sleep function (injectable for tests)

    Returns:
        The first successful result

    Raises:
        The last exception from *retry_on* once attempts are exhausted
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")
    delay = backoff
    for attempt in range(1, attempts + 1):
        try:
            return func()
        except retry_on as e:
            if attempt == attempts:
                raise
            logger.debug(f"Attempt {attempt}/{attempts} failed ({e}), retrying in {delay:.2f}s")
            sleep(delay)
            delay = min(delay * 2, max_backoff)
    raise AssertionError("unreachable")
