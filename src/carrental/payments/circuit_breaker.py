"""Circuit breaker for the credit-card approval service.

Count-based sliding window: the last `window_size` call results are kept,
and once at least `minimum_calls` are recorded the breaker opens when the
failure rate reaches `failure_rate_threshold` percent. After `open_seconds`
it goes half-open and lets up to `half_open_calls` probes through; all of
them must succeed to close it again, any failure re-opens it.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, TypeVar

from carrental.observability.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class CircuitState(Enum):
    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, reject requests
    HALF_OPEN = "half_open"  # Testing recovery


class CircuitOpenError(Exception):
    """Raised when attempting to call through an open circuit."""


@dataclass
class CircuitBreakerConfig:
    """Configuration for a circuit breaker."""

    failure_rate_threshold: float = 60.0  # Percent of failures that opens the circuit
    window_size: int = 10  # Number of recent calls considered
    minimum_calls: int = 5  # Calls recorded before the rate is evaluated
    open_seconds: float = 45.0  # Time before trying half-open
    half_open_calls: int = 3  # Probes permitted while half-open


@dataclass
class CircuitBreaker:
    """
    Circuit breaker for protecting a blocking external call.

    Usage:
        breaker = CircuitBreaker(name="creditCardService")

        try:
            approved = breaker.call(client.fetch_status, reference)
        except CircuitOpenError:
            # Service treated as unavailable

    Only exceptions for which `is_failure(exc)` is true count against the
    circuit; others are re-raised and recorded as successful calls.
    """

    name: str
    config: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)
    is_failure: Callable[[BaseException], bool] = lambda exc: True
    clock: Callable[[], float] = time.monotonic

    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _results: deque = field(default_factory=deque, init=False)
    _opened_at: float = field(default=0.0, init=False)
    _half_open_in_flight: int = field(default=0, init=False)
    _half_open_successes: int = field(default=0, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False)

    def __post_init__(self) -> None:
        self._results = deque(maxlen=self.config.window_size)

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._maybe_half_open()
            return self._state

    def _maybe_half_open(self) -> None:
        """Move OPEN -> HALF_OPEN once the wait has elapsed. Caller holds the lock."""
        if self._state != CircuitState.OPEN:
            return
        if self.clock() - self._opened_at >= self.config.open_seconds:
            self._state = CircuitState.HALF_OPEN
            self._half_open_in_flight = 0
            self._half_open_successes = 0
            logger.info(f"Circuit {self.name}: OPEN -> HALF_OPEN")

    def _open(self) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = self.clock()
        self._results.clear()

    def _acquire_permission(self) -> bool:
        with self._lock:
            self._maybe_half_open()
            if self._state == CircuitState.CLOSED:
                return True
            if self._state == CircuitState.HALF_OPEN:
                if self._half_open_in_flight < self.config.half_open_calls:
                    self._half_open_in_flight += 1
                    return True
            return False

    def _failure_rate(self) -> float:
        failures = sum(1 for ok in self._results if not ok)
        return failures * 100.0 / len(self._results)

    def _record_success(self) -> None:
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._half_open_successes += 1
                if self._half_open_successes >= self.config.half_open_calls:
                    self._state = CircuitState.CLOSED
                    self._results.clear()
                    logger.info(f"Circuit {self.name}: HALF_OPEN -> CLOSED")
            elif self._state == CircuitState.CLOSED:
                self._results.append(True)

    def _record_failure(self) -> None:
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._open()
                logger.warning(f"Circuit {self.name}: HALF_OPEN -> OPEN (probe failed)")
                return
            if self._state != CircuitState.CLOSED:
                return

            self._results.append(False)
            if len(self._results) < self.config.minimum_calls:
                return
            rate = self._failure_rate()
            if rate >= self.config.failure_rate_threshold:
                self._open()
                logger.warning(
                    f"Circuit {self.name}: CLOSED -> OPEN (failure rate {rate:.0f}%)"
                )

    def call(self, func: Callable[..., T], *args, **kwargs) -> T:
        """
        Execute a function through the circuit breaker.

        Raises:
            CircuitOpenError: If circuit is open (or half-open with no probe slots).
        """
        if not self._acquire_permission():
            raise CircuitOpenError(f"Circuit {self.name} is OPEN")

        try:
            result = func(*args, **kwargs)
        except Exception as exc:
            if self.is_failure(exc):
                self._record_failure()
            else:
                self._record_success()
            raise
        self._record_success()
        return result

    def reset(self) -> None:
        """Manually reset the circuit breaker."""
        with self._lock:
            self._state = CircuitState.CLOSED
            self._results.clear()
            self._half_open_in_flight = 0
            self._half_open_successes = 0
            logger.info(f"Circuit {self.name}: Manually reset to CLOSED")
