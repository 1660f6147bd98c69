"""
Circuit Breaker Pattern for CardTrader API.
Prevents cascading failures when external service is down or overloaded.
"""
import logging
import threading
import time
from collections import deque
from enum import Enum
from typing import Callable, Deque, Optional, Tuple

from cardsync.core.config import get_settings
from cardsync.core.exceptions import CardTraderServiceUnavailableError
from cardsync.core.prometheus_metrics import circuit_breaker_state

logger = logging.getLogger(__name__)

_STATE_GAUGE = {"CLOSED": 0, "OPEN": 1, "HALF_OPEN": 2}


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "CLOSED"  # Normal operation
    OPEN = "OPEN"  # Failing, reject requests
    HALF_OPEN = "HALF_OPEN"  # One trial call allowed


class CardTraderCircuitBreaker:
    """
    Failure-rate circuit breaker.

    Outcomes are sampled over a rolling window. Once at least
    ``minimum_throughput`` calls were sampled and the failure ratio reaches
    ``failure_ratio``, the breaker opens and rejects calls for
    ``break_seconds``. After the cool-down a single trial call is let through
    (HALF_OPEN): success closes the breaker, failure reopens it.
    """

    def __init__(
        self,
        failure_ratio: float = 0.5,
        minimum_throughput: int = 5,
        sampling_seconds: float = 60.0,
        break_seconds: float = 30.0,
        name: str = "cardtrader",
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_ratio = failure_ratio
        self.minimum_throughput = minimum_throughput
        self.sampling_seconds = sampling_seconds
        self.break_seconds = break_seconds
        self.name = name
        self._clock = clock
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._opened_at: Optional[float] = None
        self._trial_in_flight = False
        # (timestamp, failed)
        self._samples: Deque[Tuple[float, bool]] = deque()
        circuit_breaker_state.labels(service=self.name).set(0)

    def _set_state(self, state: CircuitState) -> None:
        if state is not self._state:
            logger.info(f"Circuit breaker {self.name} state changed to {state.value}")
        self._state = state
        circuit_breaker_state.labels(service=self.name).set(_STATE_GAUGE[state.value])

    def _prune(self, now: float) -> None:
        while self._samples and now - self._samples[0][0] > self.sampling_seconds:
            self._samples.popleft()

    def get_state(self) -> CircuitState:
        with self._lock:
            return self._state

    def should_attempt_reset(self) -> bool:
        """True when the breaker is OPEN and the cool-down has elapsed."""
        with self._lock:
            return self._cooldown_elapsed(self._clock())

    def _cooldown_elapsed(self, now: float) -> bool:
        return (
            self._state is CircuitState.OPEN
            and self._opened_at is not None
            and now - self._opened_at >= self.break_seconds
        )

    def before_call(self) -> None:
        """
        Admit or reject a call.

        Raises:
            CardTraderServiceUnavailableError: the breaker is open, or a trial
                call is already running in HALF_OPEN
        """
        with self._lock:
            now = self._clock()
            if self._state is CircuitState.OPEN:
                if not self._cooldown_elapsed(now):
                    retry_after = self.break_seconds - (now - (self._opened_at or now))
                    raise CardTraderServiceUnavailableError(
                        "CardTrader service temporarily unavailable (circuit open)",
                        retry_after=max(retry_after, 0.0),
                    )
                self._set_state(CircuitState.HALF_OPEN)
                self._trial_in_flight = False
            if self._state is CircuitState.HALF_OPEN:
                if self._trial_in_flight:
                    raise CardTraderServiceUnavailableError(
                        "CardTrader service recovery check in progress",
                        retry_after=self.break_seconds,
                    )
                self._trial_in_flight = True

    def release(self) -> None:
        """Give back an admitted call that ended without an outcome (cancelled)."""
        with self._lock:
            if self._state is CircuitState.HALF_OPEN:
                self._trial_in_flight = False

    def record_success(self) -> None:
        with self._lock:
            now = self._clock()
            if self._state is CircuitState.HALF_OPEN:
                self._samples.clear()
                self._trial_in_flight = False
                self._opened_at = None
                self._set_state(CircuitState.CLOSED)
                logger.info(f"Circuit breaker {self.name} CLOSED - service recovered")
                return
            self._samples.append((now, False))
            self._prune(now)

    def record_failure(self, error_type: str = "generic") -> None:
        with self._lock:
            now = self._clock()
            if self._state is CircuitState.HALF_OPEN:
                self._trial_in_flight = False
                self._open(now, reason=f"trial call failed ({error_type})")
                return
            self._samples.append((now, True))
            self._prune(now)

            total = len(self._samples)
            failures = sum(1 for _, failed in self._samples if failed)
            logger.warning(
                f"Circuit breaker {self.name}: failure recorded "
                f"({failures}/{total} in window), error_type={error_type}"
            )
            if (
                self._state is CircuitState.CLOSED
                and total >= self.minimum_throughput
                and failures / total >= self.failure_ratio
            ):
                self._open(now, reason=f"{failures}/{total} calls failed")

    def _open(self, now: float, reason: str) -> None:
        self._opened_at = now
        self._set_state(CircuitState.OPEN)
        logger.error(
            f"Circuit breaker {self.name} OPENED: {reason}. "
            f"Will attempt recovery in {self.break_seconds:.0f} seconds."
        )

    def get_statistics(self) -> dict:
        with self._lock:
            now = self._clock()
            self._prune(now)
            failures = sum(1 for _, failed in self._samples if failed)
            return {
                "state": self._state.value,
                "calls_in_window": len(self._samples),
                "failures_in_window": failures,
                "failure_ratio": self.failure_ratio,
                "minimum_throughput": self.minimum_throughput,
                "time_since_open": now - self._opened_at if self._opened_at else None,
            }

    def reset(self) -> None:
        """Reset circuit breaker to CLOSED state (admin/testing)."""
        with self._lock:
            self._samples.clear()
            self._opened_at = None
            self._trial_in_flight = False
            self._set_state(CircuitState.CLOSED)
        logger.info(f"Circuit breaker {self.name} manually reset to CLOSED")


# Global instance
_circuit_breaker: Optional[CardTraderCircuitBreaker] = None
_circuit_breaker_lock = threading.Lock()


def get_circuit_breaker() -> CardTraderCircuitBreaker:
    """Get or create global circuit breaker instance."""
    global _circuit_breaker
    if _circuit_breaker is None:
        with _circuit_breaker_lock:
            if _circuit_breaker is None:
                settings = get_settings()
                _circuit_breaker = CardTraderCircuitBreaker(
                    failure_ratio=settings.CIRCUIT_FAILURE_RATIO,
                    minimum_throughput=settings.CIRCUIT_MINIMUM_THROUGHPUT,
                    sampling_seconds=settings.CIRCUIT_SAMPLING_SECONDS,
                    break_seconds=settings.CIRCUIT_BREAK_SECONDS,
                )
    return _circuit_breaker


def reset_circuit_breaker() -> None:
    """Drop the global instance (tests)."""
    global _circuit_breaker
    with _circuit_breaker_lock:
        _circuit_breaker = None
