"""
Unit tests for the CardTrader circuit breaker.
"""
import pytest

from cardsync.core.exceptions import CardTraderServiceUnavailableError
from cardsync.services.circuit_breaker import CardTraderCircuitBreaker, CircuitState


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def breaker(clock):
    return CardTraderCircuitBreaker(
        failure_ratio=0.5,
        minimum_throughput=4,
        sampling_seconds=60,
        break_seconds=30,
        clock=clock,
    )


def test_stays_closed_below_minimum_throughput(breaker):
    for _ in range(3):
        breaker.before_call()
        breaker.record_failure()

    assert breaker.get_state() is CircuitState.CLOSED


def test_opens_when_failure_ratio_reached(breaker):
    for failed in (False, False, True, True):
        breaker.before_call()
        if failed:
            breaker.record_failure()
        else:
            breaker.record_success()

    assert breaker.get_state() is CircuitState.OPEN
    with pytest.raises(CardTraderServiceUnavailableError) as exc_info:
        breaker.before_call()
    assert exc_info.value.status_code == 503
    assert exc_info.value.retry_after == pytest.approx(30)


def test_old_samples_leave_the_window(breaker, clock):
    for _ in range(3):
        breaker.record_failure()
    clock.now = 61
    breaker.record_failure()

    stats = breaker.get_statistics()
    assert stats["calls_in_window"] == 1
    assert breaker.get_state() is CircuitState.CLOSED


def _trip(breaker):
    for _ in range(4):
        breaker.before_call()
        breaker.record_failure()
    assert breaker.get_state() is CircuitState.OPEN


def test_half_open_trial_success_closes(breaker, clock):
    _trip(breaker)
    clock.now = 30
    assert breaker.should_attempt_reset() is True

    breaker.before_call()
    assert breaker.get_state() is CircuitState.HALF_OPEN

    # Only one trial call at a time
    with pytest.raises(CardTraderServiceUnavailableError):
        breaker.before_call()

    breaker.record_success()
    assert breaker.get_state() is CircuitState.CLOSED
    breaker.before_call()


def test_half_open_trial_failure_reopens(breaker, clock):
    _trip(breaker)
    clock.now = 31
    breaker.before_call()
    breaker.record_failure("http_503")

    assert breaker.get_state() is CircuitState.OPEN
    with pytest.raises(CardTraderServiceUnavailableError):
        breaker.before_call()


def test_release_frees_cancelled_trial(breaker, clock):
    _trip(breaker)
    clock.now = 30
    breaker.before_call()
    breaker.release()

    breaker.before_call()
    assert breaker.get_state() is CircuitState.HALF_OPEN


def test_reset(breaker):
    _trip(breaker)
    breaker.reset()

    assert breaker.get_state() is CircuitState.CLOSED
    assert breaker.get_statistics()["calls_in_window"] == 0
