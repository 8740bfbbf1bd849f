import pytest

from migration_fabric.errors import CircuitOpenError, ConnectionError, RequestError, is_retryable
from migration_fabric.odata.resilience import CircuitBreaker, CircuitState, RetryPolicy


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _fail():
    raise ConnectionError("boom")


@pytest.mark.unit
class TestRetryPolicy:
    """Test backoff delay computation."""

    def test_delays_double_until_capped(self) -> None:
        policy = RetryPolicy(max_retries=6, base_delay_ms=1000, max_delay_ms=10000, rng=lambda: 0.0)
        delays = [policy.base_delay(attempt) for attempt in range(6)]

        assert delays == [1000, 2000, 4000, 8000, 10000, 10000]
        assert delays == sorted(delays)

    def test_jitter_is_added_within_bounds(self) -> None:
        """Jitter adds at most jitter_ms on top of the base delay."""
        policy = RetryPolicy(base_delay_ms=1000, jitter_ms=500, rng=lambda: 0.5)
        assert policy.delay_for(0) == pytest.approx(1.25)

        upper = RetryPolicy(base_delay_ms=1000, jitter_ms=500, rng=lambda: 0.999)
        assert upper.delay_for(0) < 1.5

    def test_max_attempts_includes_first_try(self) -> None:
        assert RetryPolicy(max_retries=3).max_attempts == 4
        assert RetryPolicy(max_retries=0).max_attempts == 1


@pytest.mark.unit
class TestCircuitBreaker:
    """Test circuit breaker state transitions."""

    def test_opens_exactly_at_threshold(self) -> None:
        breaker = CircuitBreaker(failure_threshold=3)

        for _ in range(2):
            with pytest.raises(ConnectionError):
                breaker.call(_fail)
        assert breaker.state == CircuitState.CLOSED

        with pytest.raises(ConnectionError):
            breaker.call(_fail)
        assert breaker.state == CircuitState.OPEN

    def test_open_breaker_rejects_without_calling(self) -> None:
        breaker = CircuitBreaker(failure_threshold=1)
        with pytest.raises(ConnectionError):
            breaker.call(_fail)

        calls = []
        with pytest.raises(CircuitOpenError) as exc_info:
            breaker.call(lambda: calls.append(1))

        assert calls == []
        assert exc_info.value.kind == "connection"
        assert "circuit" in str(exc_info.value).lower()

    def test_success_resets_failure_count(self) -> None:
        breaker = CircuitBreaker(failure_threshold=3)
        for _ in range(2):
            with pytest.raises(ConnectionError):
                breaker.call(_fail)

        assert breaker.call(lambda: "ok") == "ok"
        assert breaker.get_stats()["failureCount"] == 0

        for _ in range(2):
            with pytest.raises(ConnectionError):
                breaker.call(_fail)
        assert breaker.state == CircuitState.CLOSED

    def test_half_open_probe_closes_on_success(self) -> None:
        clock = FakeClock()
        changes = []
        breaker = CircuitBreaker(
            failure_threshold=1,
            reset_timeout_ms=5000,
            clock=clock,
            on_state_change=lambda old, new: changes.append((old, new)),
        )
        with pytest.raises(ConnectionError):
            breaker.call(_fail)

        clock.now += 4.9
        with pytest.raises(CircuitOpenError):
            breaker.call(lambda: "early")

        clock.now += 0.2
        assert breaker.call(lambda: "probe") == "probe"
        assert breaker.state == CircuitState.CLOSED
        assert changes == [
            (CircuitState.CLOSED, CircuitState.OPEN),
            (CircuitState.OPEN, CircuitState.HALF_OPEN),
            (CircuitState.HALF_OPEN, CircuitState.CLOSED),
        ]

    def test_half_open_probe_failure_reopens(self) -> None:
        clock = FakeClock()
        breaker = CircuitBreaker(failure_threshold=2, reset_timeout_ms=1000, clock=clock)
        for _ in range(2):
            with pytest.raises(ConnectionError):
                breaker.call(_fail)

        clock.now += 2
        with pytest.raises(ConnectionError):
            breaker.call(_fail)
        assert breaker.state == CircuitState.OPEN

    def test_non_tripping_errors_do_not_count(self) -> None:
        """Errors rejected by should_trip propagate without opening the breaker."""
        breaker = CircuitBreaker(failure_threshold=1)

        def bad_request():
            raise RequestError("bad", {"status": 400})

        with pytest.raises(RequestError):
            breaker.call(bad_request, should_trip=is_retryable)

        assert breaker.state == CircuitState.CLOSED
        assert breaker.get_stats()["failureCount"] == 0

    def test_reset_returns_to_closed(self) -> None:
        breaker = CircuitBreaker(failure_threshold=1)
        with pytest.raises(ConnectionError):
            breaker.call(_fail)

        breaker.reset()

        assert breaker.get_stats() == {
            "state": "closed",
            "failureCount": 0,
            "successCount": 0,
            "lastFailureTime": None,
        }
