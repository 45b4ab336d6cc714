import threading
import time

import pytest

from grounded_resolver.config import CircuitBreakerConfig
from grounded_resolver.errors import CircuitOpenError
from grounded_resolver.resilience.circuit_breaker import CircuitBreaker, CircuitState


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _boom() -> str:
    raise RuntimeError("provider down")


def _breaker(clock: _Clock, **overrides: float) -> CircuitBreaker:
    config = CircuitBreakerConfig(
        **{"failure_threshold": 3, "reset_timeout_seconds": 30.0, "min_requests": 10, **overrides}
    )
    return CircuitBreaker("embeddings", config, clock=clock)


def test_success_passes_through() -> None:
    breaker = _breaker(_Clock())

    result = breaker.execute(lambda: "ok")

    assert result.success is True
    assert result.data == "ok"
    assert result.fallback_used is False
    assert breaker.state == CircuitState.CLOSED


def test_opens_after_failure_threshold() -> None:
    breaker = _breaker(_Clock())

    for _ in range(3):
        assert breaker.execute(_boom).success is False

    assert breaker.state == CircuitState.OPEN
    rejected = breaker.execute(lambda: "ok")
    assert rejected.success is False
    assert rejected.circuit_state == CircuitState.OPEN
    assert "Circuit breaker is OPEN" in (rejected.error or "")


def test_open_circuit_uses_fallback_without_calling_operation() -> None:
    breaker = _breaker(_Clock())
    for _ in range(3):
        breaker.execute(_boom)
    calls: list[str] = []

    result = breaker.execute(lambda: calls.append("called") or "fresh", fallback=lambda: "cached")

    assert result.success is True
    assert result.fallback_used is True
    assert result.data == "cached"
    assert calls == []


def test_call_raises_when_open() -> None:
    breaker = _breaker(_Clock())
    for _ in range(3):
        with pytest.raises(RuntimeError):
            breaker.call(_boom)

    with pytest.raises(CircuitOpenError) as excinfo:
        breaker.call(lambda: "ok")
    assert excinfo.value.retry_after_seconds == pytest.approx(30.0)


def test_half_open_success_closes_the_circuit() -> None:
    clock = _Clock()
    breaker = _breaker(clock)
    for _ in range(3):
        breaker.execute(_boom)

    clock.now += 31
    assert breaker.state == CircuitState.HALF_OPEN
    assert breaker.execute(lambda: "ok").success is True
    assert breaker.state == CircuitState.CLOSED


def test_half_open_failure_reopens_the_circuit() -> None:
    clock = _Clock()
    breaker = _breaker(clock)
    for _ in range(3):
        breaker.execute(_boom)

    clock.now += 31
    breaker.execute(_boom)

    assert breaker.state == CircuitState.OPEN
    assert breaker.get_status()["time_until_retry"] == pytest.approx(30.0)


def test_failure_rate_opens_after_minimum_requests() -> None:
    breaker = _breaker(_Clock(), failure_threshold=10, min_requests=4)

    breaker.execute(lambda: "ok")
    breaker.execute(lambda: "ok")
    breaker.execute(_boom)
    breaker.execute(_boom)
    assert breaker.state == CircuitState.CLOSED

    breaker.execute(_boom)
    assert breaker.state == CircuitState.OPEN


def test_slow_operation_times_out() -> None:
    breaker = _breaker(_Clock(), request_timeout_seconds=0.05)

    result = breaker.execute(lambda: time.sleep(0.5))

    assert result.success is False
    assert "timed out" in (result.error or "")


def test_timed_out_calls_bound_the_worker_pool() -> None:
    breaker = _breaker(_Clock(), request_timeout_seconds=0.05, max_concurrent_calls=1)
    release = threading.Event()
    calls: list[str] = []

    stuck = breaker.execute(lambda: release.wait(5.0))
    rejected = breaker.execute(lambda: calls.append("ran"))

    assert stuck.success is False
    assert rejected.success is False
    assert "still running" in (rejected.error or "")
    assert calls == []
    assert breaker.in_flight == 1

    release.set()
    deadline = time.monotonic() + 5.0
    while breaker.in_flight and time.monotonic() < deadline:
        time.sleep(0.01)

    assert breaker.in_flight == 0
    assert breaker.execute(lambda: "ok").data == "ok"

def test_status_and_reset() -> None:
    breaker = _breaker(_Clock())
    breaker.execute(lambda: "ok")
    breaker.execute(_boom)

    status = breaker.get_status()
    assert status["service_name"] == "embeddings"
    assert status["state"] == "closed"
    assert status["failure_count"] == 1
    assert status["total_requests"] == 2
    assert status["failure_rate"] == 0.5
    assert status["time_until_retry"] is None

    breaker.reset()
    assert breaker.get_status()["total_requests"] == 0
