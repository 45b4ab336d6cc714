"""
Thread-safe circuit breaker for calls to unreliable external providers.

Usage:
    breaker = CircuitBreaker("embeddings")

    result = breaker.execute(lambda: provider.embed_query(text), fallback=lambda: [])
    if result.fallback_used:
        ...

    # or, raising instead of returning a result object:
    vector = breaker.call(lambda: provider.embed_query(text))

States:
    CLOSED    normal operation, outcomes are counted
    OPEN      fail fast until the reset timeout has elapsed
    HALF_OPEN one trial request; success closes, failure re-opens

The circuit opens when `failure_threshold` failures accumulate, or when at least
`min_requests` outcomes were seen and the failure rate exceeds
`1 - success_rate_threshold`. Each success decrements the failure count.
"""

from __future__ import annotations

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Generic, TypeVar

from loguru import logger

from grounded_resolver.config import CircuitBreakerConfig
from grounded_resolver.errors import CircuitOpenError

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(slots=True)
class CircuitResult(Generic[T]):
    success: bool
    data: T | None
    error: str | None
    circuit_state: CircuitState
    fallback_used: bool


class CircuitBreaker:
    """Failure-rate circuit breaker with a per-request timeout.

    All state transitions happen under one lock, so a breaker can be shared by
    the worker threads of the hybrid search and the API thread pool.
    """

    def __init__(
        self,
        name: str,
        config: CircuitBreakerConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._total_requests = 0
        self._last_failure_time: float | None = None
        self._next_attempt_time = 0.0
        self._half_open_in_flight = False
        self._executor: ThreadPoolExecutor | None = None
        self._in_flight = 0

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._current_state()

    @property
    def in_flight(self) -> int:
        """Calls currently holding a worker, including ones that timed out."""
        with self._lock:
            return self._in_flight

    def allow_request(self) -> bool:
        """Return True when a call may proceed (claims the half-open trial slot)."""

        with self._lock:
            state = self._current_state()
            if state == CircuitState.CLOSED:
                return True
            if state == CircuitState.HALF_OPEN and not self._half_open_in_flight:
                self._half_open_in_flight = True
                return True
            return False

    def record_success(self) -> None:
        with self._lock:
            self._success_count += 1
            self._total_requests += 1
            if self._failure_count > 0:
                self._failure_count -= 1
            if self._state == CircuitState.HALF_OPEN:
                self._close()
                logger.info(f"[CircuitBreaker] {self.name} closed after successful trial")

    def record_failure(self) -> None:
        with self._lock:
            now = self._clock()
            self._failure_count += 1
            self._total_requests += 1
            self._last_failure_time = now
            if self._state == CircuitState.HALF_OPEN or self._should_open():
                self._open(now)

    def execute(
        self,
        operation: Callable[[], T],
        fallback: Callable[[], T] | None = None,
    ) -> CircuitResult[T]:
        """Run `operation` under protection and report the outcome."""

        if not self.allow_request():
            retry_in = self._retry_in()
            logger.warning(f"[CircuitBreaker] {self.name} open, retry in {retry_in:.0f}s")
            if fallback is not None:
                return self._run_fallback(fallback, None)
            return CircuitResult(
                success=False,
                data=None,
                error=(
                    "Service temporarily unavailable. Circuit breaker is OPEN. "
                    f"Retry in {retry_in:.0f} seconds."
                ),
                circuit_state=CircuitState.OPEN,
                fallback_used=False,
            )

        try:
            data = self._run_with_timeout(operation)
        except Exception as exc:
            self.record_failure()
            logger.error(f"[CircuitBreaker] {self.name} recorded failure: {exc}")
            if fallback is not None:
                return self._run_fallback(fallback, exc)
            return CircuitResult(
                success=False,
                data=None,
                error=str(exc) or type(exc).__name__,
                circuit_state=self.state,
                fallback_used=False,
            )

        self.record_success()
        return CircuitResult(
            success=True,
            data=data,
            error=None,
            circuit_state=CircuitState.CLOSED,
            fallback_used=False,
        )

    def call(self, operation: Callable[[], T]) -> T:
        """Run `operation`, raising CircuitOpenError instead of calling it when open."""

        if not self.allow_request():
            raise CircuitOpenError(self.name, self._retry_in())
        try:
            data = self._run_with_timeout(operation)
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return data

    def get_status(self) -> dict[str, Any]:
        with self._lock:
            state = self._current_state()
            now = self._clock()
            total = self._total_requests
            return {
                "service_name": self.name,
                "state": state.value,
                "failure_count": self._failure_count,
                "success_count": self._success_count,
                "total_requests": total,
                "failure_rate": self._failure_count / total if total else 0.0,
                "time_until_retry": (
                    max(0.0, self._next_attempt_time - now)
                    if state == CircuitState.OPEN
                    else None
                ),
            }

    def reset(self) -> None:
        with self._lock:
            self._close()
        logger.info(f"[CircuitBreaker] {self.name} reset")

    def _current_state(self) -> CircuitState:
        if self._state == CircuitState.OPEN and self._clock() >= self._next_attempt_time:
            self._state = CircuitState.HALF_OPEN
            self._failure_count = 0
            self._success_count = 0
            self._total_requests = 0
            self._half_open_in_flight = False
            logger.info(f"[CircuitBreaker] {self.name} half-open")
        return self._state

    def _should_open(self) -> bool:
        if self._failure_count >= self.config.failure_threshold:
            return True
        if self._total_requests < self.config.min_requests:
            return False
        failure_rate = self._failure_count / self._total_requests
        return failure_rate > (1.0 - self.config.success_rate_threshold)

    def _open(self, now: float) -> None:
        self._state = CircuitState.OPEN
        self._next_attempt_time = now + self.config.reset_timeout_seconds
        self._half_open_in_flight = False
        logger.warning(
            f"[CircuitBreaker] {self.name} opened for "
            f"{self.config.reset_timeout_seconds:.0f}s"
        )

    def _close(self) -> None:
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._total_requests = 0
        self._last_failure_time = None
        self._next_attempt_time = 0.0
        self._half_open_in_flight = False

    def _retry_in(self) -> float:
        with self._lock:
            return max(0.0, self._next_attempt_time - self._clock())

    def _run_with_timeout(self, operation: Callable[[], T]) -> T:
        """Run `operation` on the breaker's pool, waiting at most the request timeout.

        A call that is already running cannot be interrupted: after a timeout it
        keeps its worker until it returns. At most `max_concurrent_calls` calls
        hold a worker at once; further calls fail immediately instead of queueing
        behind abandoned ones.
        """

        limit = self.config.max_concurrent_calls
        with self._lock:
            if self._in_flight >= limit:
                raise RuntimeError(f"{self.name} has {limit} calls still running")
            self._in_flight += 1
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=limit, thread_name_prefix=f"breaker-{self.name}"
                )
            executor = self._executor
        future = executor.submit(operation)
        future.add_done_callback(self._release_slot)
        try:
            return future.result(timeout=self.config.request_timeout_seconds)
        except FutureTimeoutError as exc:
            future.cancel()
            raise TimeoutError(
                f"Operation timed out after {self.config.request_timeout_seconds:.1f}s"
            ) from exc

    def _release_slot(self, _future: Future[Any]) -> None:
        with self._lock:
            self._in_flight -= 1

    def _run_fallback(
        self, fallback: Callable[[], T], cause: Exception | None
    ) -> CircuitResult[T]:
        try:
            data = fallback()
        except Exception as fallback_exc:
            logger.error(f"[CircuitBreaker] fallback for {self.name} failed: {fallback_exc}")
            reason = str(cause) if cause is not None else "circuit open"
            return CircuitResult(
                success=False,
                data=None,
                error=f"Service unavailable and fallback failed: {fallback_exc} ({reason})",
                circuit_state=self.state,
                fallback_used=True,
            )
        return CircuitResult(
            success=True,
            data=data,
            error=None,
            circuit_state=self.state,
            fallback_used=True,
        )
