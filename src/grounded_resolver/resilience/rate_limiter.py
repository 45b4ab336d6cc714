"""Sliding-window rate limiter with a burst allowance."""

from __future__ import annotations

import math
import threading
import time
from collections import OrderedDict, deque
from dataclasses import dataclass, field
from typing import Callable

from loguru import logger

from grounded_resolver.config import RateLimitConfig
from grounded_resolver.errors import RateLimitExceededError


@dataclass(slots=True)
class RateLimitResult:
    success: bool
    limit: int
    remaining: int
    reset: float
    retry_after: int | None = None


@dataclass(slots=True)
class _Window:
    timestamps: deque[float] = field(default_factory=deque)
    burst_used: int = 0
    burst_window_start: float = 0.0


class SlidingWindowRateLimiter:
    """Counts requests per key inside a trailing window.

    Once the steady-state quota is used up, up to `burst_size` extra requests are
    admitted per window before requests are rejected. Internal errors fail open.
    Keys whose window has fully expired are swept once per window, and at most
    `max_keys` keys are tracked (least recently seen evicted first).
    """

    def __init__(
        self,
        config: RateLimitConfig | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config or RateLimitConfig()
        self._clock = clock
        self._windows: OrderedDict[str, _Window] = OrderedDict()
        self._last_sweep = clock()
        self._lock = threading.Lock()

    def check(self, key: str) -> RateLimitResult:
        config = self.config
        now = self._clock()
        reset = now + config.window_seconds
        if not config.enabled:
            return RateLimitResult(
                success=True, limit=config.requests, remaining=config.requests, reset=reset
            )

        try:
            with self._lock:
                return self._check_locked(key, now)
        except Exception as exc:
            logger.error(f"[RateLimiter] check failed for {key}, allowing request: {exc}")
            return RateLimitResult(
                success=True, limit=config.requests, remaining=config.requests, reset=reset
            )

    def enforce(self, key: str) -> RateLimitResult:
        """Like `check`, but raises `RateLimitExceededError` when the key is over quota."""
        result = self.check(key)
        if not result.success:
            raise RateLimitExceededError(key, result.limit, result.retry_after or 1)
        return result

    def reset(self, key: str | None = None) -> None:
        with self._lock:
            if key is None:
                self._windows.clear()
            else:
                self._windows.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._windows)

    def _check_locked(self, key: str, now: float) -> RateLimitResult:
        config = self.config
        if now - self._last_sweep >= config.window_seconds:
            self._sweep_locked(now)
        window = self._windows.get(key)
        if window is None:
            window = _Window(burst_window_start=now)
            self._windows[key] = window
            while len(self._windows) > config.max_keys:
                self._windows.popitem(last=False)
        else:
            self._windows.move_to_end(key)

        window_start = now - config.window_seconds
        while window.timestamps and window.timestamps[0] <= window_start:
            window.timestamps.popleft()
        if now - window.burst_window_start >= config.window_seconds:
            window.burst_used = 0
            window.burst_window_start = now

        count = len(window.timestamps)
        reset = now + config.window_seconds
        if count < config.requests:
            window.timestamps.append(now)
            return RateLimitResult(
                success=True,
                limit=config.requests,
                remaining=max(0, config.requests - count - 1),
                reset=reset,
            )

        if window.burst_used < config.burst_size:
            window.burst_used += 1
            window.timestamps.append(now)
            return RateLimitResult(
                success=True,
                limit=config.requests,
                remaining=max(0, config.burst_size - window.burst_used),
                reset=reset,
            )

        oldest = window.timestamps[0] if window.timestamps else now
        retry_after = max(1, math.ceil(oldest + config.window_seconds - now))
        logger.warning(
            f"[RateLimiter] limit exceeded for {key}: count={count} "
            f"limit={config.requests} burst={window.burst_used}/{config.burst_size}"
        )
        return RateLimitResult(
            success=False,
            limit=config.requests,
            remaining=0,
            reset=oldest + config.window_seconds,
            retry_after=retry_after,
        )

    def _sweep_locked(self, now: float) -> None:
        cutoff = now - self.config.window_seconds
        expired = [
            key
            for key, window in self._windows.items()
            if (not window.timestamps or window.timestamps[-1] <= cutoff)
            and window.burst_window_start <= cutoff
        ]
        for key in expired:
            del self._windows[key]
        self._last_sweep = now
        if expired:
            logger.debug(f"[RateLimiter] swept {len(expired)} expired keys")
