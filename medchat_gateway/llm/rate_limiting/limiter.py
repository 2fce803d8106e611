"""
Sliding-window rate limiter keyed by client address.

State lives in plain dicts touched only from the event loop thread, so no
lock is taken.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any

from .models import RateLimitConfig, RateLimitResult, RateLimitState


class SlidingWindowLimiter:
    """
    Counts requests per key inside a rolling window.

    Features:
    - Independent window per client key
    - Wait-time hint for rejected requests
    - Statistics for the health endpoint
    """

    def __init__(
        self,
        config: RateLimitConfig,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self._clock = clock
        self._states: dict[str, RateLimitState] = {}
        self._total_allowed = 0
        self._total_rejected = 0

    def check(self, key: str) -> RateLimitResult:
        """Record a request for `key` if it fits in the window."""
        now = self._clock()
        state = self._states.setdefault(key, RateLimitState())
        self._expire(state, now)

        if len(state.request_times) >= self.config.max_requests:
            self._total_rejected += 1
            oldest = state.request_times[0]
            return RateLimitResult(
                allowed=False,
                wait_time=max(0.0, oldest + self.config.window_seconds - now),
                current_usage=len(state.request_times),
                limit_value=self.config.max_requests,
            )

        state.request_times.append(now)
        self._total_allowed += 1
        return RateLimitResult(
            allowed=True,
            wait_time=0.0,
            current_usage=len(state.request_times),
            limit_value=self.config.max_requests,
        )

    def reset(self, key: str) -> None:
        """Forget all recorded requests for `key`."""
        self._states.pop(key, None)

    def prune(self) -> int:
        """Drop keys whose window has fully expired; returns how many."""
        now = self._clock()
        stale = []
        for key, state in self._states.items():
            self._expire(state, now)
            if not state.request_times:
                stale.append(key)
        for key in stale:
            del self._states[key]
        return len(stale)

    def _expire(self, state: RateLimitState, now: float) -> None:
        cutoff = now - self.config.window_seconds
        while state.request_times and state.request_times[0] <= cutoff:
            state.request_times.popleft()

    def get_statistics(self) -> dict[str, Any]:
        """Get rate limiting statistics."""
        return {
            "tracked_clients": len(self._states),
            "total_allowed": self._total_allowed,
            "total_rejected": self._total_rejected,
            "max_requests": self.config.max_requests,
            "window_seconds": self.config.window_seconds,
        }
