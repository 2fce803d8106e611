"""
Rate limiting models and dataclasses.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field


@dataclass(frozen=True)
class RateLimitConfig:
    """Configuration for per-client rate limiting."""
    max_requests: int = 200
    window_seconds: float = 15 * 60


@dataclass
class RateLimitState:
    """Request timestamps for one client key."""
    request_times: deque[float] = field(default_factory=deque)


@dataclass(frozen=True)
class RateLimitResult:
    """Result of rate limit check."""
    allowed: bool
    wait_time: float  # seconds to wait
    current_usage: int
    limit_value: int
