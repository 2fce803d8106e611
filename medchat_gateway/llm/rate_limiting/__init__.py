"""
Rate limiting for inbound chat messages.
"""

from .limiter import SlidingWindowLimiter
from .models import RateLimitConfig, RateLimitResult

__all__ = ["RateLimitConfig", "RateLimitResult", "SlidingWindowLimiter"]
