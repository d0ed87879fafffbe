"""
Rate limiting module.

Provides the cache-backed RateLimiter with a spacing gate and a per-minute
quota gate, both failing open when the cache store is unavailable.
"""

from ratelimit.limiter import RATE_WINDOW, RateLimiter

__all__ = ["RATE_WINDOW", "RateLimiter"]
