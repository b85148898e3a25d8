"""
Rate limiting package for the Gateway.

Holds the in-memory multi-window limiter that enforces per-key request
budgets over 10-minute, daily and monthly windows.
"""

from .windows import (
    MultiWindowRateLimiter,
    RateLimitResult,
    RateWindow,
    WindowCounter,
    build_windows,
    resolve_count,
    resolve_limits,
)

__all__ = [
    "MultiWindowRateLimiter",
    "RateLimitResult",
    "RateWindow",
    "WindowCounter",
    "build_windows",
    "resolve_count",
    "resolve_limits",
]
