"""
Multi-window rate limiter for the gateway.

Every API key gets one fixed-window counter per configured window
(10 minutes, a day, a month). A request is admitted only if no window is
exhausted, and an admission increments every window together. Counters live
in process memory only; expired counters are reset lazily when the key is
next seen.
"""

import math
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from shared.logging import get_logger


@dataclass(frozen=True)
class RateWindow:
    """A fixed-duration counting period and its default limit."""

    name: str            # identifier reported on rejection, e.g. "10min"
    field: str           # limit/remaining field name, e.g. "per10Min"
    header: str          # response header suffix, e.g. "10Min"
    duration_ms: int
    default_limit: int


@dataclass
class WindowCounter:
    count: int
    expires_at: int


@dataclass
class RateLimitResult:
    """Outcome of one admission check."""

    allowed: bool
    limits: Dict[str, int]
    remaining: Dict[str, int]
    reset_in_seconds: Dict[str, int]
    limit_exceeded: Optional[str] = None
    retry_after: Optional[int] = None
    windows: List[RateWindow] = field(default_factory=list, repr=False)

    def headers(self) -> Dict[str, str]:
        """Per-window quota headers for a successful response."""
        headers = {}
        for window in self.windows:
            headers[f"X-RateLimit-Remaining-{window.header}"] = str(self.remaining[window.field])
            headers[f"X-RateLimit-Reset-{window.header}"] = str(self.reset_in_seconds[window.field])
        return headers


MINUTE_MS = 60 * 1000
DAY_MS = 24 * 60 * MINUTE_MS

WINDOW_CATALOG = {
    "10min": ("per10Min", "10Min", 10 * MINUTE_MS),
    "day": ("perDay", "Day", DAY_MS),
    "month": ("perMonth", "Month", 30 * DAY_MS),
}


def build_windows(names: Iterable[str], default_limits: Mapping[str, int]) -> List[RateWindow]:
    """Build the configured windows, ordered shortest duration first."""
    windows = []
    for name in names:
        if name not in WINDOW_CATALOG:
            raise ValueError(f"Unknown rate limit window: {name}")
        field_name, header, duration_ms = WINDOW_CATALOG[name]
        windows.append(RateWindow(name, field_name, header, duration_ms, int(default_limits[name])))
    return sorted(windows, key=lambda window: window.duration_ms)


def resolve_limits(windows: Sequence[RateWindow], overrides: Optional[Mapping[str, Optional[int]]] = None) -> Dict[str, int]:
    """Effective limit per window: the per-key override when set, else the default."""
    overrides = overrides or {}
    limits = {}
    for window in windows:
        override = overrides.get(window.field)
        limits[window.field] = window.default_limit if override is None else int(override)
    return limits


def resolve_count(counter: Optional[WindowCounter], now: int) -> int:
    """Live count of a counter; absent or expired counters count as zero."""
    if counter is None or now >= counter.expires_at:
        return 0
    return counter.count


def seconds_until(expires_at: int, now: int) -> int:
    return max(0, math.ceil((expires_at - now) / 1000))


def _now_ms() -> int:
    return int(time.time() * 1000)


class MultiWindowRateLimiter:
    """In-memory per-key limiter over several fixed windows."""

    def __init__(self, windows: Sequence[RateWindow], clock: Callable[[], int] = _now_ms):
        if not windows:
            raise ValueError("At least one rate limit window is required")
        self.windows = sorted(windows, key=lambda window: window.duration_ms)
        self.clock = clock
        self.logger = get_logger("gateway.rate_limiter")
        self._entries: Dict[str, Dict[str, WindowCounter]] = {}
        self._lock = threading.Lock()

    def check_and_admit(self, key: str, overrides: Optional[Mapping[str, Optional[int]]] = None) -> RateLimitResult:
        """Admit the request and count it against every window, or reject it
        on the shortest window that is already at its limit."""
        limits = resolve_limits(self.windows, overrides)

        with self._lock:
            now = self.clock()
            entry = self._entries.get(key, {})
            counts = {
                window.field: resolve_count(entry.get(window.field), now)
                for window in self.windows
            }

            for window in self.windows:
                if counts[window.field] >= limits[window.field]:
                    return self._rejection(window, entry, counts, limits, now)

            entry = self._entries.setdefault(key, {})
            for window in self.windows:
                counter = entry.get(window.field)
                if counter is None or now >= counter.expires_at:
                    counter = WindowCounter(count=0, expires_at=now + window.duration_ms)
                    entry[window.field] = counter
                counter.count += 1

            return RateLimitResult(
                allowed=True,
                limits=limits,
                remaining={
                    window.field: max(0, limits[window.field] - entry[window.field].count)
                    for window in self.windows
                },
                reset_in_seconds={
                    window.field: seconds_until(entry[window.field].expires_at, now)
                    for window in self.windows
                },
                windows=list(self.windows),
            )

    def _rejection(self, exceeded: RateWindow, entry: Dict[str, WindowCounter],
                   counts: Dict[str, int], limits: Dict[str, int], now: int) -> RateLimitResult:
        remaining = {}
        reset_in_seconds = {}
        for window in self.windows:
            if window is exceeded:
                remaining[window.field] = 0
            else:
                remaining[window.field] = max(0, limits[window.field] - counts[window.field])

            counter = entry.get(window.field)
            if counter is None or now >= counter.expires_at:
                reset_in_seconds[window.field] = seconds_until(now + window.duration_ms, now)
            else:
                reset_in_seconds[window.field] = seconds_until(counter.expires_at, now)

        return RateLimitResult(
            allowed=False,
            limits=limits,
            remaining=remaining,
            reset_in_seconds=reset_in_seconds,
            limit_exceeded=exceeded.name,
            retry_after=reset_in_seconds[exceeded.field],
            windows=list(self.windows),
        )

    def usage(self, key: str) -> Dict[str, int]:
        """Current count per window; never creates counters."""
        with self._lock:
            now = self.clock()
            entry = self._entries.get(key, {})
            return {
                window.field: resolve_count(entry.get(window.field), now)
                for window in self.windows
            }

    def reset(self, key: str) -> bool:
        """Drop all counters for a key."""
        with self._lock:
            return self._entries.pop(key, None) is not None

    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._entries)
