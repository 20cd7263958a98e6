"""In-memory fixed-window rate limiting.

Counters live in process memory only: they are not shared between workers
and are lost on restart, so the service must run as a single instance.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, NamedTuple


class RateLimitResult(NamedTuple):
    allowed: bool
    remaining: int
    reset_at: float

    def retry_after(self, now: float) -> int:
        return max(int(self.reset_at - now + 0.999), 1)


@dataclass
class _Window:
    count: int
    reset_at: float


class FixedWindowRateLimiter:
    """Count hits per key inside fixed windows."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._windows: dict[str, _Window] = {}
        self._lock = threading.Lock()

    def now(self) -> float:
        return self._clock()

    def hit(self, key: str, limit: int, window_seconds: float) -> RateLimitResult:
        if limit < 1:
            raise ValueError("limit must be >= 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        now = self._clock()
        with self._lock:
            window = self._windows.get(key)
            if window is None or now >= window.reset_at:
                window = _Window(count=1, reset_at=now + window_seconds)
                self._windows[key] = window
                return RateLimitResult(True, limit - 1, window.reset_at)
            if window.count >= limit:
                return RateLimitResult(False, 0, window.reset_at)
            window.count += 1
            return RateLimitResult(True, limit - window.count, window.reset_at)

    def prune(self) -> int:
        """Drop expired windows and return how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [key for key, w in self._windows.items() if now >= w.reset_at]
            for key in expired:
                del self._windows[key]
        return len(expired)

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()

    def __len__(self) -> int:
        return len(self._windows)


limiter = FixedWindowRateLimiter()
