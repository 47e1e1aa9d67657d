"""In-process fixed-window rate limiter.

Counters live in this process only and reset on restart.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from threading import Lock


@dataclass
class _Window:
    count: int
    reset_at: datetime


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_at: datetime

    @property
    def retry_after_seconds(self) -> int:
        delta = self.reset_at - datetime.now(timezone.utc)
        return max(0, int(delta.total_seconds()) + 1)


class RateLimiter:
    def __init__(self, limit: int, window: timedelta) -> None:
        self.limit = limit
        self.window = window
        self._windows: dict[str, _Window] = {}
        self._lock = Lock()

    def check(self, key: str) -> RateLimitResult:
        now = datetime.now(timezone.utc)
        with self._lock:
            self._cleanup(now)
            entry = self._windows.get(key)
            if entry is None:
                return RateLimitResult(True, self.limit, self.limit, now + self.window)
            remaining = max(0, self.limit - entry.count)
            return RateLimitResult(entry.count < self.limit, self.limit, remaining, entry.reset_at)

    def increment(self, key: str) -> None:
        now = datetime.now(timezone.utc)
        with self._lock:
            entry = self._windows.get(key)
            if entry is None or now >= entry.reset_at:
                self._windows[key] = _Window(count=1, reset_at=now + self.window)
            else:
                entry.count += 1

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()

    def _cleanup(self, now: datetime) -> None:
        expired = [key for key, entry in self._windows.items() if now >= entry.reset_at]
        for key in expired:
            del self._windows[key]


data_export_limiter = RateLimiter(limit=3, window=timedelta(hours=1))
account_deletion_limiter = RateLimiter(limit=3, window=timedelta(hours=1))
