"""Fixed-window request limiter keyed by credential."""

from __future__ import annotations

from dataclasses import dataclass
import threading
import time
from typing import Callable

from opsagent.errors import RateLimitError


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    retry_after_ms: int


@dataclass
class _Window:
    started_ms: int
    count: int = 0
    blocked_until_ms: int = 0


class RateLimiter:
    """Allows `max_requests` per `window_ms` per key.

    Expired windows are dropped on every check so idle keys never
    accumulate. `penalize` blocks a key after a provider rate limit.
    """

    def __init__(
        self,
        max_requests: int = 30,
        window_ms: int = 60000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_requests < 1 or window_ms < 1:
            raise ValueError("max_requests and window_ms must be positive")
        self.max_requests = max_requests
        self.window_ms = window_ms
        self._clock = clock
        self._windows: dict[str, _Window] = {}
        self._lock = threading.Lock()

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _evict(self, now_ms: int) -> None:
        expired = [
            key
            for key, window in self._windows.items()
            if now_ms - window.started_ms >= self.window_ms and now_ms >= window.blocked_until_ms
        ]
        for key in expired:
            del self._windows[key]

    def check(self, key: str) -> RateLimitResult:
        """Count one request against `key` if allowed."""
        with self._lock:
            now_ms = self._now_ms()
            self._evict(now_ms)
            window = self._windows.get(key)
            if window is None:
                window = _Window(started_ms=now_ms)
                self._windows[key] = window
            if now_ms < window.blocked_until_ms:
                return RateLimitResult(False, 0, window.blocked_until_ms - now_ms)
            if now_ms - window.started_ms >= self.window_ms:
                window.started_ms = now_ms
                window.count = 0
            if window.count >= self.max_requests:
                return RateLimitResult(False, 0, window.started_ms + self.window_ms - now_ms)
            window.count += 1
            return RateLimitResult(True, self.max_requests - window.count, 0)

    def acquire(self, key: str, provider: str = "local") -> None:
        """Count one request against `key` or raise RateLimitError with the wait."""
        verdict = self.check(key)
        if not verdict.allowed:
            raise RateLimitError(
                "Local request budget exhausted", provider=provider, retry_after_ms=verdict.retry_after_ms
            )

    def penalize(self, key: str, retry_after_ms: int) -> None:
        with self._lock:
            now_ms = self._now_ms()
            window = self._windows.setdefault(key, _Window(started_ms=now_ms))
            window.blocked_until_ms = max(window.blocked_until_ms, now_ms + retry_after_ms)

    def tracked_keys(self) -> list[str]:
        with self._lock:
            return list(self._windows)
