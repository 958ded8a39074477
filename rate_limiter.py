"""
Fixed-window request limiter keyed by client address
"""
import asyncio
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict

from loguru import logger


@dataclass
class _Window:
    count: int
    reset_at: float


class RateLimiter:
    """Counts requests per key inside a fixed window.

    Built once per process (the API lifespan owns it) and passed to whoever
    needs it. ``run_cleanup`` drops expired windows on a timer and keeps at
    most ``max_keys`` entries.
    """

    def __init__(self, window_seconds: float = 60.0, max_requests: int = 10, max_keys: int = 10000,
                 clock: Callable[[], float] = time.monotonic):
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self.max_keys = max_keys
        self._clock = clock
        self._windows: Dict[str, _Window] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._windows)

    def allow(self, key: str) -> bool:
        now = self._clock()
        with self._lock:
            window = self._windows.get(key)
            if window is None or window.reset_at < now:
                self._windows[key] = _Window(count=1, reset_at=now + self.window_seconds)
                return True
            if window.count >= self.max_requests:
                return False
            window.count += 1
            return True

    def evict_expired(self) -> int:
        """Drop expired windows, then the oldest ones beyond max_keys"""
        now = self._clock()
        with self._lock:
            before = len(self._windows)
            self._windows = {k: w for k, w in self._windows.items() if w.reset_at >= now}
            overflow = len(self._windows) - self.max_keys
            if overflow > 0:
                oldest = sorted(self._windows, key=lambda k: self._windows[k].reset_at)[:overflow]
                for key in oldest:
                    del self._windows[key]
            return before - len(self._windows)

    async def run_cleanup(self, interval_seconds: float = 60.0):
        while True:
            await asyncio.sleep(interval_seconds)
            removed = self.evict_expired()
            if removed:
                logger.debug(f"Rate limiter evicted {removed} window(s)")
