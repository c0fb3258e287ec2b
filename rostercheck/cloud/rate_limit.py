"""Process-wide request quota for the cloud inference endpoint."""

from __future__ import annotations

import threading
import time
from typing import Callable

WINDOW_SECONDS = 3600.0


class HourlyRateLimiter:
    """Fixed ceiling of requests per one-hour window, shared by all callers.

    The window restarts once the wall clock is more than an hour past the
    window start. Every request counts against the quota, including rejected
    ones, because the counter is incremented before the ceiling check.

    Example:
        >>> limiter = HourlyRateLimiter(max_requests=2)
        >>> limiter.allow(), limiter.allow(), limiter.allow()
        (True, True, False)
    """

    def __init__(
        self,
        max_requests: int = 20000,
        window_seconds: float = WINDOW_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        if max_requests < 1:
            raise ValueError(f"max_requests must be >= 1, got {max_requests}")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._count = 0
        self._window_start = clock()

    def allow(self) -> bool:
        """Count one request and report whether it is within the quota."""
        with self._lock:
            now = self._clock()
            if now - self._window_start > self.window_seconds:
                self._count = 0
                self._window_start = now

            self._count += 1
            return self._count <= self.max_requests

    @property
    def count(self) -> int:
        with self._lock:
            return self._count
