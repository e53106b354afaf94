from __future__ import annotations

import math
import time
from collections import deque
from typing import Callable


class RateLimiter:
    """Sliding-window request limiter, one window per client key.

    ``hit`` never waits: it records the request and reports whether the client
    is still inside its allowance. A ``max_requests`` of 0 disables limiting.
    """

    def __init__(self, max_requests: int, period: float, *, clock: Callable[[], float] = time.monotonic) -> None:
        self.max_requests = max_requests
        self.period = period
        self._clock = clock
        self._hits: dict[str, deque[float]] = {}

    @property
    def enabled(self) -> bool:
        return self.max_requests > 0 and self.period > 0

    def _prune(self, key: str, now: float) -> deque[float] | None:
        timestamps = self._hits.get(key)
        if timestamps is None:
            return None
        while timestamps and now - timestamps[0] >= self.period:
            timestamps.popleft()
        if not timestamps:
            del self._hits[key]
            return None
        return timestamps

    def hit(self, key: str) -> bool:
        """Count one request for ``key``; False once the allowance is used up."""
        if not self.enabled:
            return True
        now = self._clock()
        timestamps = self._prune(key, now)
        if timestamps is None:
            timestamps = self._hits[key] = deque()
        if len(timestamps) >= self.max_requests:
            return False
        timestamps.append(now)
        return True

    def retry_after(self, key: str) -> int:
        """Whole seconds until ``key`` may send another request."""
        now = self._clock()
        timestamps = self._prune(key, now)
        if timestamps is None or len(timestamps) < self.max_requests:
            return 0
        return max(1, math.ceil(self.period - (now - timestamps[0])))

    def reset(self) -> None:
        self._hits.clear()
