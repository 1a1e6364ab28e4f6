"""Inbound request rate limiting.

A process-wide sliding-window limiter guarding the export endpoint.
Excess requests are rejected immediately, never queued.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from collections.abc import Callable


class RequestRateLimiter:
    """Accept at most ``max_requests`` per ``window`` seconds.

    Thread-safe, so it can be shared by every request of an app whatever
    the server's worker model.

    Args:
        max_requests: Requests accepted per window.
        window: Window length in seconds.
        clock: Monotonic time source.
    """

    def __init__(
        self,
        max_requests: int,
        window: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window <= 0:
            raise ValueError("window must be positive")
        self._max_requests = max_requests
        self._window = window
        self._clock = clock
        self._accepted: deque[float] = deque()
        self._lock = threading.Lock()

    def try_acquire(self) -> bool:
        """Record a request if there is room in the current window.

        Returns:
            True if the request is accepted, False if it must be rejected.
        """
        with self._lock:
            now = self._clock()
            cutoff = now - self._window
            while self._accepted and self._accepted[0] <= cutoff:
                self._accepted.popleft()
            if len(self._accepted) >= self._max_requests:
                return False
            self._accepted.append(now)
            return True

    def retry_after(self) -> float:
        """Seconds until the oldest accepted request leaves the window."""
        with self._lock:
            if len(self._accepted) < self._max_requests:
                return 0.0
            return max(0.0, self._accepted[0] + self._window - self._clock())
