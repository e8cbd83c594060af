"""
Sliding-window request limiter.

Keeps one list of admission timestamps per request class and tells the
caller how long to wait before a request of that class may proceed.
"""

import time
from collections import deque
from typing import Callable, Deque, Dict, Optional

DEFAULT_CLASS = "normal"


class RateLimiter:
    """
    Per-class sliding-window admission control.

    Args:
        limits: Maximum admissions per window for each request class
        window: Window length in seconds
        clock: Monotonic clock, injectable for tests
    """

    def __init__(
        self,
        limits: Dict[str, int],
        window: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if not limits:
            raise ValueError("RateLimiter needs at least one request class limit")
        if any(limit < 1 for limit in limits.values()):
            raise ValueError("Request class limits must be at least 1 per window")
        self.limits = dict(limits)
        self.window = window
        self._clock = clock
        self._timestamps: Dict[str, Deque[float]] = {
            name: deque() for name in self.limits
        }

    def _ceiling(self, request_class: str) -> int:
        if request_class in self.limits:
            return self.limits[request_class]
        return self.limits.get(DEFAULT_CLASS, min(self.limits.values()))

    def admit(self, request_class: Optional[str] = None) -> float:
        """
        Try to admit one request.

        Returns 0.0 and records the admission when the class is under its
        ceiling, otherwise returns the seconds until the oldest admission
        leaves the window. Nothing is recorded on the rejected path, so the
        caller must sleep and call again.
        """
        request_class = request_class or DEFAULT_CLASS
        stamps = self._timestamps.setdefault(request_class, deque())
        now = self._clock()

        while stamps and now - stamps[0] >= self.window:
            stamps.popleft()

        if len(stamps) >= self._ceiling(request_class):
            wait = self.window - (now - stamps[0])
            if wait > 0:
                return wait

        stamps.append(now)
        return 0.0

    def wait_for_slot(
        self,
        request_class: Optional[str] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> float:
        """
        Block until the class is admitted.

        Returns:
            float: Total seconds slept
        """
        waited = 0.0
        while True:
            wait = self.admit(request_class)
            if wait <= 0:
                return waited
            sleep(wait)
            waited += wait
