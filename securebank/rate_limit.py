"""
Fixed-window rate limiting

Counters live in process memory and are keyed by ``<namespace>:<identifier>``
so the login and transfer limiters never share a counter. Bursts of up to
twice the limit are possible across a window boundary.
"""

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Optional

from .storage import Clock, utc_now


@dataclass
class RateLimitCounter:
    attempts: int
    window_reset_at: datetime


class FixedWindowRateLimiter:
    """Thread-safe fixed-window counter per identifier"""

    def __init__(self, namespace: str, clock: Optional[Clock] = None):
        self.namespace = namespace
        self.clock = clock or utc_now
        self._counters: Dict[str, RateLimitCounter] = {}
        self._lock = threading.Lock()

    def _key(self, identifier: str) -> str:
        return f"{self.namespace}:{identifier}"

    def allow(self, identifier: str, max_attempts: int, window: timedelta) -> bool:
        """
        Count one attempt for ``identifier`` and report whether it is allowed

        The first attempt, or the first after the window has elapsed, starts
        a new window with a count of 1.
        """
        now = self.clock()
        key = self._key(identifier)
        with self._lock:
            counter = self._counters.get(key)
            if counter is None or now >= counter.window_reset_at:
                self._counters[key] = RateLimitCounter(1, now + window)
                return max_attempts >= 1
            counter.attempts += 1
            return counter.attempts <= max_attempts

    def reset(self, identifier: str) -> None:
        with self._lock:
            self._counters.pop(self._key(identifier), None)

    def retry_after(self, identifier: str) -> int:
        """Seconds until the current window for ``identifier`` resets (0 if none)"""
        with self._lock:
            counter = self._counters.get(self._key(identifier))
            if counter is None:
                return 0
            remaining = (counter.window_reset_at - self.clock()).total_seconds()
            return max(0, int(remaining + 0.999))

    def purge_expired(self) -> int:
        """Drop counters whose window has passed; returns how many were removed"""
        now = self.clock()
        with self._lock:
            expired = [k for k, c in self._counters.items() if now >= c.window_reset_at]
            for key in expired:
                del self._counters[key]
            return len(expired)
