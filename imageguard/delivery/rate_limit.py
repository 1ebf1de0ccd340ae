"""
Rate Limiting

Fixed-window request counting per client identity (ip|user-agent).
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple


logger = logging.getLogger(__name__)


@dataclass
class RateLimitWindow:
    """Request count for one client in the current window."""
    client_key: str
    window_start: float
    count: int = 0


def client_identity(ip: Optional[str], user_agent: Optional[str]) -> str:
    return f"{ip or 'unknown'}|{user_agent or ''}"


class FixedWindowRateLimiter:
    """
    Fixed-window rate limiter.

    With a limit of N, exactly N requests from one client are allowed
    per window; request N+1 is refused until the window elapses.
    Counter updates happen under a lock so concurrent requests never
    lose increments.
    """

    def __init__(
        self,
        max_requests: int = 100,
        window_seconds: int = 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: Dict[str, RateLimitWindow] = {}
        self._lock = threading.Lock()

    def _current_window(self, client_key: str, now: float) -> RateLimitWindow:
        window = self._windows.get(client_key)
        if window is None or now - window.window_start >= self.window_seconds:
            window = RateLimitWindow(client_key=client_key, window_start=now)
            self._windows[client_key] = window
        return window

    def check_rate_limit(self, client_key: str) -> Tuple[bool, Optional[str]]:
        """
        Count a request and check it against the limit.

        Returns:
            Tuple of (allowed, error_message)
        """
        now = self._clock()
        with self._lock:
            window = self._current_window(client_key, now)
            if window.count >= self.max_requests:
                return False, (
                    f"Rate limit exceeded: {self.max_requests} requests "
                    f"per {self.window_seconds} seconds"
                )
            window.count += 1

            if len(self._windows) > 10_000:
                self._purge_expired(now)

        return True, None

    def get_remaining(self, client_key: str) -> int:
        now = self._clock()
        with self._lock:
            window = self._windows.get(client_key)
            if window is None or now - window.window_start >= self.window_seconds:
                return self.max_requests
            return max(0, self.max_requests - window.count)

    def retry_after(self, client_key: str) -> int:
        """Seconds until the client's window resets."""
        now = self._clock()
        with self._lock:
            window = self._windows.get(client_key)
            if window is None:
                return 0
            return max(0, int(window.window_start + self.window_seconds - now + 0.999))

    def _purge_expired(self, now: float) -> None:
        expired = [
            key for key, window in self._windows.items()
            if now - window.window_start >= self.window_seconds
        ]
        for key in expired:
            del self._windows[key]
