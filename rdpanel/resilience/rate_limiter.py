"""Sliding window rate limiter.

Client-side self-throttle that bounds outbound requests per client instance:
- Each admission records a timestamp
- Timestamps older than the window are evicted on every check
- When the window is full the check fails fast with a wait hint instead of
  blocking, so callers never wait on the network to learn they are throttled
"""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable

from rdpanel.config.constants import RATE_LIMIT_MAX_REQUESTS, RATE_LIMIT_WINDOW
from rdpanel.core.errors import client_rate_limited
from rdpanel.observability.logger import get_logger

logger = get_logger(__name__)


@dataclass
class RateLimiter:
    """Rolling-window admission gate.

    Usage:
        limiter = RateLimiter(max_requests=60, window=60.0)

        limiter.check_limit()  # raises ApiError(RATE_LIMITED) when full
        await send_request()
    """

    # Configuration
    max_requests: int = RATE_LIMIT_MAX_REQUESTS
    window: float = RATE_LIMIT_WINDOW  # seconds
    clock: Callable[[], float] = time.monotonic

    # State
    _timestamps: deque[float] = field(default_factory=deque, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.max_requests <= 0:
            raise ValueError("max_requests must be positive")
        if self.window <= 0:
            raise ValueError("window must be positive")

    def check_limit(self) -> None:
        """Admit one request or fail.

        Raises:
            ApiError: kind RATE_LIMITED (client origin) when the window is full.
                `retry_after` holds the seconds until the oldest admission expires.
        """
        with self._lock:
            now = self.clock()
            self._evict(now)

            if len(self._timestamps) >= self.max_requests:
                wait_time = self.window - (now - self._timestamps[0])
                logger.warning(
                    "Client-side rate limit reached",
                    extra={"wait_seconds": round(wait_time, 3)},
                )
                raise client_rate_limited(wait_time)

            self._timestamps.append(now)

    def reset(self) -> None:
        """Forget all recorded admissions."""
        with self._lock:
            self._timestamps.clear()

    def get_wait_time(self) -> float:
        """Seconds until the next admission would succeed (0 if it would now)."""
        with self._lock:
            now = self.clock()
            self._evict(now)
            if len(self._timestamps) < self.max_requests:
                return 0.0
            return max(0.0, self.window - (now - self._timestamps[0]))

    @property
    def remaining(self) -> int:
        """Admissions left in the current window (approximate)."""
        with self._lock:
            self._evict(self.clock())
            return self.max_requests - len(self._timestamps)

    def _evict(self, now: float) -> None:
        while self._timestamps and now - self._timestamps[0] >= self.window:
            self._timestamps.popleft()
