"""
Sliding-window rate limiter for outbound Trading API requests
"""
import logging
import threading
import time
from collections import deque
from typing import Callable, Deque, Optional

from listings_exporter.config.ebay_config import (
    REQUESTS_PER_SECOND,
    RATE_LIMIT_WINDOW_SECONDS,
    RATE_LIMIT_POLL_INTERVAL,
)
from listings_exporter.exceptions import FetchCancelled

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Grants at most `max_requests` slots in any trailing `window` seconds.

    Timestamps of granted slots are kept in order; anything older than the
    window is pruned on every check. Callers that find the window full wait
    on a condition until the oldest slot expires. Safe to share between
    threads.
    """

    def __init__(
        self,
        max_requests: int = REQUESTS_PER_SECOND,
        window: float = RATE_LIMIT_WINDOW_SECONDS,
        poll_interval: float = RATE_LIMIT_POLL_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window <= 0:
            raise ValueError("window must be positive")
        self.max_requests = max_requests
        self.window = window
        self.poll_interval = poll_interval
        self._clock = clock
        self._timestamps: Deque[float] = deque()
        self._condition = threading.Condition()

    def _prune(self, now: float) -> None:
        while self._timestamps and now - self._timestamps[0] >= self.window:
            self._timestamps.popleft()

    def acquire_slot(self, cancel_event: Optional[threading.Event] = None) -> float:
        """
        Block until one more request may be issued.

        Returns:
            The clock value recorded for the granted slot

        Raises:
            FetchCancelled: If cancel_event is set while waiting
        """
        with self._condition:
            while True:
                if cancel_event is not None and cancel_event.is_set():
                    raise FetchCancelled("Cancelled while waiting for a rate limit slot")

                now = self._clock()
                self._prune(now)

                if len(self._timestamps) < self.max_requests:
                    self._timestamps.append(now)
                    self._condition.notify()
                    return now

                wait_for = self._timestamps[0] + self.window - now
                logger.debug(f"Rate limit reached ({self.max_requests}/{self.window}s), waiting {wait_for:.3f}s")
                self._condition.wait(timeout=max(0.0, min(wait_for, self.poll_interval)))

    def in_window(self) -> int:
        """Number of slots granted within the current window"""
        with self._condition:
            self._prune(self._clock())
            return len(self._timestamps)
