"""Minimum-interval rate limiter for upstream requests."""

import logging
import threading
import time
from typing import Callable

logger = logging.getLogger(__name__)


class RateLimiter:
    """Block callers so consecutive permits are at least ``min_interval`` seconds apart.

    The first call to :meth:`wait` never blocks. Safe to share between threads;
    waiters are released one at a time, in no guaranteed order.
    """

    def __init__(
        self,
        min_interval: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if min_interval < 0:
            raise ValueError("min_interval must be non-negative")
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._last = None

    def wait(self) -> float:
        """Wait for the next permit and return the number of seconds slept."""
        with self._lock:
            slept = 0.0
            if self._last is not None:
                remaining = self.min_interval - (self._clock() - self._last)
                if remaining > 0:
                    logger.debug("Rate limiter sleeping %.2fs", remaining)
                    self._sleep(remaining)
                    slept = remaining
            self._last = self._clock()
            return slept

    def touch(self) -> None:
        """Restart the interval from now, e.g. once a slow request has completed."""
        with self._lock:
            self._last = self._clock()
