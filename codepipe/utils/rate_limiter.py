"""
Rate limiting for calls to the remote embedding endpoint.

The limiter combines two independent constraints: a steady pulse that spaces
admissions to a requests-per-minute budget, and a counting permit pool that
caps how many admitted calls may be in flight at once. One instance is built
per pipeline and passed to every embedding client that shares the endpoint.
"""

import logging
import threading
import time
from contextlib import contextmanager
from typing import Callable

logger = logging.getLogger(__name__)

DEFAULT_REQUESTS_PER_MINUTE = 3000
DEFAULT_MAX_CONCURRENT = 5


class RateLimiter:
    """
    A shared gate in front of the embedding endpoint.

    `acquire()` blocks until a permit is free and a pulse interval has elapsed
    since the previous admission. Every `acquire()` must be paired with one
    `release()`, including on error paths; prefer `with limiter.permit():`.
    """

    def __init__(
        self,
        requests_per_minute: int = DEFAULT_REQUESTS_PER_MINUTE,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if requests_per_minute <= 0:
            requests_per_minute = 60
        if max_concurrent <= 0:
            max_concurrent = DEFAULT_MAX_CONCURRENT

        self.requests_per_minute = requests_per_minute
        self.max_concurrent = max_concurrent
        self.interval = 60.0 / requests_per_minute
        self._clock = clock
        self._sleep = sleep
        self._permits = threading.BoundedSemaphore(max_concurrent)
        self._pulse_lock = threading.Lock()
        self._count_lock = threading.Lock()
        self._next_admission = None
        self._in_flight = 0
        logger.debug(
            f"Initialized RateLimiter with rpm={requests_per_minute}, "
            f"max_concurrent={max_concurrent}"
        )

    @property
    def in_flight(self) -> int:
        with self._count_lock:
            return self._in_flight

    def acquire(self):
        """Blocks until both a permit and a pulse are available."""
        self._permits.acquire()
        # Admissions are serialized on the pulse so that waiters queue behind
        # one another instead of all waking at the same instant.
        try:
            with self._pulse_lock:
                now = self._clock()
                if self._next_admission is not None and now < self._next_admission:
                    self._sleep(self._next_admission - now)
                    now = self._next_admission
                self._next_admission = now + self.interval
        except BaseException:
            self._permits.release()
            raise
        with self._count_lock:
            self._in_flight += 1

    def release(self):
        """Returns one permit to the pool."""
        with self._count_lock:
            if self._in_flight == 0:
                raise ValueError("RateLimiter released more times than acquired.")
            self._in_flight -= 1
        self._permits.release()

    @contextmanager
    def permit(self):
        self.acquire()
        try:
            yield self
        finally:
            self.release()

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False


class NullRateLimiter(RateLimiter):
    """A limiter that admits every call immediately."""

    def __init__(self):
        self.requests_per_minute = 0
        self.max_concurrent = 0
        self.interval = 0.0
        self._count_lock = threading.Lock()
        self._in_flight = 0

    def acquire(self):
        with self._count_lock:
            self._in_flight += 1

    def release(self):
        with self._count_lock:
            if self._in_flight == 0:
                raise ValueError("RateLimiter released more times than acquired.")
            self._in_flight -= 1
