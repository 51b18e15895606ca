"""Thread-safe token bucket.

A bucket holds up to ``burst`` permits and refills continuously at ``rate``
permits per second. Callers *reserve* a permit; the reservation says how
long the caller must wait before acting on it. Because the permit is taken
at reservation time, concurrent waiters are admitted in reservation order
and never exceed the configured rate.

The clock is injectable, which makes the bucket arithmetic testable without
sleeping::

    clock = FakeClock()
    bucket = TokenBucket(rate=5, burst=10, clock=clock)
    delays = [bucket.reserve().delay() for _ in range(12)]
    # ten immediate admissions, then 0.2s and 0.4s
"""

from __future__ import annotations

import math
import threading
import time
from typing import Callable, Optional

from snowkit.exceptions import RateLimiterError, RequestCancelledError


class Reservation:
    """A permit taken from a :class:`TokenBucket`.

    Attributes:
        ok: ``False`` when the bucket can never grant the permit (zero burst,
            or zero rate with no permits left). Nothing was taken in that case.
    """

    def __init__(self, bucket: TokenBucket, ok: bool, time_to_act: float) -> None:
        self._bucket = bucket
        self.ok = ok
        self._time_to_act = time_to_act
        self._cancelled = False

    def delay(self) -> float:
        """Seconds to wait before the permit may be used (``0`` if ready now)."""
        if not self.ok:
            return math.inf
        return max(0.0, self._time_to_act - self._bucket._clock())

    def cancel(self) -> None:
        """Give the permit back if its time to act has not yet arrived."""
        if not self.ok or self._cancelled:
            return
        self._cancelled = True
        self._bucket._restore(self._time_to_act)


class TokenBucket:
    """Token bucket rate limiter.

    Args:
        rate: Refill rate in permits per second.
        burst: Maximum number of permits held at once. The bucket starts full.
        clock: Monotonic time source in seconds.
        sleep: Used by :meth:`wait` when no cancel event is supplied.
    """

    def __init__(
        self,
        rate: float,
        burst: int,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        self._rate = float(rate)
        self._burst = int(burst)
        self._clock = clock or time.monotonic
        self._sleep = sleep or time.sleep
        self._lock = threading.Lock()
        self._tokens = float(burst)
        self._last = self._clock()

    @property
    def rate(self) -> float:
        return self._rate

    @property
    def burst(self) -> int:
        return self._burst

    def tokens(self) -> float:
        """Permits currently available (negative while reservations are queued)."""
        with self._lock:
            return self._advance(self._clock())

    def reserve(self) -> Reservation:
        """Take one permit, returning how long to wait before using it."""
        return self._reserve(max_wait=math.inf)

    def allow(self) -> bool:
        """Take one permit only if it is available right now."""
        return self._reserve(max_wait=0.0).ok

    def wait(self, cancel: Optional[threading.Event] = None) -> None:
        """Block until a permit is available.

        Args:
            cancel: When set before or during the wait, the permit is
                returned and :class:`~snowkit.exceptions.RequestCancelledError`
                is raised.

        Raises:
            RateLimiterError: If the bucket can never grant a permit.
            RequestCancelledError: If *cancel* is set first.
        """
        if cancel is not None and cancel.is_set():
            raise RequestCancelledError("request cancelled while waiting for rate limiter")

        reservation = self.reserve()
        if not reservation.ok:
            raise RateLimiterError(
                f"rate limiter cannot grant a permit (rate={self._rate}, burst={self._burst})"
            )
        delay = reservation.delay()
        if delay <= 0:
            return
        if cancel is None:
            self._sleep(delay)
            return
        if cancel.wait(delay):
            reservation.cancel()
            raise RequestCancelledError("request cancelled while waiting for rate limiter")

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _advance(self, now: float) -> float:
        elapsed = max(0.0, now - self._last)
        self._tokens = min(float(self._burst), self._tokens + elapsed * self._rate)
        self._last = max(self._last, now)
        return self._tokens

    def _reserve(self, max_wait: float) -> Reservation:
        with self._lock:
            now = self._clock()
            if self._burst < 1:
                return Reservation(self, False, now)
            tokens = self._advance(now) - 1.0
            if tokens >= 0:
                wait = 0.0
            elif self._rate <= 0:
                return Reservation(self, False, now)
            else:
                wait = -tokens / self._rate
            if wait > max_wait:
                return Reservation(self, False, now)
            self._tokens = tokens
            return Reservation(self, True, now + wait)

    def _restore(self, time_to_act: float) -> None:
        with self._lock:
            now = self._clock()
            if time_to_act <= now:
                return
            self._advance(now)
            self._tokens = min(float(self._burst), self._tokens + 1.0)
