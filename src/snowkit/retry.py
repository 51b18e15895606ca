"""Bounded exponential back-off for single units of work.

:func:`do` and :func:`do_with_result` call a zero-argument function until it
succeeds, fails with an error the :class:`~snowkit.models.RetryPolicy` does
not cover, or runs out of attempts.

An error is retried only when all of these hold:

* it implements :class:`~snowkit.exceptions.Retryable`;
* its ``is_retryable()`` is true;
* its ``get_error_type()`` is listed in ``policy.retry_on``.

Between attempts the executor sleeps for
``min(base_delay * multiplier ** attempt, max_delay)``, perturbed by up to
25% either way when jitter is on and never below zero. The sleep is
interrupted by the optional ``cancel`` event.
"""

from __future__ import annotations

import logging
import random
import threading
import time
from typing import Callable, Optional, TypeVar

from snowkit.exceptions import (
    ErrorKind,
    RequestCancelledError,
    Retryable,
    RetryExhaustedError,
)
from snowkit.models import RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")

JITTER_FRACTION = 0.25

DEFAULT_POLICY = RetryPolicy()

MINIMAL_POLICY = RetryPolicy(
    max_attempts=2,
    base_delay=0.2,
    max_delay=5.0,
    multiplier=1.5,
    retry_on=frozenset({ErrorKind.RATE_LIMIT}),
)

AGGRESSIVE_POLICY = RetryPolicy(
    max_attempts=7,
    base_delay=0.1,
    max_delay=120.0,
    multiplier=2.5,
    retry_on=frozenset(
        {ErrorKind.RATE_LIMIT, ErrorKind.TIMEOUT, ErrorKind.NETWORK, ErrorKind.SERVER}
    ),
)

_PRESETS = {
    "default": DEFAULT_POLICY,
    "minimal": MINIMAL_POLICY,
    "aggressive": AGGRESSIVE_POLICY,
}


def policy_for(name: str) -> RetryPolicy:
    """Look up a policy preset (``default``, ``minimal``, ``aggressive``)."""
    return _PRESETS.get(name, DEFAULT_POLICY)


def compute_delay(
    policy: RetryPolicy, attempt: int, rng: Optional[random.Random] = None
) -> float:
    """Return the back-off in seconds after the zero-based *attempt*."""
    delay = min(policy.base_delay * policy.multiplier**attempt, policy.max_delay)
    if policy.jitter:
        rand = (rng or random).random()
        delay += delay * JITTER_FRACTION * (2 * rand - 1)
    return max(0.0, delay)


def should_retry(policy: RetryPolicy, error: BaseException) -> bool:
    """Return whether *policy* allows another attempt after *error*."""
    if not isinstance(error, Retryable):
        return False
    return error.is_retryable() and error.get_error_type() in policy.retry_on


def _sleep(delay: float, cancel: Optional[threading.Event], sleep: Callable[[float], None]) -> None:
    if cancel is None:
        sleep(delay)
    elif cancel.wait(delay):
        raise RequestCancelledError("request cancelled during retry back-off")


def do_with_result(
    policy: RetryPolicy,
    fn: Callable[[], T],
    cancel: Optional[threading.Event] = None,
    *,
    sleep: Callable[[float], None] = time.sleep,
    rng: Optional[random.Random] = None,
) -> T:
    """Call *fn* under *policy* and return its result.

    Args:
        policy: Attempt budget, back-off shape, and retryable kinds.
        fn: The unit of work. Called once per attempt.
        cancel: Interrupts the back-off sleep when set.
        sleep: Sleep function used when *cancel* is ``None``.
        rng: Random source for jitter.

    Returns:
        Whatever *fn* returned on its first successful attempt.

    Raises:
        RetryExhaustedError: If every attempt failed with a retryable error.
        RequestCancelledError: If *cancel* fires during a back-off sleep.
        Exception: The first non-retryable error *fn* raised, unchanged.
    """
    last_error: Optional[Exception] = None
    for attempt in range(policy.max_attempts):
        try:
            return fn()
        except Exception as exc:
            if not should_retry(policy, exc):
                raise
            last_error = exc

        if attempt == policy.max_attempts - 1:
            break
        delay = compute_delay(policy, attempt, rng)
        logger.debug(
            "Attempt %d/%d failed (%s); retrying in %.3fs",
            attempt + 1,
            policy.max_attempts,
            last_error,
            delay,
        )
        _sleep(delay, cancel, sleep)

    assert last_error is not None
    raise RetryExhaustedError(policy.max_attempts, last_error) from last_error


def do(
    policy: RetryPolicy,
    fn: Callable[[], object],
    cancel: Optional[threading.Event] = None,
    **kwargs,
) -> None:
    """Like :func:`do_with_result`, discarding the result."""
    do_with_result(policy, fn, cancel, **kwargs)
