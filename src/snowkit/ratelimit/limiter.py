"""Per-endpoint-class rate limiting.

Requests are sorted into coarse endpoint classes by :func:`classify_endpoint`
and each class draws from its own :class:`~snowkit.ratelimit.bucket.TokenBucket`,
so a burst of attachment uploads cannot starve table reads.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from snowkit.models import EndpointType, RateLimitConfig
from snowkit.ratelimit.bucket import Reservation, TokenBucket

logger = logging.getLogger(__name__)

# First match wins.
_ENDPOINT_RULES: tuple[tuple[str, EndpointType], ...] = (
    ("/table/", EndpointType.TABLE),
    ("/attachment", EndpointType.ATTACHMENT),
    ("/import", EndpointType.IMPORT),
)


def classify_endpoint(path: str) -> EndpointType:
    """Map a request path to its endpoint class.

    Examples:
        >>> classify_endpoint("/api/now/table/incident")
        <EndpointType.TABLE: 'table'>
        >>> classify_endpoint("/api/now/attachment/file")
        <EndpointType.ATTACHMENT: 'attachment'>
        >>> classify_endpoint("/api/now/stats/incident")
        <EndpointType.DEFAULT: 'default'>
    """
    for needle, endpoint in _ENDPOINT_RULES:
        if needle in path:
            return endpoint
    return EndpointType.DEFAULT


class EndpointLimiter:
    """One token bucket per :class:`~snowkit.models.EndpointType`.

    :meth:`update_config` swaps the whole set of buckets at once; callers
    already waiting keep the bucket they started with, new callers see the
    new configuration. Bucket state is reset, not carried over.

    Args:
        config: Rates and bursts per endpoint class. Defaults to
            :class:`~snowkit.models.RateLimitConfig`.
        clock: Monotonic time source handed to every bucket.
    """

    def __init__(
        self,
        config: Optional[RateLimitConfig] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._config = config or RateLimitConfig()
        self._buckets = self._build(self._config)

    def _build(self, config: RateLimitConfig) -> dict[EndpointType, TokenBucket]:
        buckets = {}
        for endpoint in EndpointType:
            rate, burst = config.limits_for(endpoint)
            buckets[endpoint] = TokenBucket(rate, burst, clock=self._clock)
        return buckets

    @property
    def config(self) -> RateLimitConfig:
        with self._lock:
            return self._config

    def update_config(self, config: RateLimitConfig) -> None:
        """Replace every bucket with fresh ones built from *config*."""
        buckets = self._build(config)
        with self._lock:
            self._config = config
            self._buckets = buckets
        logger.debug("Rate limiter reconfigured: %s", config)

    def bucket(self, endpoint: EndpointType) -> TokenBucket:
        """Return the bucket currently serving *endpoint*."""
        with self._lock:
            return self._buckets[endpoint]

    def wait(self, endpoint: EndpointType, cancel: Optional[threading.Event] = None) -> None:
        """Block until *endpoint*'s bucket grants a permit.

        Raises:
            RateLimiterError: If the bucket can never grant a permit.
            RequestCancelledError: If *cancel* is set first.
        """
        self.bucket(endpoint).wait(cancel)

    def allow(self, endpoint: EndpointType) -> bool:
        """Take a permit for *endpoint* only if one is available now."""
        return self.bucket(endpoint).allow()

    def reserve(self, endpoint: EndpointType) -> Reservation:
        """Reserve a future permit for *endpoint*."""
        return self.bucket(endpoint).reserve()
