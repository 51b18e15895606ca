"""Token-bucket rate limiting per endpoint class."""

from snowkit.ratelimit.bucket import Reservation, TokenBucket
from snowkit.ratelimit.limiter import EndpointLimiter, classify_endpoint

__all__ = ["EndpointLimiter", "Reservation", "TokenBucket", "classify_endpoint"]
