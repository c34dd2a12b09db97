"""Resilience components for the hosting API client.

- RateLimiter: Rolling-window client-side throttle
- RetryExecutor: Fixed-delay retry of transient failures
"""

from .rate_limiter import RateLimiter
from .retry import RetryExecutor

__all__ = [
    "RateLimiter",
    "RetryExecutor",
]
