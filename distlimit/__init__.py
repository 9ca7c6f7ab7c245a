"""Distributed rate limiting on Redis.

Fixed window, sliding window and token bucket algorithms executed as atomic
Lua scripts, with an in-process fast path for blocked identifiers, a
fail-open timeout, best-effort analytics and multi-region support.
"""

from distlimit.algorithms import (
    Algorithm,
    FixedWindow,
    RatelimitResponse,
    Reason,
    SlidingWindow,
    TokenBucket,
    fixed_window,
    sliding_window,
    token_bucket,
)
from distlimit.core.cache import EphemeralCache
from distlimit.core.context import MultiRegionContext, RegionContext
from distlimit.exceptions import (
    AllRegionsFailedError,
    InternalInvariantError,
    InvalidArgumentError,
    RatelimitError,
)
from distlimit.ratelimiter import Ratelimiter
from distlimit.services import Analytics, MultiRegionCoordinator

__all__ = [
    "Ratelimiter",
    "Algorithm",
    "FixedWindow",
    "SlidingWindow",
    "TokenBucket",
    "fixed_window",
    "sliding_window",
    "token_bucket",
    "RatelimitResponse",
    "Reason",
    "EphemeralCache",
    "RegionContext",
    "MultiRegionContext",
    "Analytics",
    "MultiRegionCoordinator",
    "RatelimitError",
    "InvalidArgumentError",
    "InternalInvariantError",
    "AllRegionsFailedError",
]
