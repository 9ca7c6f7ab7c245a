"""Data models for rate limit decisions."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Optional


class Reason(str, Enum):
    """Why a response is not a plain algorithm decision."""
    RATELIMIT = "ratelimit"
    BLACKLIST = "blacklist"
    TIMEOUT = "timeout"


@dataclass
class RatelimitResponse:
    """Result of a rate limit check.

    Attributes:
        success: Whether the request may pass
        limit: Maximum number of requests allowed within a window
        remaining: How many requests are left in the current window
        reset: Unix timestamp in milliseconds when the limit resets
        reason: Set on rejections, cache hits and timeouts
        pending: Background work (analytics, multi-region sync). Awaiting it
            is optional; it never raises.
    """
    success: bool
    limit: int
    remaining: int
    reset: int
    reason: Optional[Reason] = None
    pending: Optional[Awaitable[Any]] = field(default=None, repr=False, compare=False)


@dataclass
class RegionDecision:
    """Decision of one region, as needed for multi-region aggregation.

    Attributes:
        response: The region's own response
        key: The store key the algorithm wrote to
        counter: Raw value stored under ``key`` after the call (request count
            for window algorithms, tokens left for the token bucket)
        used: Usage the decision was based on, including this request; a
            rejected request reports ``used > limit``
    """
    response: RatelimitResponse
    key: str
    counter: int
    used: int
