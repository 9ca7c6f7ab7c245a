"""Rate limit algorithms.

Each algorithm executes its read-decide-write sequence as one Redis Lua
script, so concurrent callers are serialized by Redis rather than by locks.
"""

from .base import Algorithm
from .fixed_window import FixedWindow, fixed_window
from .models import RatelimitResponse, Reason, RegionDecision
from .sliding_window import SlidingWindow, sliding_window
from .token_bucket import TokenBucket, token_bucket

__all__ = [
    "Algorithm",
    "FixedWindow",
    "SlidingWindow",
    "TokenBucket",
    "fixed_window",
    "sliding_window",
    "token_bucket",
    "RatelimitResponse",
    "Reason",
    "RegionDecision",
]
