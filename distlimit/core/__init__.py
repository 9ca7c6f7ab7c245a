"""Core utilities for the rate limiter."""

from distlimit.core.cache import BlockStatus, EphemeralCache
from distlimit.core.config import Settings, settings
from distlimit.core.context import MultiRegionContext, RegionContext
from distlimit.core.logging import get_logger, setup_logging
from distlimit.core.utils import ms, now_ms

__all__ = [
    "BlockStatus",
    "EphemeralCache",
    "Settings",
    "settings",
    "MultiRegionContext",
    "RegionContext",
    "get_logger",
    "setup_logging",
    "ms",
    "now_ms",
]
