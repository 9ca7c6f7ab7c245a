"""Services built on top of the algorithms."""

from .analytics import Analytics
from .multi_region import MultiRegionCoordinator

__all__ = [
    "Analytics",
    "MultiRegionCoordinator",
]
