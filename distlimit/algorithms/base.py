"""Algorithm interface shared by all rate limit algorithms."""

from abc import ABC, abstractmethod
from typing import Optional

from distlimit.algorithms.models import RatelimitResponse, RegionDecision
from distlimit.core.context import RegionContext


class Algorithm(ABC):
    """Abstract base class for rate limit algorithms.

    Implementations hold only their parameters. All mutable state lives in
    Redis, so one instance can be shared across tasks and limiters.
    """

    @property
    @abstractmethod
    def max_requests(self) -> int:
        """The limit reported in responses."""

    @abstractmethod
    async def evaluate(
        self,
        ctx: RegionContext,
        key: str,
        rate: int = 1,
        now: Optional[int] = None,
    ) -> RegionDecision:
        """Run one atomic read-decide-write against a region.

        Args:
            ctx: Region to run against
            key: Prefixed identifier, e.g. ``@ratelimit:user-1``
            rate: Units to consume for this request
            now: Current unix time in ms (defaults to the wall clock)

        Returns:
            RegionDecision with the response and the state written
        """

    async def limit(
        self,
        ctx: RegionContext,
        key: str,
        rate: int = 1,
        now: Optional[int] = None,
    ) -> RatelimitResponse:
        """Decide whether the request may pass."""
        decision = await self.evaluate(ctx, key, rate=rate, now=now)
        return decision.response

    @abstractmethod
    async def get_remaining(self, ctx: RegionContext, key: str, now: Optional[int] = None) -> int:
        """Return the remaining budget without consuming any of it."""

    @abstractmethod
    async def reset_used_tokens(self, ctx: RegionContext, key: str, now: Optional[int] = None) -> None:
        """Delete the stored state for ``key``."""

    @abstractmethod
    async def reconcile(self, ctx: RegionContext, leader: RegionDecision) -> None:
        """Raise this region's stored usage to the leader's, never lowering it."""
