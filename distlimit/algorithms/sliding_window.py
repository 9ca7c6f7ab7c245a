"""Sliding window algorithm."""

import math
from dataclasses import dataclass
from typing import Optional

from distlimit.algorithms.base import Algorithm
from distlimit.algorithms.models import RatelimitResponse, Reason, RegionDecision
from distlimit.algorithms.redis_lua import RECONCILE_COUNTER_SCRIPT, SLIDING_WINDOW_SCRIPT
from distlimit.core.context import RegionContext
from distlimit.core.utils import ms, now_ms
from distlimit.exceptions import InvalidArgumentError


@dataclass(frozen=True)
class SlidingWindow(Algorithm):
    """Weighted combination of the current and the previous fixed window.

    The previous window counts in proportion to how much of it still lies
    inside the sliding frame ending now. Storage stays at two integers per
    identifier and bursts at the window boundary are smoothed out.

    Rejected requests are not counted, so hammering a blocked identifier
    does not push its next window further out.

    Attributes:
        tokens: Requests allowed per window
        window: Window length in milliseconds
    """
    tokens: int
    window: int

    def __post_init__(self) -> None:
        if self.tokens < 1:
            raise InvalidArgumentError("tokens must be at least 1")
        if self.window < 1:
            raise InvalidArgumentError("window must be positive")

    @property
    def max_requests(self) -> int:
        return self.tokens

    @property
    def ttl(self) -> int:
        """Bucket lifetime: long enough to be read as the previous bucket."""
        return self.window * 2 + 1000

    def _keys(self, key: str, now: int) -> tuple[str, str, int]:
        bucket = now // self.window
        return f"{key}:{bucket}", f"{key}:{bucket - 1}", bucket

    async def evaluate(
        self,
        ctx: RegionContext,
        key: str,
        rate: int = 1,
        now: Optional[int] = None,
    ) -> RegionDecision:
        now = now_ms() if now is None else now
        current_key, previous_key, bucket = self._keys(key, now)

        allowed, current, weighted = await ctx.run_script(
            "sliding_window",
            SLIDING_WINDOW_SCRIPT,
            [current_key, previous_key],
            [self.tokens, now, self.window, rate],
        )
        current, weighted = int(current), int(weighted)
        reset = (bucket + 1) * self.window

        if not int(allowed):
            response = RatelimitResponse(
                success=False,
                limit=self.tokens,
                remaining=0,
                reset=reset,
                reason=Reason.RATELIMIT,
            )
            return RegionDecision(
                response=response,
                key=current_key,
                counter=current,
                used=current + weighted + rate,
            )

        used = current + weighted
        response = RatelimitResponse(
            success=True,
            limit=self.tokens,
            remaining=max(0, self.tokens - used),
            reset=reset,
        )
        return RegionDecision(response=response, key=current_key, counter=current, used=used)

    async def get_remaining(self, ctx: RegionContext, key: str, now: Optional[int] = None) -> int:
        now = now_ms() if now is None else now
        current_key, previous_key, _ = self._keys(key, now)
        current, previous = await ctx.redis.mget(current_key, previous_key)
        current = int(current) if current is not None else 0
        previous = int(previous) if previous is not None else 0

        elapsed = (now % self.window) / self.window
        weighted = math.floor((1 - elapsed) * previous)
        return max(0, self.tokens - (current + weighted))

    async def reset_used_tokens(self, ctx: RegionContext, key: str, now: Optional[int] = None) -> None:
        now = now_ms() if now is None else now
        current_key, previous_key, _ = self._keys(key, now)
        await ctx.redis.delete(current_key, previous_key)

    async def reconcile(self, ctx: RegionContext, leader: RegionDecision) -> None:
        await ctx.run_script(
            "reconcile_counter",
            RECONCILE_COUNTER_SCRIPT,
            [leader.key],
            [leader.counter, self.ttl],
        )


def sliding_window(tokens: int, window: int | str) -> SlidingWindow:
    """Create a sliding window algorithm.

    Args:
        tokens: How many requests are allowed per window
        window: Window length, in ms or as a duration string like ``"10 s"``
    """
    return SlidingWindow(tokens=tokens, window=ms(window))
