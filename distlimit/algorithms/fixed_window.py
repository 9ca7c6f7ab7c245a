"""Fixed window algorithm."""

from dataclasses import dataclass
from typing import Optional

from distlimit.algorithms.base import Algorithm
from distlimit.algorithms.models import RatelimitResponse, Reason, RegionDecision
from distlimit.algorithms.redis_lua import FIXED_WINDOW_SCRIPT, RECONCILE_COUNTER_SCRIPT
from distlimit.core.context import RegionContext
from distlimit.core.utils import ms, now_ms
from distlimit.exceptions import InvalidArgumentError


@dataclass(frozen=True)
class FixedWindow(Algorithm):
    """Each request inside a fixed time window increases a counter.

    Once the counter passes the limit, all further requests in that window are
    rejected. A burst at the boundary of two windows can admit up to twice the
    limit in a short span; that is inherent to the algorithm.

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

    def _bucket_key(self, key: str, bucket: int) -> str:
        return f"{key}:{bucket}"

    async def evaluate(
        self,
        ctx: RegionContext,
        key: str,
        rate: int = 1,
        now: Optional[int] = None,
    ) -> RegionDecision:
        now = now_ms() if now is None else now
        bucket = now // self.window
        bucket_key = self._bucket_key(key, bucket)

        used = int(await ctx.run_script(
            "fixed_window",
            FIXED_WINDOW_SCRIPT,
            [bucket_key],
            [self.window, rate],
        ))

        # The increment is unconditional, so the counter may pass the limit
        success = used <= self.tokens
        response = RatelimitResponse(
            success=success,
            limit=self.tokens,
            remaining=max(0, self.tokens - used),
            reset=(bucket + 1) * self.window,
            reason=None if success else Reason.RATELIMIT,
        )
        return RegionDecision(response=response, key=bucket_key, counter=used, used=used)

    async def get_remaining(self, ctx: RegionContext, key: str, now: Optional[int] = None) -> int:
        now = now_ms() if now is None else now
        value = await ctx.redis.get(self._bucket_key(key, now // self.window))
        used = int(value) if value is not None else 0
        return max(0, self.tokens - used)

    async def reset_used_tokens(self, ctx: RegionContext, key: str, now: Optional[int] = None) -> None:
        now = now_ms() if now is None else now
        await ctx.redis.delete(self._bucket_key(key, now // self.window))

    async def reconcile(self, ctx: RegionContext, leader: RegionDecision) -> None:
        await ctx.run_script(
            "reconcile_counter",
            RECONCILE_COUNTER_SCRIPT,
            [leader.key],
            [leader.counter, self.window],
        )


def fixed_window(tokens: int, window: int | str) -> FixedWindow:
    """Create a fixed window algorithm.

    Args:
        tokens: How many requests are allowed per window
        window: Window length, in ms or as a duration string like ``"10 s"``
    """
    return FixedWindow(tokens=tokens, window=ms(window))
