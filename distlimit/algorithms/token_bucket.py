"""Token bucket algorithm."""

import math
from dataclasses import dataclass
from typing import Optional

from distlimit.algorithms.base import Algorithm
from distlimit.algorithms.models import RatelimitResponse, Reason, RegionDecision
from distlimit.algorithms.redis_lua import RECONCILE_TOKEN_BUCKET_SCRIPT, TOKEN_BUCKET_SCRIPT
from distlimit.core.context import RegionContext
from distlimit.core.utils import ms, now_ms
from distlimit.exceptions import InvalidArgumentError


@dataclass(frozen=True)
class TokenBucket(Algorithm):
    """A bucket of ``max_tokens`` tokens refilled by ``refill_rate`` per interval.

    Every request takes tokens from the bucket and is rejected when there are
    none left. Refills are computed lazily when the bucket is read, so no
    background timer is needed. Setting ``max_tokens`` above ``refill_rate``
    allows a higher initial burst.

    Attributes:
        refill_rate: Tokens added per interval
        interval: Refill interval in milliseconds
        max_tokens: Bucket capacity; a new bucket starts full
    """
    refill_rate: int
    interval: int
    max_tokens: int

    def __post_init__(self) -> None:
        if self.refill_rate < 1:
            raise InvalidArgumentError("refill_rate must be at least 1")
        if self.interval < 1:
            raise InvalidArgumentError("interval must be positive")
        if self.max_tokens < 1:
            raise InvalidArgumentError("max_tokens must be at least 1")

    @property
    def max_requests(self) -> int:
        return self.max_tokens

    def ttl_for(self, remaining: int) -> int:
        """Time until a bucket with ``remaining`` tokens is full again."""
        refills = math.ceil((self.max_tokens - remaining) / self.refill_rate)
        return max(1, refills) * self.interval

    async def evaluate(
        self,
        ctx: RegionContext,
        key: str,
        rate: int = 1,
        now: Optional[int] = None,
    ) -> RegionDecision:
        now = now_ms() if now is None else now

        allowed, tokens, refilled_at = await ctx.run_script(
            "token_bucket",
            TOKEN_BUCKET_SCRIPT,
            [key],
            [self.max_tokens, self.interval, self.refill_rate, now, rate],
        )
        allowed, tokens, refilled_at = int(allowed), int(tokens), int(refilled_at)
        success = bool(allowed)

        response = RatelimitResponse(
            success=success,
            limit=self.max_tokens,
            remaining=tokens if success else 0,
            reset=refilled_at + self.interval,
            reason=None if success else Reason.RATELIMIT,
        )
        # A rejection reports the overdraft it would have caused
        used = self.max_tokens - tokens if success else self.max_tokens - tokens + rate
        return RegionDecision(response=response, key=key, counter=tokens, used=used)

    async def get_remaining(self, ctx: RegionContext, key: str, now: Optional[int] = None) -> int:
        now = now_ms() if now is None else now
        refilled_at, tokens = await ctx.redis.hmget(key, "refilledAt", "tokens")
        if refilled_at is None:
            return self.max_tokens

        refilled_at, tokens = int(refilled_at), int(tokens)
        if now >= refilled_at + self.interval:
            refills = (now - refilled_at) // self.interval
            tokens = min(self.max_tokens, tokens + refills * self.refill_rate)
        return tokens

    async def reset_used_tokens(self, ctx: RegionContext, key: str, now: Optional[int] = None) -> None:
        await ctx.redis.delete(key)

    async def reconcile(self, ctx: RegionContext, leader: RegionDecision) -> None:
        await ctx.run_script(
            "reconcile_token_bucket",
            RECONCILE_TOKEN_BUCKET_SCRIPT,
            [leader.key],
            [leader.counter, leader.response.reset - self.interval, self.ttl_for(leader.counter)],
        )


def token_bucket(refill_rate: int, interval: int | str, max_tokens: int) -> TokenBucket:
    """Create a token bucket algorithm.

    Args:
        refill_rate: Tokens refilled per interval. An interval of ``"10 s"``
            with a refill rate of 5 adds 5 tokens once every 10 seconds.
        interval: Refill interval, in ms or as a duration string
        max_tokens: Maximum number of tokens, also the initial fill
    """
    return TokenBucket(refill_rate=refill_rate, interval=ms(interval), max_tokens=max_tokens)
