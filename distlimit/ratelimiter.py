"""Rate limiter orchestrator.

Wires an algorithm to one or more Redis regions and adds the ephemeral
cache fast path, the fail-open timeout, analytics and ``block_until_ready``.
"""

import asyncio
import time
from typing import Any, Mapping, Optional, Sequence, Union

from distlimit.algorithms.base import Algorithm
from distlimit.algorithms.models import RatelimitResponse, Reason
from distlimit.core.cache import EphemeralCache
from distlimit.core.config import Settings, settings
from distlimit.core.context import MultiRegionContext, RegionContext
from distlimit.core.logging import get_log_context, get_logger
from distlimit.core.utils import now_ms
from distlimit.exceptions import InternalInvariantError, InvalidArgumentError
from distlimit.services.analytics import Analytics
from distlimit.services.multi_region import MultiRegionCoordinator

logger = get_logger(__name__)

RedisTarget = Union[Any, RegionContext, MultiRegionContext, Sequence[Any]]


def _completed() -> asyncio.Future:
    future = asyncio.get_running_loop().create_future()
    future.set_result(None)
    return future


class Ratelimiter:
    """Decides whether an identifier may perform an action right now.

    Pass one Redis client (or ``RegionContext``) for a single region, or a
    list of clients (or a ``MultiRegionContext``) for multi-region mode.

    Example:
        >>> ratelimit = Ratelimiter(
        ...     limiter=sliding_window(10, "10 s"),
        ...     redis=redis.asyncio.from_url("redis://localhost:6379/0"),
        ... )
        >>> response = await ratelimit.limit("user-1")
        >>> if not response.success:
        ...     return "Too many requests"
    """

    DEFAULT_PREFIX = "@ratelimit"

    def __init__(
        self,
        limiter: Algorithm,
        redis: RedisTarget,
        prefix: str = DEFAULT_PREFIX,
        ephemeral_cache: Union[EphemeralCache, bool, None] = None,
        analytics: Union[Analytics, bool] = True,
        timeout: Optional[int] = None,
        cache_scripts: bool = True,
        region_timeout: Optional[int] = None,
    ) -> None:
        """Initialize the rate limiter.

        Args:
            limiter: Algorithm instance, e.g. ``fixed_window(10, "10 s")``
            redis: Client, RegionContext, list of clients or MultiRegionContext
            prefix: Prefix for every Redis key
            ephemeral_cache: None creates a cache owned by this instance,
                False disables the fast path, or pass a cache to share one
            analytics: Record decisions in Redis (True/False) or a custom
                Analytics instance
            timeout: Fail open after this many milliseconds (None disables)
            cache_scripts: Use EVALSHA for contexts built from bare clients
            region_timeout: Multi-region only. Milliseconds a region may take
                before it is left out of the decision. Defaults to half of
                ``timeout``, which leaves the answering regions time to decide.
        """
        if timeout is not None and timeout <= 0:
            raise InvalidArgumentError("timeout must be positive")
        if region_timeout is None and timeout is not None:
            region_timeout = max(1, timeout // 2)

        self.limiter = limiter
        self.prefix = prefix
        self.timeout = timeout
        self.region_timeout = region_timeout
        self.ctx = self._build_context(redis, cache_scripts)

        if ephemeral_cache is False:
            self.cache: Optional[EphemeralCache] = None
        elif isinstance(ephemeral_cache, EphemeralCache):
            self.cache = ephemeral_cache
        elif isinstance(self.ctx, MultiRegionContext) and self.ctx.cache is not None:
            self.cache = self.ctx.cache
        else:
            self.cache = EphemeralCache()

        self._coordinator: Optional[MultiRegionCoordinator] = None
        if isinstance(self.ctx, MultiRegionContext):
            self._coordinator = MultiRegionCoordinator(
                limiter, self.ctx, region_timeout=region_timeout
            )

        if isinstance(analytics, Analytics):
            self.analytics: Optional[Analytics] = analytics
        elif analytics:
            self.analytics = Analytics(self._primary_region.redis, prefix=prefix)
        else:
            self.analytics = None

        # Strong references to fire-and-forget tasks until they finish
        self._background: set[asyncio.Task] = set()

    @staticmethod
    def _build_context(
        redis: RedisTarget, cache_scripts: bool
    ) -> Union[RegionContext, MultiRegionContext]:
        if isinstance(redis, (RegionContext, MultiRegionContext)):
            return redis
        if isinstance(redis, (list, tuple)):
            regions = [
                r if isinstance(r, RegionContext)
                else RegionContext(redis=r, name=f"region-{i}", cache_scripts=cache_scripts)
                for i, r in enumerate(redis)
            ]
            return MultiRegionContext(regions=regions)
        return RegionContext(redis=redis, name="default", cache_scripts=cache_scripts)

    @classmethod
    def from_settings(cls, limiter: Algorithm, config: Optional[Settings] = None) -> "Ratelimiter":
        """Create a rate limiter with Redis clients built from settings."""
        config = config or settings
        redis: RedisTarget
        if config.region_urls:
            redis = MultiRegionContext(regions=[
                RegionContext.from_url(url, cache_scripts=config.cache_scripts)
                for url in config.region_urls
            ])
            primary = redis.regions[0].redis
        else:
            redis = RegionContext.from_url(
                config.redis_url, name="default", cache_scripts=config.cache_scripts
            )
            primary = redis.redis

        analytics: Union[Analytics, bool] = False
        if config.analytics_enabled:
            analytics = Analytics(
                primary,
                prefix=config.prefix,
                retention_ms=config.analytics_retention_days * 24 * 60 * 60 * 1000,
            )

        return cls(
            limiter=limiter,
            redis=redis,
            prefix=config.prefix,
            ephemeral_cache=None if config.ephemeral_cache_enabled else False,
            analytics=analytics,
            timeout=config.timeout_ms,
            region_timeout=config.region_timeout_ms,
        )

    @property
    def _primary_region(self) -> RegionContext:
        if isinstance(self.ctx, MultiRegionContext):
            return self.ctx.regions[0]
        return self.ctx

    def _make_key(self, identifier: str) -> str:
        return f"{self.prefix}:{identifier}"

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    def _discard_late(self, task: asyncio.Task, identifier: str) -> None:
        """Let a timed-out store call finish on its own and drop its result."""
        def _on_done(t: asyncio.Task) -> None:
            self._background.discard(t)
            if not t.cancelled() and t.exception() is not None:
                logger.debug(
                    f"Dropped error from timed out decision: {t.exception()!r}",
                    extra=get_log_context(identifier=identifier),
                )

        self._background.add(task)
        task.add_done_callback(_on_done)

    async def _decide(self, key: str, rate: int) -> RatelimitResponse:
        if self._coordinator is not None:
            return await self._coordinator.limit(key, rate=rate)
        return await self.limiter.limit(self.ctx, key, rate=rate)

    async def limit(
        self,
        identifier: str,
        rate: int = 1,
        geo: Optional[Mapping[str, Any]] = None,
    ) -> RatelimitResponse:
        """Determine if a request should pass or be rejected.

        Args:
            identifier: User ID, API key, IP address or any constant string
                to limit across all callers
            rate: Units this request consumes
            geo: Optional request metadata (country, city, region, ip) for
                analytics

        Returns:
            RatelimitResponse. Store errors propagate to the caller.
        """
        if rate < 1:
            raise InvalidArgumentError("rate must be at least 1")
        key = self._make_key(identifier)

        if self.cache is not None:
            status = self.cache.is_blocked(key)
            if status.blocked:
                logger.debug(
                    f"Blocked {identifier} from ephemeral cache until {status.reset}",
                    extra=get_log_context(identifier=identifier, reason=Reason.BLACKLIST.value),
                )
                return RatelimitResponse(
                    success=False,
                    limit=self.limiter.max_requests,
                    remaining=0,
                    reset=status.reset,
                    reason=Reason.BLACKLIST,
                    pending=_completed(),
                )

        started = time.perf_counter()
        if self.timeout is None:
            response = await self._decide(key, rate)
        else:
            task = asyncio.create_task(self._decide(key, rate))
            done, _ = await asyncio.wait({task}, timeout=self.timeout / 1000)
            if task not in done:
                self._discard_late(task, identifier)
                logger.warning(
                    f"Rate limit decision for {identifier} timed out after {self.timeout}ms, allowing request",
                    extra=get_log_context(identifier=identifier, reason=Reason.TIMEOUT.value),
                )
                return RatelimitResponse(
                    success=True,
                    limit=0,
                    remaining=0,
                    reset=0,
                    reason=Reason.TIMEOUT,
                    pending=_completed(),
                )
            response = task.result()

        logger.debug(
            f"Rate limit decision for {identifier}: success={response.success} remaining={response.remaining}",
            extra=get_log_context(
                identifier=identifier,
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
            ),
        )

        if not response.success and self.cache is not None:
            self.cache.block_until(key, response.reset)

        background = [response.pending] if response.pending is not None else []
        if self.analytics is not None:
            background.append(
                self._spawn(self.analytics.record(identifier, response.success, geo=geo))
            )
        response.pending = (
            asyncio.gather(*background, return_exceptions=True) if background else _completed()
        )
        return response

    async def block_until_ready(
        self,
        identifier: str,
        timeout: int,
        rate: int = 1,
    ) -> RatelimitResponse:
        """Wait until the request may pass or the timeout is reached.

        Args:
            identifier: Same as for ``limit``
            timeout: Maximum time to wait in milliseconds
            rate: Units this request consumes

        Returns:
            The first successful response, or the last rejection once the
            deadline has passed.

        Raises:
            InvalidArgumentError: If timeout is not positive
            InternalInvariantError: If a rejection carries no reset timestamp
        """
        if timeout <= 0:
            raise InvalidArgumentError("timeout must be positive")

        deadline = now_ms() + timeout
        while True:
            response = await self.limit(identifier, rate=rate)
            if response.success:
                return response
            if response.reset == 0:
                raise InternalInvariantError(
                    f"Rejected response for {identifier} has no reset timestamp"
                )

            wait = min(response.reset, deadline) - now_ms()
            await asyncio.sleep(max(0, wait) / 1000)

            if now_ms() > deadline:
                return response

    async def get_remaining(self, identifier: str) -> int:
        """Remaining budget for the identifier, without consuming any."""
        key = self._make_key(identifier)
        if self._coordinator is not None:
            return await self._coordinator.get_remaining(key)
        return await self.limiter.get_remaining(self.ctx, key)

    async def reset_used_tokens(self, identifier: str) -> None:
        """Reset the identifier's state in Redis and in the ephemeral cache."""
        key = self._make_key(identifier)
        if self.cache is not None:
            self.cache.pop(key)
        if self._coordinator is not None:
            await self._coordinator.reset_used_tokens(key)
        else:
            await self.limiter.reset_used_tokens(self.ctx, key)

    async def close(self) -> None:
        """Close the Redis connections of all regions."""
        if isinstance(self.ctx, MultiRegionContext):
            regions = self.ctx.regions
        else:
            regions = [self.ctx]
        for region in regions:
            await region.close()
