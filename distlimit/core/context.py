"""Store contexts the algorithms run against.

A ``RegionContext`` wraps one ``redis.asyncio`` client and keeps one
registered script object per Lua script, so later calls use EVALSHA instead
of shipping the script body each time. The client reloads a script itself
when the server has lost it (restart, SCRIPT FLUSH, failover).
"""

from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from distlimit.core.cache import EphemeralCache
from distlimit.core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class RegionContext:
    """One Redis instance plus its registered scripts.

    Attributes:
        redis: A ``redis.asyncio`` client
        name: Label used in logs, e.g. ``"eu-west"``
        cache_scripts: Use EVALSHA through registered scripts instead of EVAL
        scripts: script name -> ``AsyncScript`` from ``register_script``
    """
    redis: Any
    name: str = ""
    cache_scripts: bool = True
    scripts: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_url(cls, redis_url: str, name: str = "", cache_scripts: bool = True) -> "RegionContext":
        """Create a context with a new Redis client for ``redis_url``."""
        import redis.asyncio as aioredis
        return cls(
            redis=aioredis.from_url(redis_url),
            name=name or redis_url,
            cache_scripts=cache_scripts,
        )

    async def run_script(
        self,
        name: str,
        script: str,
        keys: Sequence[str],
        args: Sequence[Any],
    ) -> Any:
        """Execute a Lua script atomically on this region.

        Args:
            name: Stable script name the registered script is cached under
            script: Lua source
            keys: KEYS passed to the script
            args: ARGV passed to the script

        Returns:
            The raw script result as returned by the client.
        """
        if not self.cache_scripts:
            return await self.redis.eval(script, len(keys), *keys, *args)

        registered = self.scripts.get(name)
        if registered is None:
            registered = self.redis.register_script(script)
            self.scripts[name] = registered
        return await registered(keys=list(keys), args=list(args))

    async def close(self) -> None:
        """Close the underlying Redis connection."""
        try:
            await self.redis.aclose()
        except Exception as e:
            logger.warning(f"Error closing Redis connection for region {self.name!r}: {e}")


@dataclass
class MultiRegionContext:
    """Ordered list of regions, optionally with the ephemeral cache to use."""
    regions: list[RegionContext]
    cache: Optional[EphemeralCache] = None
