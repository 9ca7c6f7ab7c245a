"""Best-effort analytics for rate limit decisions.

Every decision increments a counter in an hourly Redis hash. Writes are
fire-and-forget: a failed write is logged and dropped, it never changes the
decision returned to the caller.

Redis key format:
- {prefix}:analytics:{bucket} - fields "{identifier}:success" / "{identifier}:blocked"
- {prefix}:analytics:geo:{bucket} - fields "{country}"
"""

import asyncio
from typing import Any, Dict, Mapping, Optional

from distlimit.core.logging import get_log_context, get_logger
from distlimit.core.utils import now_ms

logger = get_logger(__name__)


def _decode(value: Any) -> str:
    return value.decode() if isinstance(value, bytes) else str(value)


class Analytics:
    """Records per-identifier success/blocked counts in Redis.

    Example:
        analytics = Analytics(redis, prefix="@ratelimit")
        await analytics.record("user-1", success=True)
        usage = await analytics.get_usage(window_ms=3_600_000)
        # {"user-1": {"success": 1, "blocked": 0}}
    """

    BUCKET_MS = 60 * 60 * 1000  # One hash per hour
    RETENTION_MS = 90 * 24 * 60 * 60 * 1000

    def __init__(
        self,
        redis: Any,
        prefix: str = "@ratelimit",
        bucket_ms: int = BUCKET_MS,
        retention_ms: int = RETENTION_MS,
    ) -> None:
        self._redis = redis
        self.prefix = prefix
        self.bucket_ms = bucket_ms
        self.retention_ms = retention_ms

    def _bucket(self, time: int) -> int:
        return time // self.bucket_ms * self.bucket_ms

    def _make_events_key(self, bucket: int) -> str:
        return f"{self.prefix}:analytics:{bucket}"

    def _make_geo_key(self, bucket: int) -> str:
        return f"{self.prefix}:analytics:geo:{bucket}"

    async def record(
        self,
        identifier: str,
        success: bool,
        time: Optional[int] = None,
        geo: Optional[Mapping[str, Any]] = None,
    ) -> None:
        """Record one decision. Never raises."""
        bucket = self._bucket(now_ms() if time is None else time)
        outcome = "success" if success else "blocked"
        try:
            events_key = self._make_events_key(bucket)
            await self._redis.hincrby(events_key, f"{identifier}:{outcome}", 1)
            await self._redis.pexpire(events_key, self.retention_ms)

            country = (geo or {}).get("country")
            if country:
                geo_key = self._make_geo_key(bucket)
                await self._redis.hincrby(geo_key, str(country), 1)
                await self._redis.pexpire(geo_key, self.retention_ms)
        except Exception as e:
            logger.warning(
                f"Failed to record analytics for {identifier}: {e}",
                extra=get_log_context(identifier=identifier, prefix=self.prefix),
            )

    async def _read_buckets(self, make_key, window_ms: int, now: Optional[int]) -> list[dict]:
        now = now_ms() if now is None else now
        first = self._bucket(now - window_ms)
        buckets = range(first, self._bucket(now) + 1, self.bucket_ms)
        return await asyncio.gather(*(self._redis.hgetall(make_key(b)) for b in buckets))

    async def get_usage(
        self, window_ms: int = 24 * 60 * 60 * 1000, now: Optional[int] = None
    ) -> Dict[str, Dict[str, int]]:
        """Aggregate success/blocked counts per identifier over ``window_ms``.

        Buckets are hourly, so the window is rounded out to whole hours.
        """
        usage: Dict[str, Dict[str, int]] = {}
        for fields in await self._read_buckets(self._make_events_key, window_ms, now):
            for raw_field, raw_value in (fields or {}).items():
                identifier, _, outcome = _decode(raw_field).rpartition(":")
                if outcome not in ("success", "blocked"):
                    continue
                counts = usage.setdefault(identifier, {"success": 0, "blocked": 0})
                counts[outcome] += int(raw_value)
        return usage

    async def get_geo_usage(
        self, window_ms: int = 24 * 60 * 60 * 1000, now: Optional[int] = None
    ) -> Dict[str, int]:
        """Aggregate decision counts per country over ``window_ms``."""
        usage: Dict[str, int] = {}
        for fields in await self._read_buckets(self._make_geo_key, window_ms, now):
            for raw_field, raw_value in (fields or {}).items():
                country = _decode(raw_field)
                usage[country] = usage.get(country, 0) + int(raw_value)
        return usage
