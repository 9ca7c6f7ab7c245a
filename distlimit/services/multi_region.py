"""Multi-region rate limiting over independent Redis instances.

Every region keeps its own counters. A request is evaluated in all regions in
parallel and decided on the highest usage any region observed, which is the
best available estimate of global usage. Regions that saw less are raised to
the leader's count in the background, so all regions converge over time.

This trades accuracy for availability: a region's count can lag the global
count by whatever the other regions accepted concurrently. A region that
errors or does not answer within ``region_timeout`` is left out of the
decision; only when no region answers does the call fail.
"""

import asyncio
from typing import Optional

from distlimit.algorithms.base import Algorithm
from distlimit.algorithms.models import RatelimitResponse, Reason, RegionDecision
from distlimit.core.context import MultiRegionContext, RegionContext
from distlimit.core.logging import get_log_context, get_logger
from distlimit.core.utils import now_ms
from distlimit.exceptions import AllRegionsFailedError, InvalidArgumentError

logger = get_logger(__name__)


class MultiRegionCoordinator:
    """Fans a decision out to N regions, aggregates and reconciles.

    Provides:
    - Parallel evaluation in all regions
    - Max-usage aggregation into one global decision
    - Background reconciliation of lagging regions (exposed via ``pending``)
    - Tolerance of partial region failure; all-regions failure is an error
    """

    def __init__(
        self,
        algorithm: Algorithm,
        context: MultiRegionContext,
        region_timeout: Optional[int] = None,
    ) -> None:
        """Initialize the coordinator.

        Args:
            algorithm: Algorithm evaluated in every region
            context: Regions to fan out to
            region_timeout: Milliseconds a region may take before it is
                excluded from the decision (None waits indefinitely)
        """
        if not context.regions:
            raise InvalidArgumentError("MultiRegionContext needs at least one region")
        if region_timeout is not None and region_timeout <= 0:
            raise InvalidArgumentError("region_timeout must be positive")
        self.algorithm = algorithm
        self.context = context
        self.region_timeout = region_timeout

    @property
    def regions(self) -> list[RegionContext]:
        return self.context.regions

    async def _bounded(self, coro):
        """Await one region call, giving up after ``region_timeout``."""
        if self.region_timeout is None:
            return await coro
        return await asyncio.wait_for(coro, self.region_timeout / 1000)

    def _collect(self, key: str, results: list, operation: str) -> tuple[list, list]:
        """Split gather results into (region, value) pairs and errors.

        Regions that errored or ran past ``region_timeout`` are logged and
        left out.
        """
        successes = []
        errors: list[BaseException] = []
        for region, result in zip(self.regions, results):
            if isinstance(result, asyncio.TimeoutError):
                errors.append(result)
                logger.warning(
                    f"Region {region.name!r} timed out after {self.region_timeout}ms during {operation}",
                    extra=get_log_context(identifier=key, region=region.name),
                )
            elif isinstance(result, BaseException):
                errors.append(result)
                logger.warning(
                    f"Region {region.name!r} failed during {operation}: {result!r}",
                    extra=get_log_context(identifier=key, region=region.name),
                )
            else:
                successes.append((region, result))
        if not successes:
            logger.error(
                f"All {len(errors)} regions failed during {operation}",
                extra=get_log_context(identifier=key),
            )
            raise AllRegionsFailedError(errors)
        return successes, errors

    async def limit(self, key: str, rate: int = 1, now: Optional[int] = None) -> RatelimitResponse:
        """Decide across all regions.

        The returned response's ``pending`` is the reconciliation task, or
        None when every region already agrees.
        """
        now = now_ms() if now is None else now
        results = await asyncio.gather(
            *(
                self._bounded(self.algorithm.evaluate(region, key, rate=rate, now=now))
                for region in self.regions
            ),
            return_exceptions=True,
        )
        decisions, _ = self._collect(key, results, "limit")

        leader: RegionDecision = max((d for _, d in decisions), key=lambda d: d.used)
        limit = self.algorithm.max_requests
        success = leader.used <= limit

        response = RatelimitResponse(
            success=success,
            limit=limit,
            remaining=max(0, limit - leader.used),
            reset=max(d.response.reset for _, d in decisions),
            reason=None if success else Reason.RATELIMIT,
        )

        lagging = [region for region, d in decisions if d.used < leader.used]
        if lagging:
            response.pending = asyncio.create_task(self._reconcile(key, leader, lagging))
        return response

    async def _reconcile(self, key: str, leader: RegionDecision, regions: list[RegionContext]) -> int:
        """Raise lagging regions to the leader's state. Never raises.

        Returns:
            Number of regions reconciled successfully
        """
        results = await asyncio.gather(
            *(self._bounded(self.algorithm.reconcile(region, leader)) for region in regions),
            return_exceptions=True,
        )
        synced = 0
        for region, result in zip(regions, results):
            if isinstance(result, BaseException):
                logger.warning(
                    f"Failed to reconcile region {region.name!r}: {result!r}",
                    extra=get_log_context(identifier=key, region=region.name),
                )
            else:
                synced += 1
        if synced:
            logger.debug(f"Reconciled {synced} regions for {key} to usage {leader.used}")
        return synced

    async def get_remaining(self, key: str, now: Optional[int] = None) -> int:
        """Smallest remaining budget reported by any reachable region."""
        now = now_ms() if now is None else now
        results = await asyncio.gather(
            *(
                self._bounded(self.algorithm.get_remaining(region, key, now=now))
                for region in self.regions
            ),
            return_exceptions=True,
        )
        remaining, _ = self._collect(key, results, "get_remaining")
        return min(value for _, value in remaining)

    async def reset_used_tokens(self, key: str, now: Optional[int] = None) -> None:
        """Reset the identifier in every region."""
        now = now_ms() if now is None else now
        results = await asyncio.gather(
            *(
                self._bounded(self.algorithm.reset_used_tokens(region, key, now=now))
                for region in self.regions
            ),
            return_exceptions=True,
        )
        self._collect(key, results, "reset_used_tokens")
