"""Integration tests that run the Lua scripts on a real Redis server.

The other tests use the mock client from conftest.py, which mirrors the
scripts in Python. These tests catch mistakes in the Lua source itself.
Set RATELIMIT_TEST_REDIS_URL (e.g. redis://localhost:6379/15) to enable.
"""

import os
import uuid
from dataclasses import replace

import pytest
import redis.asyncio as aioredis

from distlimit import RegionContext
from distlimit.algorithms import fixed_window, sliding_window, token_bucket

REDIS_URL = os.getenv("RATELIMIT_TEST_REDIS_URL")
NOW = 1_700_000_000_000

pytestmark = [
    pytest.mark.asyncio,
    pytest.mark.skipif(
        not REDIS_URL,
        reason="Redis integration tests disabled. Set RATELIMIT_TEST_REDIS_URL to enable.",
    ),
]


async def _cleanup(client, prefix: str) -> None:
    keys = [k async for k in client.scan_iter(match=f"{prefix}*")]
    if keys:
        await client.delete(*keys)
    await client.aclose()


@pytest.fixture
def prefix() -> str:
    return f"distlimit-test:{uuid.uuid4().hex}"


@pytest.mark.parametrize("cache_scripts", [True, False])
async def test_fixed_window(prefix, cache_scripts):
    client = aioredis.from_url(REDIS_URL)
    region = RegionContext(redis=client, name="it", cache_scripts=cache_scripts)
    algorithm = fixed_window(3, "10 s")
    try:
        results = [await algorithm.limit(region, prefix, now=NOW) for _ in range(4)]
        assert [r.success for r in results] == [True, True, True, False]
        assert [r.remaining for r in results] == [2, 1, 0, 0]
        assert await algorithm.get_remaining(region, prefix, now=NOW) == 0
        assert 0 < await client.pttl(f"{prefix}:{NOW // 10_000}") <= 10_000
    finally:
        await _cleanup(client, prefix)


async def test_sliding_window_rejects_without_writing(prefix):
    client = aioredis.from_url(REDIS_URL)
    region = RegionContext(redis=client, name="it")
    algorithm = sliding_window(10, "10 s")
    try:
        for _ in range(9):
            assert (await algorithm.limit(region, prefix, now=NOW)).success

        response = await algorithm.limit(region, prefix, rate=5, now=NOW + 100)
        assert response.success is False
        assert await client.get(f"{prefix}:{NOW // 10_000}") == b"9"

        later = NOW + 10_000 + 5_000
        assert await algorithm.get_remaining(region, prefix, now=later) == 6
    finally:
        await _cleanup(client, prefix)


async def test_token_bucket_refills(prefix):
    client = aioredis.from_url(REDIS_URL)
    region = RegionContext(redis=client, name="it")
    algorithm = token_bucket(5, "10 s", 10)
    try:
        for _ in range(10):
            assert (await algorithm.limit(region, prefix, now=NOW)).success
        rejected = await algorithm.limit(region, prefix, now=NOW)
        assert rejected.success is False
        assert rejected.reset == NOW + 10_000

        refilled = await algorithm.limit(region, prefix, now=NOW + 10_000)
        assert refilled.success is True
        assert refilled.remaining == 4
    finally:
        await _cleanup(client, prefix)


@pytest.mark.parametrize("limiter", [
    fixed_window(5, "10 s"),
    sliding_window(5, "10 s"),
    token_bucket(1, "10 s", 5),
], ids=["fixed_window", "sliding_window", "token_bucket"])
async def test_reconcile_raises_lagging_region(prefix, limiter):
    client = aioredis.from_url(REDIS_URL)
    region = RegionContext(redis=client, name="it")
    try:
        for _ in range(3):
            leader = await limiter.evaluate(region, f"{prefix}:leader", now=NOW)
        follower = await limiter.evaluate(region, f"{prefix}:follower", now=NOW)

        # Same server, so point the leader decision at the follower's key
        await limiter.reconcile(region, replace(leader, key=follower.key))

        assert await limiter.get_remaining(region, f"{prefix}:follower", now=NOW) == 2
    finally:
        await _cleanup(client, prefix)
