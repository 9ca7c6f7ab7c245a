"""Shared fixtures: a mock Redis client that emulates the Lua scripts.

The mock answers EVAL/EVALSHA with Python mirrors of the scripts in
``distlimit.algorithms.redis_lua``, so the Lua source itself is not executed
here. ``test_redis_integration.py`` runs the real scripts when a Redis server
is reachable through ``RATELIMIT_TEST_REDIS_URL``.
"""

import asyncio
import hashlib
import math
import time
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.commands.core import AsyncScript
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import NoScriptError

from distlimit.algorithms.redis_lua import (
    FIXED_WINDOW_SCRIPT,
    RECONCILE_COUNTER_SCRIPT,
    RECONCILE_TOKEN_BUCKET_SCRIPT,
    SLIDING_WINDOW_SCRIPT,
    TOKEN_BUCKET_SCRIPT,
)


def _now_ms() -> float:
    return time.time() * 1000


def make_mock_redis(fail: bool = False, delay: float = 0.0) -> MagicMock:
    """Create a mock Redis client for testing.

    Args:
        fail: eval/evalsha raise ConnectionError
        delay: seconds every script call sleeps before running
    """
    redis = MagicMock()
    redis.data = {}      # key -> str (string values) or dict (hashes)
    redis.ttls = {}      # key -> absolute expiry in ms
    redis.scripts = {}   # sha -> script
    redis.executions = 0  # scripts actually run, whatever the entry point

    def alive(key):
        if key in redis.ttls and redis.ttls[key] <= _now_ms():
            redis.data.pop(key, None)
            redis.ttls.pop(key, None)
        return key in redis.data

    def raw_get(key):
        return redis.data.get(key) if alive(key) else None

    def incrby(key, amount):
        value = int(raw_get(key) or 0) + amount
        redis.data[key] = str(value)
        return value

    def pexpire(key, ttl):
        if alive(key):
            redis.ttls[key] = _now_ms() + int(ttl)

    def pttl(key):
        if not alive(key):
            return -2
        if key not in redis.ttls:
            return -1
        return int(redis.ttls[key] - _now_ms())

    def hmget(key, *fields):
        bucket = raw_get(key) or {}
        return [bucket.get(f) for f in fields]

    def hset(key, mapping):
        bucket = raw_get(key) or {}
        bucket.update({k: str(v) for k, v in mapping.items()})
        redis.data[key] = bucket

    # Python mirrors of the Lua scripts -----------------------------------

    def fixed_window(keys, args):
        window, increment = int(args[0]), int(args[1])
        value = incrby(keys[0], increment)
        if value == increment:
            pexpire(keys[0], window)
        return value

    def sliding_window(keys, args):
        current_key, previous_key = keys
        tokens, now, window, increment = (int(a) for a in args)
        current = int(raw_get(current_key) or 0)
        previous = int(raw_get(previous_key) or 0)
        elapsed = (now % window) / window
        weighted = math.floor((increment - elapsed) * previous)
        if weighted + current + increment > tokens:
            return [0, current, weighted]
        new_value = incrby(current_key, increment)
        if new_value == increment:
            pexpire(current_key, window * 2 + 1000)
        return [1, new_value, weighted]

    def token_bucket(keys, args):
        key = keys[0]
        max_tokens, interval, refill_rate, now, increment = (int(a) for a in args)
        refilled_at, tokens = hmget(key, "refilledAt", "tokens")
        if refilled_at is None:
            refilled_at, tokens = now, max_tokens
        else:
            refilled_at, tokens = int(refilled_at), int(tokens)
        if now >= refilled_at + interval:
            refills = (now - refilled_at) // interval
            tokens = min(max_tokens, tokens + refills * refill_rate)
            refilled_at = refilled_at + refills * interval
        if tokens == 0 or tokens < increment:
            return [0, tokens, refilled_at]
        remaining = tokens - increment
        hset(key, {"refilledAt": refilled_at, "tokens": remaining})
        pexpire(key, math.ceil((max_tokens - remaining) / refill_rate) * interval)
        return [1, remaining, refilled_at]

    def reconcile_counter(keys, args):
        key = keys[0]
        target, ttl = int(args[0]), int(args[1])
        current = int(raw_get(key) or 0)
        if current >= target:
            return current
        remaining_ttl = pttl(key)
        redis.data[key] = str(target)
        redis.ttls.pop(key, None)
        pexpire(key, remaining_ttl if remaining_ttl > 0 else ttl)
        return target

    def reconcile_token_bucket(keys, args):
        key = keys[0]
        tokens, refilled_at, ttl = (int(a) for a in args)
        current_refilled_at, current_tokens = hmget(key, "refilledAt", "tokens")
        if current_refilled_at is not None:
            if int(current_refilled_at) > refilled_at:
                return int(current_tokens)
            if int(current_refilled_at) == refilled_at and int(current_tokens) <= tokens:
                return int(current_tokens)
        hset(key, {"refilledAt": refilled_at, "tokens": tokens})
        pexpire(key, ttl)
        return tokens

    handlers = {
        FIXED_WINDOW_SCRIPT: fixed_window,
        SLIDING_WINDOW_SCRIPT: sliding_window,
        TOKEN_BUCKET_SCRIPT: token_bucket,
        RECONCILE_COUNTER_SCRIPT: reconcile_counter,
        RECONCILE_TOKEN_BUCKET_SCRIPT: reconcile_token_bucket,
    }

    async def run(script, num_keys, args):
        redis.executions += 1
        if delay:
            await asyncio.sleep(delay)
        if fail:
            raise RedisConnectionError("Connection refused")
        keys, argv = list(args[:num_keys]), list(args[num_keys:])
        return handlers[script](keys, argv)

    async def mock_eval(script, num_keys, *args):
        return await run(script, num_keys, args)

    async def mock_evalsha(sha, num_keys, *args):
        if sha not in redis.scripts:
            raise NoScriptError("NOSCRIPT No matching script. Please use EVAL.")
        return await run(redis.scripts[sha], num_keys, args)

    async def mock_script_load(script):
        sha = hashlib.sha1(script.encode()).hexdigest()
        redis.scripts[sha] = script
        return sha

    # Plain commands -------------------------------------------------------

    async def mock_get(key):
        value = raw_get(key)
        return value.encode() if isinstance(value, str) else None

    async def mock_mget(*keys):
        return [await mock_get(k) for k in keys]

    async def mock_hmget(key, *fields):
        return [v.encode() if v is not None else None for v in hmget(key, *fields)]

    async def mock_hincrby(key, field, amount):
        bucket = raw_get(key) or {}
        bucket[field] = str(int(bucket.get(field, 0)) + amount)
        redis.data[key] = bucket
        return int(bucket[field])

    async def mock_hgetall(key):
        bucket = raw_get(key) or {}
        return {k.encode(): v.encode() for k, v in bucket.items()}

    async def mock_pexpire(key, ttl):
        pexpire(key, ttl)
        return 1

    async def mock_delete(*keys):
        removed = 0
        for key in keys:
            if alive(key):
                removed += 1
            redis.data.pop(key, None)
            redis.ttls.pop(key, None)
        return removed

    redis.eval = AsyncMock(side_effect=mock_eval)
    redis.evalsha = AsyncMock(side_effect=mock_evalsha)
    redis.script_load = AsyncMock(side_effect=mock_script_load)
    redis.get = AsyncMock(side_effect=mock_get)
    redis.mget = AsyncMock(side_effect=mock_mget)
    redis.hmget = AsyncMock(side_effect=mock_hmget)
    redis.hincrby = AsyncMock(side_effect=mock_hincrby)
    redis.hgetall = AsyncMock(side_effect=mock_hgetall)
    redis.pexpire = AsyncMock(side_effect=mock_pexpire)
    redis.delete = AsyncMock(side_effect=mock_delete)
    redis.aclose = AsyncMock()
    redis.pttl = pttl

    # register_script returns the real redis-py AsyncScript, which caches the
    # SHA and reloads the script on NOSCRIPT through evalsha/script_load above
    encoder = MagicMock()
    encoder.encode.side_effect = lambda v: v.encode() if isinstance(v, str) else v
    redis.get_encoder.return_value = encoder
    redis.connection_pool.get_encoder.return_value = encoder
    redis.register_script = MagicMock(side_effect=lambda script: AsyncScript(redis, script))

    return redis


@pytest.fixture
def mock_redis():
    """Create a mock Redis client for testing."""
    return make_mock_redis()


@pytest.fixture
def redis_factory():
    """Factory for additional mock Redis clients (regions, failing stores)."""
    return make_mock_redis


@pytest.fixture
def region(mock_redis):
    """RegionContext over the mock Redis client."""
    from distlimit.core.context import RegionContext
    return RegionContext(redis=mock_redis, name="test")


@pytest.fixture
def store_calls():
    """Count script executions issued against a mock client."""
    def _count(redis: MagicMock) -> int:
        return redis.executions
    return _count
