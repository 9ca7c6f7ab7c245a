"""Redis Lua scripts for the rate limit algorithms.

Each script runs the whole read-decide-write sequence of one algorithm, so
Redis executes it as a single atomic unit and concurrent callers can never
interleave between the read and the write.
"""

# KEYS[1]: bucket key
# ARGV: window (ms), incrementBy
# Returns the counter value after the increment.
FIXED_WINDOW_SCRIPT = """
    local key         = KEYS[1]
    local window      = tonumber(ARGV[1])
    local incrementBy = tonumber(ARGV[2])

    local r = redis.call("INCRBY", key, incrementBy)
    if r == incrementBy then
        -- First write to this bucket, the expiry only needs to be set once
        redis.call("PEXPIRE", key, window)
    end

    return r
"""

# KEYS[1]: current bucket key, KEYS[2]: previous bucket key
# ARGV: tokens, now (ms), window (ms), incrementBy
# Returns {allowed, currentCount, weightedPrevious}. A request that would
# overdraw the budget is rejected whole; rejections do not write.
SLIDING_WINDOW_SCRIPT = """
    local currentKey  = KEYS[1]
    local previousKey = KEYS[2]
    local tokens      = tonumber(ARGV[1])
    local now         = tonumber(ARGV[2])
    local window      = tonumber(ARGV[3])
    local incrementBy = tonumber(ARGV[4])

    local current  = tonumber(redis.call("GET", currentKey) or "0")
    local previous = tonumber(redis.call("GET", previousKey) or "0")

    -- Share of the previous window still inside the sliding frame
    local elapsed  = (now % window) / window
    local weighted = math.floor((incrementBy - elapsed) * previous)

    if weighted + current + incrementBy > tokens then
        return {0, current, weighted}
    end

    local newValue = redis.call("INCRBY", currentKey, incrementBy)
    if newValue == incrementBy then
        -- Keep the bucket readable as "previous" during the next window
        redis.call("PEXPIRE", currentKey, window * 2 + 1000)
    end

    return {1, newValue, weighted}
"""

# KEYS[1]: bucket key
# ARGV: maxTokens, interval (ms), refillRate, now (ms), incrementBy
# Returns {allowed, tokens, refilledAt}; tokens is the count left after a
# successful consume, or the count available when rejected.
TOKEN_BUCKET_SCRIPT = """
    local key         = KEYS[1]
    local maxTokens   = tonumber(ARGV[1])
    local interval    = tonumber(ARGV[2])
    local refillRate  = tonumber(ARGV[3])
    local now         = tonumber(ARGV[4])
    local incrementBy = tonumber(ARGV[5])

    local bucket = redis.call("HMGET", key, "refilledAt", "tokens")

    local refilledAt
    local tokens
    if bucket[1] == false then
        refilledAt = now
        tokens = maxTokens
    else
        refilledAt = tonumber(bucket[1])
        tokens = tonumber(bucket[2])
    end

    -- Lazy refill, whole intervals only
    if now >= refilledAt + interval then
        local numRefills = math.floor((now - refilledAt) / interval)
        tokens = math.min(maxTokens, tokens + numRefills * refillRate)
        refilledAt = refilledAt + numRefills * interval
    end

    if tokens == 0 or tokens < incrementBy then
        return {0, tokens, refilledAt}
    end

    local remaining = tokens - incrementBy
    local expireAt = math.ceil((maxTokens - remaining) / refillRate) * interval

    redis.call("HSET", key, "refilledAt", refilledAt, "tokens", remaining)
    redis.call("PEXPIRE", key, expireAt)

    return {1, remaining, refilledAt}
"""

# KEYS[1]: counter key
# ARGV: target count, ttl (ms) used when the key has none
# Raises the counter to target, never lowers it. Returns the stored value.
RECONCILE_COUNTER_SCRIPT = """
    local key    = KEYS[1]
    local target = tonumber(ARGV[1])
    local ttl    = tonumber(ARGV[2])

    local current = tonumber(redis.call("GET", key) or "0")
    if current >= target then
        return current
    end

    local pttl = redis.call("PTTL", key)
    redis.call("SET", key, target)
    if pttl > 0 then
        redis.call("PEXPIRE", key, pttl)
    else
        redis.call("PEXPIRE", key, ttl)
    end

    return target
"""

# KEYS[1]: bucket key
# ARGV: tokens, refilledAt (ms), ttl (ms)
# Lowers the token count to the leader's state unless this region has
# already seen a newer refill. Returns the stored token count.
RECONCILE_TOKEN_BUCKET_SCRIPT = """
    local key        = KEYS[1]
    local tokens     = tonumber(ARGV[1])
    local refilledAt = tonumber(ARGV[2])
    local ttl        = tonumber(ARGV[3])

    local bucket = redis.call("HMGET", key, "refilledAt", "tokens")
    if bucket[1] ~= false then
        local currentRefilledAt = tonumber(bucket[1])
        local currentTokens = tonumber(bucket[2])
        if currentRefilledAt > refilledAt then
            return currentTokens
        end
        if currentRefilledAt == refilledAt and currentTokens <= tokens then
            return currentTokens
        end
    end

    redis.call("HSET", key, "refilledAt", refilledAt, "tokens", tokens)
    redis.call("PEXPIRE", key, ttl)

    return tokens
"""
