"""Redis Lua scripts for distributed rate limiting.

Each script runs atomically on the Redis server, so concurrent requests
from several app instances cannot read the same state and both pass.
Floats are returned as strings because Redis truncates Lua numbers to
integers in replies.
"""

# KEYS[1] = bucket hash (tokens, last_refill)
# ARGV: max_tokens, refill_rate, refill_interval_ms, now_ms, ttl_seconds
# Returns {allowed, tokens, last_refill}
TOKEN_BUCKET_SCRIPT = """
    local key = KEYS[1]
    local max_tokens = math.max(0, tonumber(ARGV[1]))
    local refill_rate = tonumber(ARGV[2])
    local refill_interval = tonumber(ARGV[3])
    local now = tonumber(ARGV[4])
    local ttl = tonumber(ARGV[5])

    local bucket = redis.call('HMGET', key, 'tokens', 'last_refill')
    local tokens = tonumber(bucket[1])
    local last_refill = tonumber(bucket[2])
    if tokens == nil or last_refill == nil then
        tokens = max_tokens
        last_refill = now
    end

    -- Whole intervals only; a partial interval keeps counting
    local elapsed = now - last_refill
    if refill_interval > 0 and refill_rate > 0 and elapsed > 0 then
        local intervals = math.floor(elapsed / refill_interval)
        if intervals > 0 then
            tokens = math.min(max_tokens, tokens + intervals * refill_rate)
            last_refill = now
        end
    end

    local allowed = 0
    if tokens >= 1 then
        tokens = tokens - 1
        allowed = 1
    end

    redis.call('HSET', key, 'tokens', tostring(tokens), 'last_refill', tostring(last_refill))
    redis.call('EXPIRE', key, ttl)
    return {allowed, tostring(tokens), tostring(last_refill)}
"""

# KEYS[1] = sorted set of request timestamps
# ARGV: max_requests, window_ms, now_ms, member
# Returns {allowed, count, oldest}
SLIDING_WINDOW_SCRIPT = """
    local key = KEYS[1]
    local max_requests = tonumber(ARGV[1])
    local window = tonumber(ARGV[2])
    local now = tonumber(ARGV[3])
    local member = ARGV[4]

    redis.call('ZREMRANGEBYSCORE', key, '-inf', now - window)
    local count = redis.call('ZCARD', key)

    local allowed = 0
    if count < max_requests then
        redis.call('ZADD', key, now, member)
        count = count + 1
        allowed = 1
    end
    redis.call('PEXPIRE', key, window)

    local oldest = now
    local first = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
    if first[2] then
        oldest = tonumber(first[2])
    end
    return {allowed, count, tostring(oldest)}
"""

# KEYS[1] = bucket hash
# ARGV: max_tokens
# Returns new token count, or nil when the bucket is gone
REFUND_TOKEN_SCRIPT = """
    local key = KEYS[1]
    local max_tokens = math.max(0, tonumber(ARGV[1]))
    local tokens = tonumber(redis.call('HGET', key, 'tokens'))
    if tokens == nil then
        return nil
    end
    tokens = math.min(max_tokens, tokens + 1)
    redis.call('HSET', key, 'tokens', tostring(tokens))
    return tostring(tokens)
"""
