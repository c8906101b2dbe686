"""Redis Lua scripts for the sliding window store.

These scripts run server-side so the prune/count/insert sequence cannot
interleave with another process checking the same key.
"""

# KEYS[1]  sorted set of request markers for one client
# ARGV[1]  window start (ms); markers scored at or below it are pruned
# ARGV[2]  now (ms), score of the new marker
# ARGV[3]  limit
# ARGV[4]  idle expiry in seconds
# ARGV[5]  marker member (unique nonce)
#
# Returns {admitted (0|1), surviving count before insertion}
SLIDING_WINDOW_ADMIT_SCRIPT = """
    local key = KEYS[1]
    local window_start = tonumber(ARGV[1])
    local now = tonumber(ARGV[2])
    local limit = tonumber(ARGV[3])
    local ttl = tonumber(ARGV[4])
    local member = ARGV[5]

    redis.call('ZREMRANGEBYSCORE', key, '-inf', window_start)

    local count = redis.call('ZCARD', key)
    if count >= limit then
        -- Denied requests leave the set untouched
        return {0, count}
    end

    redis.call('ZADD', key, now, member)
    redis.call('EXPIRE', key, ttl)

    return {1, count}
"""
