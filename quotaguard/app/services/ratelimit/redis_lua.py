"""Redis Lua scripts for fixed window rate limiting.

These scripts provide atomic operations to prevent TOCTOU race conditions
when several processes check and consume quota for the same identifier.
"""

# Atomic fixed window check-and-consume.
# A denied call leaves the counter untouched. The window key carries its own
# expiry, set on first write, so the counter disappears when the window ends.
FIXED_WINDOW_SCRIPT = """
    local key = KEYS[1]
    local limit = tonumber(ARGV[1])
    local cost = tonumber(ARGV[2])
    local window_ms = tonumber(ARGV[3])

    local current_used = tonumber(redis.call('GET', key)) or 0

    if current_used + cost > limit then
        return {0, current_used}
    end

    local new_used = redis.call('INCRBY', key, cost)

    if redis.call('PTTL', key) < 0 then
        redis.call('PEXPIRE', key, window_ms)
    end

    return {1, new_used}
"""
