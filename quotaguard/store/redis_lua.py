"""Redis Lua scripts for limiter state.

State lives in one hash per key with two fields: ``state`` (JSON) and
``version`` (integer, absent means 0). The read happens outside the script;
the script only commits the write if nobody else has written since.
"""

# Compare-and-set: write the new state only if the stored version still
# equals the version the caller read. An expired or missing key reads as 0.
# Returns {1, new_version} on success, {0, current_version} on conflict.
COMPARE_AND_SET_SCRIPT = """
    local key = KEYS[1]
    local expected = tonumber(ARGV[1])
    local state = ARGV[2]
    local ttl_ms = tonumber(ARGV[3])

    local current = tonumber(redis.call('HGET', key, 'version')) or 0
    if current ~= expected then
        return {0, current}
    end

    local next_version = redis.call('HINCRBY', key, 'version', 1)
    redis.call('HSET', key, 'state', state)
    if ttl_ms > 0 then
        redis.call('PEXPIRE', key, ttl_ms)
    end
    return {1, next_version}
"""
