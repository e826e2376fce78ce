"""
Lua scripts for atomic Redis operations.

Each script runs as one uninterruptible unit inside Redis, so no other client
can observe or interleave with the intermediate state.
"""
from typing import Dict, List, Optional, Tuple

# Create an empty cart hash if none exists, then return the stored hash
CREATE_CART_SCRIPT = """
local cart_key = KEYS[1]
local empty_items = ARGV[1]
local updated_at = ARGV[2]

if redis.call('EXISTS', cart_key) == 0 then
    redis.call('HSET', cart_key,
        'items', empty_items,
        'total_amount', '0.00',
        'version', '0',
        'updated_at', updated_at)
end

return redis.call('HGETALL', cart_key)
"""

# Overwrite the cart only if its version still matches what the caller read.
# A replayed call carrying the token of the write that already landed reports
# success instead of a conflict.
CAS_WRITE_CART_SCRIPT = """
local cart_key = KEYS[1]
local expected_version = tonumber(ARGV[1])
local items = ARGV[2]
local total_amount = ARGV[3]
local updated_at = ARGV[4]
local write_token = ARGV[5]

local current_version = tonumber(redis.call('HGET', cart_key, 'version')) or 0
if redis.call('HGET', cart_key, 'write_token') == write_token then
    return {1, current_version}
end
if current_version ~= expected_version then
    return {0, current_version}
end

local new_version = current_version + 1
redis.call('HSET', cart_key,
    'items', items,
    'total_amount', total_amount,
    'version', tostring(new_version),
    'updated_at', updated_at,
    'write_token', write_token)

return {1, new_version}
"""

# Record an order document and index it under its owner. An id held by a
# different document is refused; the same document again is a replay and
# counts as written.
INSERT_ORDER_SCRIPT = """
local order_key = KEYS[1]
local user_orders_key = KEYS[2]
local order_json = ARGV[1]
local order_id = ARGV[2]

local existing = redis.call('GET', order_key)
if existing then
    if existing == order_json then
        return 1
    end
    return 0
end

redis.call('SET', order_key, order_json)
redis.call('RPUSH', user_orders_key, order_id)
return 1
"""


def _pairs_to_dict(flat: Optional[List[str]]) -> Dict[str, str]:
    """Turn a flat HGETALL reply [k1, v1, k2, v2, ...] into a dict"""
    flat = flat or []
    return {flat[i]: flat[i + 1] for i in range(0, len(flat) - 1, 2)}


class AtomicScripts:
    """Container for Lua scripts"""

    def __init__(self, redis_wrapper):
        """
        Initialize with RedisClient wrapper (not raw redis.Redis client)
        This ensures we use the wrapper's retry logic and error handling
        """
        self.redis_wrapper = redis_wrapper

    def create_cart(self, cart_key: str, empty_items: str, updated_at: str) -> Dict[str, str]:
        """Execute create-if-absent script; returns the stored hash"""
        result = self.redis_wrapper.eval(
            CREATE_CART_SCRIPT,
            1,
            cart_key,
            empty_items,
            updated_at
        )
        return _pairs_to_dict(result)

    def compare_and_set_cart(
        self,
        cart_key: str,
        expected_version: int,
        items: str,
        total_amount: str,
        updated_at: str,
        write_token: str
    ) -> Tuple[bool, int]:
        """
        Execute versioned cart write.

        ``write_token`` must be unique per logical write; resending the same
        token after a lost reply is reported as written, not as a conflict.

        Returns:
            (written, version) where version is the new version on success and
            the version found in Redis on conflict
        """
        result = self.redis_wrapper.eval(
            CAS_WRITE_CART_SCRIPT,
            1,
            cart_key,
            str(expected_version),
            items,
            total_amount,
            updated_at,
            write_token
        )
        written, version = result
        return bool(int(written)), int(version)

    def insert_order(
        self,
        order_key: str,
        user_orders_key: str,
        order_json: str,
        order_id: str,
        deadline: Optional[float] = None
    ) -> bool:
        """Execute order insert script; False when the order id is already taken"""
        result = self.redis_wrapper.eval(
            INSERT_ORDER_SCRIPT,
            2,
            order_key,
            user_orders_key,
            order_json,
            order_id,
            deadline=deadline
        )
        return bool(int(result))
