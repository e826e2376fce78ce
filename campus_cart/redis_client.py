"""
Redis client wrapper with connection pooling, retry logic, and error handling.
"""
import logging
import random
import time
from concurrent import futures
from typing import Any, Callable, List, Optional

import redis
from redis.exceptions import (
    AuthenticationError,
    ConnectionError,
    RedisError,
    TimeoutError,
)

from campus_cart.config import Config
from campus_cart.exceptions import StorageUnavailable

logger = logging.getLogger(__name__)

# Runs deadline-bounded calls so a blocked socket cannot outlive the deadline
_deadline_pool = futures.ThreadPoolExecutor(
    max_workers=Config.REDIS_MAX_CONNECTIONS,
    thread_name_prefix="redis-deadline",
)


class RedisClient:
    """Redis client with connection pooling and retry logic"""

    def __init__(self, client: Optional[redis.Redis] = None):
        self.pool: Optional[redis.ConnectionPool] = None
        self.client: Optional[redis.Redis] = client
        # An injected client is owned by the caller and never rebuilt here
        self._owns_connection = client is None
        if self._owns_connection:
            self._connect()

    def _connect(self):
        """Initialize Redis connection pool"""
        try:
            options = dict(
                max_connections=Config.REDIS_MAX_CONNECTIONS,
                socket_connect_timeout=Config.REDIS_SOCKET_CONNECT_TIMEOUT,
                socket_timeout=Config.REDIS_SOCKET_TIMEOUT,
                retry_on_timeout=Config.REDIS_RETRY_ON_TIMEOUT,
                decode_responses=True,
            )
            if Config.REDIS_SSL:
                # ElastiCache uses self-signed certs
                options["ssl_cert_reqs"] = None

            self.pool = redis.ConnectionPool.from_url(Config.redis_url(), **options)
            self.client = redis.Redis(connection_pool=self.pool)

            # Test connection
            self.client.ping()

        except (ConnectionError, AuthenticationError, TimeoutError) as e:
            raise StorageUnavailable(f"Failed to connect to Redis: {e}")

    def _call_within(self, func: Callable, remaining: float) -> Any:
        """Run func, giving up once ``remaining`` seconds have passed"""
        future = _deadline_pool.submit(func)
        try:
            return future.result(timeout=remaining)
        except futures.TimeoutError:
            # The command may still complete on the server after this point
            raise StorageUnavailable(f"Redis operation did not finish within {remaining:.2f}s")

    def _retry_with_backoff(
        self,
        func: Callable,
        max_retries: int = 3,
        initial_backoff: float = 0.1,
        max_backoff: float = 2.0,
        deadline: Optional[float] = None
    ) -> Any:
        """
        Execute function with exponential backoff retry.

        Args:
            func: Function to execute
            max_retries: Maximum number of retry attempts
            initial_backoff: Initial backoff delay in seconds
            max_backoff: Maximum backoff delay in seconds
            deadline: Optional overall budget in seconds, covering both the
                calls themselves and the waits between them

        Returns:
            Result of function execution

        Raises:
            StorageUnavailable: If all retries fail or the deadline passes
        """
        backoff = initial_backoff
        started = time.monotonic()

        for attempt in range(max_retries):
            try:
                if deadline is None:
                    return func()
                return self._call_within(func, deadline - (time.monotonic() - started))
            except (ConnectionError, TimeoutError) as e:
                elapsed = time.monotonic() - started
                if attempt == max_retries - 1:
                    raise StorageUnavailable(f"Redis operation failed after {max_retries} retries: {e}")
                if deadline is not None and elapsed + backoff >= deadline:
                    raise StorageUnavailable(f"Redis operation exceeded {deadline}s deadline: {e}")

                logger.warning(f"Redis call failed (attempt {attempt + 1}/{max_retries}): {e}")

                # Exponential backoff with jitter
                jitter = random.uniform(0, backoff * 0.1)
                time.sleep(backoff + jitter)
                backoff = min(backoff * 2, max_backoff)

                if self._owns_connection:
                    try:
                        self._connect()
                    except StorageUnavailable:
                        pass  # Next attempt reports the failure

            except RedisError as e:
                # Non-retryable errors
                raise StorageUnavailable(f"Redis error: {e}")

    def get(self, key: str, deadline: Optional[float] = None) -> Optional[str]:
        """Get value from Redis"""
        def _get():
            return self.client.get(key)
        return self._retry_with_backoff(_get, deadline=deadline)

    def hgetall(self, key: str) -> dict:
        """Get all fields from hash"""
        def _hgetall():
            return self.client.hgetall(key)
        return self._retry_with_backoff(_hgetall)

    def lrange(self, key: str, start: int, end: int) -> List[str]:
        """Get a range of list elements"""
        def _lrange():
            return self.client.lrange(key, start, end)
        return self._retry_with_backoff(_lrange)

    def eval(self, script: str, num_keys: int, *keys_and_args, deadline: Optional[float] = None) -> Any:
        """Execute Lua script"""
        def _eval():
            return self.client.eval(script, num_keys, *keys_and_args)
        return self._retry_with_backoff(_eval, deadline=deadline)

    def ping(self) -> bool:
        """Test Redis connection"""
        try:
            return bool(self.client.ping())
        except RedisError:
            return False


# Global Redis client instance
_redis_client: Optional[RedisClient] = None

def get_redis_client() -> RedisClient:
    """Get or create Redis client instance (singleton)"""
    global _redis_client
    if _redis_client is None:
        _redis_client = RedisClient()
    return _redis_client
