"""
Optional Redis connection used to relay progress events to other processes.

Redis is never required: when VIDSHIELD_REDIS_URL is empty, or the server is
unreachable, ``get_redis()`` returns None and callers skip the relay. After
repeated failures a circuit breaker stops trying for a backoff period so a
dead Redis does not slow down every publish.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import ConnectionError as RedisConnectionError

from config import REDIS_POOL_SIZE, REDIS_SOCKET_CONNECT_TIMEOUT, REDIS_SOCKET_TIMEOUT, REDIS_URL

logger = logging.getLogger(__name__)

FAILURES_BEFORE_CIRCUIT_OPENS = 3
MAX_CIRCUIT_BACKOFF_SECONDS = 300


class RedisClient:
    """Process-wide Redis client with a simple circuit breaker."""

    _instance: Optional["RedisClient"] = None
    _lock: Optional[asyncio.Lock] = None

    def __init__(self, url: str = REDIS_URL) -> None:
        self.url = url
        self._pool: Optional[ConnectionPool] = None
        self._client: Optional[Redis] = None
        self._initialized = False
        self._consecutive_failures = 0
        self._circuit_open_until: Optional[datetime] = None

    @classmethod
    async def get_instance(cls) -> "RedisClient":
        if cls._lock is None:
            cls._lock = asyncio.Lock()
        async with cls._lock:
            if cls._instance is None:
                cls._instance = cls()
            if not cls._instance._initialized:
                await cls._instance._initialize()
            return cls._instance

    @classmethod
    async def reset_instance(cls) -> None:
        """Drop the shared instance (shutdown and tests)."""
        if cls._instance is not None:
            await cls._instance.close()
        cls._instance = None
        cls._lock = None

    async def _initialize(self) -> None:
        self._initialized = True
        if not self.url:
            logger.info("Redis URL not configured, progress relay disabled")
            return

        try:
            self._pool = ConnectionPool.from_url(
                self.url,
                max_connections=REDIS_POOL_SIZE,
                socket_timeout=REDIS_SOCKET_TIMEOUT,
                socket_connect_timeout=REDIS_SOCKET_CONNECT_TIMEOUT,
                retry_on_error=[RedisConnectionError],
                decode_responses=True,
            )
            self._client = Redis(connection_pool=self._pool)
            await self._client.ping()
            logger.info(f"Redis connection established: {self.url.split('@')[-1]}")
        except Exception as e:
            logger.warning(f"Redis connection failed during initialization: {e}")
            self.record_failure()

    @property
    def is_available(self) -> bool:
        if self._client is None:
            return False
        if self._circuit_open_until is not None:
            if datetime.now(timezone.utc) < self._circuit_open_until:
                return False
            self._circuit_open_until = None
            logger.info("Redis circuit breaker closing, attempting reconnection")
        return True

    def get_client(self) -> Optional[Redis]:
        return self._client if self.is_available else None

    def record_failure(self) -> None:
        self._consecutive_failures += 1
        if self._consecutive_failures >= FAILURES_BEFORE_CIRCUIT_OPENS:
            # 30s, 60s, 120s, ... capped
            backoff = min(
                MAX_CIRCUIT_BACKOFF_SECONDS,
                30 * (2 ** (self._consecutive_failures - FAILURES_BEFORE_CIRCUIT_OPENS)),
            )
            self._circuit_open_until = datetime.now(timezone.utc) + timedelta(seconds=backoff)
            logger.warning(
                f"Redis circuit breaker opened for {backoff}s (consecutive failures: {self._consecutive_failures})"
            )

    def record_success(self) -> None:
        if self._consecutive_failures > 0:
            logger.info(f"Redis connection recovered after {self._consecutive_failures} failures")
        self._consecutive_failures = 0
        self._circuit_open_until = None

    async def close(self) -> None:
        if self._client is not None:
            try:
                await self._client.aclose()
            except Exception as e:
                logger.debug(f"Exception while closing Redis client: {e}")
        if self._pool is not None:
            try:
                await self._pool.disconnect()
            except Exception as e:
                logger.debug(f"Exception while disconnecting Redis pool: {e}")
        self._client = None
        self._pool = None
        self._initialized = False


async def get_redis() -> Optional[Redis]:
    """Redis client if configured and healthy, None otherwise."""
    client = await RedisClient.get_instance()
    return client.get_client()


def record_redis_result(success: bool) -> None:
    """Feed the outcome of a Redis call into the shared client's circuit breaker."""
    client = RedisClient._instance
    if client is None:
        return
    if success:
        client.record_success()
    else:
        client.record_failure()
