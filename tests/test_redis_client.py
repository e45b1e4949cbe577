"""Tests for the optional Redis client and its circuit breaker.

Tests cover:
- Circuit breaker behavior (opens after 3 consecutive failures)
- Exponential backoff, capped
- Singleton pattern with reset capability
- Initialization without a URL and with an unreachable server
- Relay results feeding the breaker
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError


@pytest.fixture
def redis_client_instance():
    """A fresh RedisClient with a fake connection."""
    from api.redis_client import RedisClient

    client = RedisClient(url="redis://localhost:6379")
    client._client = MagicMock()
    client._initialized = True
    return client


class TestCircuitBreaker:
    def test_circuit_opens_after_three_failures(self, redis_client_instance):
        client = redis_client_instance

        client.record_failure()
        client.record_failure()
        assert client._circuit_open_until is None
        assert client.is_available is True

        client.record_failure()
        assert client._circuit_open_until is not None
        assert client.is_available is False
        assert client.get_client() is None

    def test_exponential_backoff_capped(self, redis_client_instance):
        client = redis_client_instance
        backoffs = []
        for _ in range(8):
            before = datetime.now(timezone.utc)
            client.record_failure()
            if client._circuit_open_until is not None:
                backoffs.append(round((client._circuit_open_until - before).total_seconds()))

        assert backoffs == [30, 60, 120, 240, 300, 300]

    def test_success_resets(self, redis_client_instance):
        client = redis_client_instance
        for _ in range(3):
            client.record_failure()

        client.record_success()

        assert client._consecutive_failures == 0
        assert client._circuit_open_until is None
        assert client.is_available is True

    def test_circuit_closes_after_timeout(self, redis_client_instance):
        client = redis_client_instance
        for _ in range(3):
            client.record_failure()
        client._circuit_open_until = datetime.now(timezone.utc) - timedelta(seconds=1)

        assert client.is_available is True
        assert client._circuit_open_until is None

    def test_unavailable_without_connection(self):
        from api.redis_client import RedisClient

        assert RedisClient(url="").is_available is False


class TestSingleton:
    @pytest.mark.asyncio
    async def test_get_instance_returns_same_instance(self):
        from api.redis_client import RedisClient

        await RedisClient.reset_instance()
        with patch.object(RedisClient, "_initialize", new_callable=AsyncMock):
            first = await RedisClient.get_instance()
            second = await RedisClient.get_instance()

        assert first is second
        await RedisClient.reset_instance()

    @pytest.mark.asyncio
    async def test_reset_instance_clears_singleton(self):
        from api.redis_client import RedisClient

        with patch.object(RedisClient, "_initialize", new_callable=AsyncMock):
            first = await RedisClient.get_instance()
        await RedisClient.reset_instance()
        with patch.object(RedisClient, "_initialize", new_callable=AsyncMock):
            second = await RedisClient.get_instance()

        assert first is not second
        await RedisClient.reset_instance()


class TestInitialization:
    @pytest.mark.asyncio
    async def test_without_url(self, caplog):
        from api.redis_client import RedisClient

        client = RedisClient(url="")
        await client._initialize()

        assert client._pool is None
        assert client._client is None
        assert client.get_client() is None

    @pytest.mark.asyncio
    async def test_connection_failure_is_recorded(self, caplog):
        from api.redis_client import RedisClient

        with patch(
            "api.redis_client.ConnectionPool.from_url",
            side_effect=RedisConnectionError("Connection refused"),
        ):
            client = RedisClient(url="redis://localhost:6379")
            await client._initialize()

        assert client._consecutive_failures == 1
        assert "Redis connection failed during initialization" in caplog.text


class TestConvenienceFunctions:
    @pytest.mark.asyncio
    async def test_get_redis_returns_client(self):
        from api.redis_client import RedisClient, get_redis

        await RedisClient.reset_instance()
        mock_client = AsyncMock()
        with patch.object(RedisClient, "_initialize", new_callable=AsyncMock):
            instance = await RedisClient.get_instance()
            instance._client = mock_client

            assert await get_redis() is mock_client

        instance._client = None
        await RedisClient.reset_instance()

    @pytest.mark.asyncio
    async def test_record_redis_result_feeds_breaker(self):
        from api.redis_client import RedisClient, record_redis_result

        await RedisClient.reset_instance()
        record_redis_result(False)  # no instance yet: ignored

        with patch.object(RedisClient, "_initialize", new_callable=AsyncMock):
            instance = await RedisClient.get_instance()
        record_redis_result(False)
        record_redis_result(False)
        assert instance._consecutive_failures == 2

        record_redis_result(True)
        assert instance._consecutive_failures == 0
        await RedisClient.reset_instance()

    @pytest.mark.asyncio
    async def test_close_releases_connections(self, redis_client_instance):
        client = redis_client_instance
        client._client = AsyncMock()
        pool = AsyncMock()
        client._pool = pool

        await client.close()

        pool.disconnect.assert_awaited_once()
        assert client._client is None
        assert client._initialized is False
