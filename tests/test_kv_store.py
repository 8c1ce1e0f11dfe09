"""
Tests for the Redis key-value store adapter.

The redis client is mocked; commands and error wrapping are checked.
"""

from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from appstore_notifier.exceptions import KeyValueStoreError
from appstore_notifier.services.kv_store import RedisKeyValueStore


@pytest.fixture
def redis_client() -> AsyncMock:
    return AsyncMock()


class TestRedisKeyValueStore:
    """Tests for RedisKeyValueStore."""

    @pytest.mark.asyncio
    async def test_set_if_absent_uses_set_nx_ex(self, redis_client):
        """set_if_absent is a single atomic SET NX EX."""
        redis_client.set.return_value = True
        store = RedisKeyValueStore(redis_client)

        assert await store.set_if_absent("k", "1", 60) is True
        redis_client.set.assert_awaited_once_with("k", "1", ex=60, nx=True)

    @pytest.mark.asyncio
    async def test_set_if_absent_existing_key(self, redis_client):
        """Redis answers None when NX loses."""
        redis_client.set.return_value = None
        store = RedisKeyValueStore(redis_client)

        assert await store.set_if_absent("k", "1", 60) is False

    @pytest.mark.asyncio
    async def test_get(self, redis_client):
        redis_client.get.return_value = '{"a": 1}'
        store = RedisKeyValueStore(redis_client)

        assert await store.get("k") == '{"a": 1}'

    @pytest.mark.asyncio
    async def test_get_decodes_bytes(self, redis_client):
        redis_client.get.return_value = b"value"
        store = RedisKeyValueStore(redis_client)

        assert await store.get("k") == "value"

    @pytest.mark.asyncio
    async def test_set_with_expiry(self, redis_client):
        store = RedisKeyValueStore(redis_client)

        await store.set("k", "v", 120)

        redis_client.set.assert_awaited_once_with("k", "v", ex=120)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("operation", ["set_if_absent", "get", "set"])
    async def test_redis_errors_are_wrapped(self, redis_client, operation):
        redis_client.set.side_effect = RedisConnectionError("down")
        redis_client.get.side_effect = RedisConnectionError("down")
        store = RedisKeyValueStore(redis_client)

        with pytest.raises(KeyValueStoreError) as exc_info:
            if operation == "get":
                await store.get("k")
            elif operation == "set":
                await store.set("k", "v", 1)
            else:
                await store.set_if_absent("k", "v", 1)

        assert exc_info.value.key == "k"

    @pytest.mark.asyncio
    async def test_close(self, redis_client):
        store = RedisKeyValueStore(redis_client)

        await store.close()

        redis_client.aclose.assert_awaited_once()
