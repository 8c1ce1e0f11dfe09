"""
Key-value store contract and its Redis implementation.

All commands are single round trips; set_if_absent is one atomic
SET NX EX so concurrent duplicate deliveries cannot both win.
"""

from typing import Protocol

from redis.asyncio import Redis
from redis.exceptions import RedisError
from structlog import get_logger

from appstore_notifier.exceptions import KeyValueStoreError

logger = get_logger(__name__)


class KeyValueStore(Protocol):
    """Remote key-value store used for dedup and subscription state."""

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        """Set key only if it does not exist. True iff this call set it."""
        ...

    async def get(self, key: str) -> str | None:
        """Return the stored value or None."""
        ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        """Set key unconditionally with an expiry."""
        ...


class RedisKeyValueStore:
    """KeyValueStore over redis.asyncio."""

    def __init__(self, client: Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisKeyValueStore":
        """Create a store with its own connection pool."""
        return cls(Redis.from_url(url, decode_responses=True))

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        try:
            result = await self._client.set(key, value, ex=ttl_seconds, nx=True)
        except RedisError as exc:
            logger.error("kv_store_command_failed", operation="set_nx", key=key, error=str(exc))
            raise KeyValueStoreError("set_nx", key) from exc
        return bool(result)

    async def get(self, key: str) -> str | None:
        try:
            value = await self._client.get(key)
        except RedisError as exc:
            logger.error("kv_store_command_failed", operation="get", key=key, error=str(exc))
            raise KeyValueStoreError("get", key) from exc
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            await self._client.set(key, value, ex=ttl_seconds)
        except RedisError as exc:
            logger.error("kv_store_command_failed", operation="set", key=key, error=str(exc))
            raise KeyValueStoreError("set", key) from exc

    async def close(self) -> None:
        """Release pooled connections."""
        await self._client.aclose()
