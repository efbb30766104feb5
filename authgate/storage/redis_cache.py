from __future__ import annotations

from typing import Optional

import redis.asyncio as aioredis
from redis import Redis

REFRESH_TOKEN_PREFIX = "refresh_token:"


def refresh_token_key(user_id: str) -> str:
    """Cache key holding the single live refresh token for ``user_id``."""
    return f"{REFRESH_TOKEN_PREFIX}{user_id}"


class RedisCache:
    """Thin Redis wrapper for refresh-token sessions."""

    def __init__(self, redis_url: str, *, socket_timeout: float = 5.0):
        self.redis_url = redis_url
        self.client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def verify_connection(self) -> None:
        """Assert Redis connectivity before serving requests."""
        # Short-lived sync client so the async pool is not bound to a startup loop
        sync_client = Redis.from_url(self.redis_url, decode_responses=True)
        try:
            sync_client.ping()
        finally:
            sync_client.close()

    async def get(self, key: str) -> Optional[str]:
        return await self.client.get(key)

    async def set(self, key: str, value: str, *, ex: Optional[int] = None) -> None:
        await self.client.set(key, value, ex=ex)

    async def delete(self, key: str) -> int:
        return int(await self.client.delete(key))

    async def ping(self) -> bool:
        return bool(await self.client.ping())

    async def close(self) -> None:
        """Close the connection pool. Call when shutting down or resetting runtime."""
        await self.client.aclose()
        await self.client.connection_pool.disconnect()


class SyncRedisCache:
    """Synchronous Redis wrapper for use in tests.

    Exposes the same awaitable surface as :class:`RedisCache` but talks to
    Redis with a blocking client, so pytest's per-test event loops never
    inherit a connection bound to another loop.
    """

    def __init__(self, redis_url: str, *, socket_timeout: float = 5.0):
        self.redis_url = redis_url
        self._sync_client = Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def verify_connection(self) -> None:
        self._sync_client.ping()

    async def get(self, key: str) -> Optional[str]:
        return self._sync_client.get(key)

    async def set(self, key: str, value: str, *, ex: Optional[int] = None) -> None:
        self._sync_client.set(key, value, ex=ex)

    async def delete(self, key: str) -> int:
        return int(self._sync_client.delete(key))

    async def ping(self) -> bool:
        return bool(self._sync_client.ping())

    async def close(self) -> None:
        self._sync_client.close()
