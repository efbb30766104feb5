from __future__ import annotations

import asyncio
import json
import threading
import time
from typing import Callable, Dict, Optional, Tuple, Union

from redis.exceptions import RedisError

from authgate.logging import get_logger
from authgate.service.errors import ServerError
from authgate.storage.redis_cache import RedisCache, SyncRedisCache, refresh_token_key

logger = get_logger(__name__)

_CACHE_ERRORS = (RedisError, OSError, asyncio.TimeoutError)


class SessionStore:
    """Single live refresh token per user, kept in Redis.

    Without a cache (TEST_MODE or ALLOW_REDIS_FALLBACK_DEV) entries live in a
    process-local dict with the same TTL semantics.
    """

    def __init__(
        self,
        cache: Optional[Union[RedisCache, SyncRedisCache]],
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.cache = cache
        self._clock = clock
        self._state_lock = threading.Lock()
        self._local: Dict[str, Tuple[str, float]] = {}

    async def put(self, identity: str, refresh_token: str, ttl_seconds: int) -> None:
        key = refresh_token_key(identity)
        value = json.dumps({"token": refresh_token})
        if self.cache:
            try:
                await self.cache.set(key, value, ex=ttl_seconds)
            except _CACHE_ERRORS as exc:
                raise self._unavailable("put", exc) from exc
            return
        with self._state_lock:
            now = self._clock()
            for stale in [k for k, (_, expires_at) in self._local.items() if expires_at <= now]:
                del self._local[stale]
            self._local[key] = (value, now + ttl_seconds)

    async def get(self, identity: str) -> Optional[str]:
        key = refresh_token_key(identity)
        if self.cache:
            try:
                raw = await self.cache.get(key)
            except _CACHE_ERRORS as exc:
                raise self._unavailable("get", exc) from exc
        else:
            with self._state_lock:
                entry = self._local.get(key)
                if entry and entry[1] <= self._clock():
                    self._local.pop(key, None)
                    entry = None
            raw = entry[0] if entry else None
        if raw is None:
            return None
        return self._parse(identity, raw)

    async def delete(self, identity: str) -> None:
        key = refresh_token_key(identity)
        if self.cache:
            try:
                await self.cache.delete(key)
            except _CACHE_ERRORS as exc:
                raise self._unavailable("delete", exc) from exc
            return
        with self._state_lock:
            self._local.pop(key, None)

    @staticmethod
    def _parse(identity: str, raw: str) -> str:
        try:
            token = json.loads(raw)["token"]
        except (ValueError, TypeError, KeyError) as exc:
            logger.error("session_entry_unparseable", user_id=identity)
            raise ServerError("Failed to parse stored refresh token") from exc
        if not isinstance(token, str):
            logger.error("session_entry_unparseable", user_id=identity)
            raise ServerError("Failed to parse stored refresh token")
        return token

    @staticmethod
    def _unavailable(operation: str, exc: Exception) -> ServerError:
        logger.error(
            "session_store_unavailable",
            operation=operation,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return ServerError("Session store unavailable")
