"""Session store tests: in-process fallback, Redis-shaped caches and failures."""

import json

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from authgate.service.errors import ServerError
from authgate.service.sessions import SessionStore
from authgate.storage.redis_cache import refresh_token_key


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


class DictCache:
    """Stands in for RedisCache; records the TTL passed to ``set``."""

    def __init__(self):
        self.data = {}
        self.ttls = {}

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, *, ex=None):
        self.data[key] = value
        self.ttls[key] = ex

    async def delete(self, key):
        return 1 if self.data.pop(key, None) is not None else 0


class BrokenCache:
    async def get(self, key):
        raise RedisConnectionError("connection refused")

    async def set(self, key, value, *, ex=None):
        raise RedisConnectionError("connection refused")

    async def delete(self, key):
        raise RedisConnectionError("connection refused")


def test_refresh_token_key_format():
    assert refresh_token_key("abc") == "refresh_token:abc"


async def test_local_put_get_delete():
    store = SessionStore(None)
    await store.put("u1", "tok-1", 60)
    assert await store.get("u1") == "tok-1"

    await store.put("u1", "tok-2", 60)
    assert await store.get("u1") == "tok-2"

    await store.delete("u1")
    assert await store.get("u1") is None


async def test_local_entries_expire_with_ttl():
    clock = FakeClock()
    store = SessionStore(None, clock=clock)
    await store.put("u1", "tok", 10)
    clock.now += 9
    assert await store.get("u1") == "tok"
    clock.now += 1
    assert await store.get("u1") is None


async def test_put_prunes_expired_entries_of_other_users():
    clock = FakeClock()
    store = SessionStore(None, clock=clock)
    await store.put("gone", "tok-old", 10)
    await store.put("stays", "tok-live", 100)
    clock.now += 10

    await store.put("fresh", "tok-new", 10)

    assert set(store._local) == {"refresh_token:stays", "refresh_token:fresh"}


async def test_delete_missing_entry_is_a_noop():
    store = SessionStore(None)
    await store.delete("nobody")
    assert await store.get("nobody") is None


async def test_cache_backed_store_writes_json_with_ttl():
    cache = DictCache()
    store = SessionStore(cache)
    await store.put("u1", "tok", 604800)

    key = "refresh_token:u1"
    assert json.loads(cache.data[key]) == {"token": "tok"}
    assert cache.ttls[key] == 604800
    assert await store.get("u1") == "tok"

    await store.delete("u1")
    assert key not in cache.data


@pytest.mark.parametrize("raw", ["not json", json.dumps({"nope": 1}), json.dumps({"token": 5}), "[]"])
async def test_unparseable_entry_is_server_error(raw):
    cache = DictCache()
    cache.data["refresh_token:u1"] = raw
    store = SessionStore(cache)
    with pytest.raises(ServerError) as excinfo:
        await store.get("u1")
    assert excinfo.value.message == "Failed to parse stored refresh token"


async def test_unreachable_cache_surfaces_as_server_error():
    store = SessionStore(BrokenCache())
    for call in (store.put("u1", "tok", 10), store.get("u1"), store.delete("u1")):
        with pytest.raises(ServerError) as excinfo:
            await call
        assert excinfo.value.status_code == 500
