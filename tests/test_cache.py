import fnmatch

from supportsync.support.cache import InMemoryCache, RedisCache, build_cache


class FakeRedis:
    """Implements the slice of the redis client the cache relies on."""

    def __init__(self, keys):
        self.store = dict.fromkeys(keys, "1")
        self.delete_calls = []

    def scan_iter(self, match=None, count=None):
        for key in list(self.store):
            if match is None or fnmatch.fnmatchcase(key, match):
                yield key

    def delete(self, *keys):
        self.delete_calls.append(keys)
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
        return removed


def test_in_memory_prefix_flush():
    cache = InMemoryCache()
    cache.set("messaging:inbox:7:a", 1)
    cache.set("messaging:inbox:7:b", 2)
    cache.set("messaging:inbox:70", 3)

    assert cache.flush_by_prefix("messaging:inbox:7:") == 2
    assert cache.keys() == ["messaging:inbox:70"]
    cache.delete("missing")
    assert cache.get("messaging:inbox:70") == 3


def test_redis_prefix_flush_batches_deletes():
    keys = [f"messaging:threads:list:{i}" for i in range(1203)] + ["profile:1"]
    client = FakeRedis(keys)
    cache = RedisCache("redis://localhost:6379/0", client=client)

    removed = cache.flush_by_prefix("messaging:threads:list")

    assert removed == 1203
    assert [len(call) for call in client.delete_calls] == [500, 500, 203]
    assert list(client.store) == ["profile:1"]


def test_redis_delete_single_key():
    client = FakeRedis(["messaging:thread:4"])
    cache = RedisCache("redis://localhost", client=client)

    cache.delete("messaging:thread:4")

    assert client.store == {}


def test_build_cache_selects_backend():
    assert isinstance(build_cache(None), InMemoryCache)
    assert isinstance(build_cache("memory://"), InMemoryCache)
    redis_cache = build_cache("redis://cache:6379/2")
    assert isinstance(redis_cache, RedisCache)
    assert redis_cache.url == "redis://cache:6379/2"
