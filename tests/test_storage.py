# tests/test_storage.py - KV store adapter tests
from storage import MemoryKVStore, RedisKVStore, create_store


class TestMemoryStore:
    """Tests for the in-process store."""

    def test_put_get_delete(self, store):
        store.put("k", "v")
        assert store.get("k") == "v"
        store.delete("k")
        assert store.get("k") is None

    def test_ttl(self, store, clock):
        store.put("k", "v", ttl_seconds=10)
        clock.advance(9)
        assert store.get("k") == "v"
        clock.advance(1)
        assert store.get("k") is None

    def test_no_ttl_never_expires(self, store, clock):
        store.put("k", "v")
        clock.advance(10 ** 9)
        assert store.get("k") == "v"

    def test_unread_expired_keys_are_swept(self, clock):
        store = MemoryKVStore(clock=clock, sweep_every=100)
        store.put("bot:acme", "{}")
        for i in range(1000):
            store.put(f"rate:acme:203.0.113.{i % 250}:{i}", "1", ttl_seconds=60)
        clock.advance(3600)
        for i in range(1000):
            store.put(f"rate:acme:198.51.100.{i % 250}:{i}", "1", ttl_seconds=60)

        # First batch expired and was swept without ever being read
        assert len(store._items) == 1001
        assert store.get("bot:acme") == "{}"

        clock.advance(3600)
        for i in range(100):
            store.put(f"kb:emb:{i}", "[]", ttl_seconds=60)
        assert len(store._items) == 101
        assert len(store) == 101

    def test_len_counts_only_live_keys(self, store, clock):
        store.put("a", "1", ttl_seconds=10)
        store.put("b", "1")
        assert len(store) == 2
        clock.advance(10)
        assert len(store) == 1


class TestRedisStore:
    """Tests for the Redis adapter against a stand-in client."""

    class FakeRedis:
        def __init__(self):
            self.data = {}
            self.expiry = {}

        def get(self, key):
            return self.data.get(key)

        def set(self, key, value, ex=None):
            self.data[key] = value
            self.expiry[key] = ex

        def delete(self, key):
            self.data.pop(key, None)

    def test_put_passes_ttl(self):
        store = RedisKVStore("redis://localhost:6379/0")
        store.client = self.FakeRedis()
        store.put("k", "v", ttl_seconds=90)
        store.put("p", "v")
        assert store.get("k") == "v"
        assert store.client.expiry == {"k": 90, "p": None}
        store.delete("k")
        assert store.get("k") is None


class TestCreateStore:
    """Tests for backend selection."""

    def test_no_url_gives_memory_store(self):
        assert isinstance(create_store(None), MemoryKVStore)

    def test_unreachable_redis_falls_back(self):
        assert isinstance(create_store("redis://127.0.0.1:1/0"), MemoryKVStore)
