# storage/kv_store.py
"""
Key-value store adapter.

Everything that must outlive a single request (bot records, the bot index,
rate/budget counters, page and embedding caches) goes through this small
get/put/delete interface. Neither backend offers transactions here; callers
treat read-modify-write sequences as best effort.
"""

import threading
import time
from typing import Callable, Dict, Optional, Tuple

import redis

from utils.logger import get_server_logger

logger = get_server_logger()


class KVStore:
    """Interface shared by the store backends."""

    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def put(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError


class MemoryKVStore(KVStore):
    """
    In-process store with per-key expiry.

    Good for a single worker and for tests. The clock is injectable so
    TTL and time-bucket behaviour can be exercised without sleeping.
    Expired keys are dropped when read, and swept every `sweep_every` writes.
    """

    def __init__(self, clock: Callable[[], float] = time.time, sweep_every: int = 512):
        self.clock = clock
        self.sweep_every = max(1, sweep_every)
        self._lock = threading.Lock()
        self._writes = 0
        # key -> (value, expires_at or None)
        self._items: Dict[str, Tuple[str, Optional[float]]] = {}

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            item = self._items.get(key)
            if item is None:
                return None
            value, expires_at = item
            if expires_at is not None and expires_at <= self.clock():
                del self._items[key]
                return None
            return value

    def put(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        now = self.clock()
        expires_at = now + ttl_seconds if ttl_seconds else None
        with self._lock:
            self._items[key] = (value, expires_at)
            self._writes += 1
            if self._writes >= self.sweep_every:
                self._writes = 0
                self._sweep(now)

    def delete(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)

    def _sweep(self, now: float) -> None:
        # Caller holds the lock
        expired = [k for k, (_, expires_at) in self._items.items() if expires_at is not None and expires_at <= now]
        for key in expired:
            del self._items[key]
        if expired:
            logger.debug(f"Swept {len(expired)} expired keys from memory store")

    def __len__(self) -> int:
        """Number of live (unexpired) keys."""
        now = self.clock()
        with self._lock:
            return sum(1 for _, expires_at in self._items.values() if expires_at is None or expires_at > now)


class RedisKVStore(KVStore):
    """Store backed by Redis; expiry uses Redis' native key TTL."""

    def __init__(self, url: str):
        self.client = redis.Redis.from_url(url, decode_responses=True)

    def get(self, key: str) -> Optional[str]:
        return self.client.get(key)

    def put(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        self.client.set(key, value, ex=int(ttl_seconds) if ttl_seconds else None)

    def delete(self, key: str) -> None:
        self.client.delete(key)


def create_store(redis_url: Optional[str] = None) -> KVStore:
    """Redis when a URL is configured and reachable, in-memory otherwise."""
    if not redis_url:
        logger.info("REDIS_URL not set, using in-memory store")
        return MemoryKVStore()

    store = RedisKVStore(redis_url)
    try:
        store.client.ping()
    except redis.RedisError as e:
        logger.warning(f"Redis not available ({e}), using in-memory store")
        return MemoryKVStore()

    logger.info("Using Redis store")
    return store
