# storage/__init__.py
from .kv_store import KVStore, MemoryKVStore, RedisKVStore, create_store

__all__ = [
    "KVStore",
    "MemoryKVStore",
    "RedisKVStore",
    "create_store",
]
