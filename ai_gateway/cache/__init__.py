from .kv_store import KeyValueCache, MemoryKVCache, RedisKVCache, create_cache

__all__ = ["KeyValueCache", "MemoryKVCache", "RedisKVCache", "create_cache"]
