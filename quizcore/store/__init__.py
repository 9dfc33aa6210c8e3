"""Key-value store clients shared by the queue, cache and rate limiter."""

from .base import KeyValueStore, StoreError, StoreConnectionError, StoreOperationError, now_ms
from .memory_store import MemoryStore
from .redis_store import RedisStore, CLAIM_LOWEST_SCRIPT


def create_store(settings) -> KeyValueStore:
    backend = (settings.STORE_BACKEND or 'redis').lower()
    if backend == 'memory':
        return MemoryStore()
    if backend == 'redis':
        return RedisStore.from_settings(settings)
    raise ValueError(f'Unknown STORE_BACKEND: {settings.STORE_BACKEND}')


__all__ = [
    'KeyValueStore', 'StoreError', 'StoreConnectionError', 'StoreOperationError', 'now_ms',
    'MemoryStore', 'RedisStore', 'CLAIM_LOWEST_SCRIPT', 'create_store',
]
