import json
import hashlib
from typing import Any, Callable, Dict, Optional, TypeVar

from quizcore.store import KeyValueStore, StoreError
from quizcore.utils import get_logger, log_cache_event

LOG = get_logger()

T = TypeVar('T')

DEFAULT_TTL = 300  # 5 minutes

_MISS = object()


class ResponseCache:
    """Memoization over the shared store.

    Every failure (store unreachable, undecodable value) degrades to a miss
    on read and a no-op on write, so caching never fails the caller.
    """

    def __init__(self, store: KeyValueStore, prefix: str = 'cache:', default_ttl: int = DEFAULT_TTL, enabled: bool = True):
        self._store = store
        self.prefix = prefix
        self.default_ttl = default_ttl
        self.enabled = enabled
        if not self.enabled:
            LOG.info('response_cache_disabled')

    @classmethod
    def from_settings(cls, store: KeyValueStore, settings) -> 'ResponseCache':
        return cls(store, prefix=settings.CACHE_PREFIX, default_ttl=settings.CACHE_DEFAULT_TTL, enabled=settings.CACHE_ENABLED)

    def _key(self, key: str) -> str:
        return f'{self.prefix}{key}'

    def _lookup(self, key: str) -> Any:
        """Return the decoded value, or ``_MISS`` (a cached ``None`` is a hit)."""
        if not self.enabled:
            return _MISS
        full = self._key(key)
        try:
            val = self._store.get(full)
        except StoreError as e:
            LOG.warning('cache_get_failed', extra={'key': full, 'error': str(e)})
            return _MISS
        if val is None:
            LOG.debug('cache_miss', extra={'key': full})
            return _MISS
        try:
            value = json.loads(val)
        except ValueError as e:
            LOG.warning('cache_decode_failed', extra={'key': full, 'error': str(e)})
            return _MISS
        LOG.debug('cache_hit', extra={'key': full})
        return value

    def get(self, key: str) -> Optional[Any]:
        value = self._lookup(key)
        return None if value is _MISS else value

    def set(self, key: str, value: Any, ttl: Optional[int] = None):
        if not self.enabled:
            return
        full = self._key(key)
        if ttl is None:
            ttl = self.default_ttl
        if ttl <= 0:
            LOG.debug('cache_set_skipped', extra={'key': full, 'ttl': ttl})
            return
        try:
            payload = json.dumps(value)
        except (TypeError, ValueError) as e:
            LOG.warning('cache_encode_failed', extra={'key': full, 'error': str(e)})
            return
        try:
            self._store.set(full, payload, ttl_seconds=ttl)
            LOG.debug('cache_set', extra={'key': full, 'ttl': ttl})
        except StoreError as e:
            LOG.warning('cache_set_failed', extra={'key': full, 'error': str(e)})

    def delete(self, key: str):
        if not self.enabled:
            return
        full = self._key(key)
        try:
            self._store.delete(full)
            log_cache_event('cache_invalidate', full)
        except StoreError as e:
            LOG.warning('cache_invalidate_failed', extra={'key': full, 'error': str(e)})

    def invalidate(self, pattern: str) -> int:
        """Delete every cached key matching the glob ``pattern`` (unprefixed)."""
        if not self.enabled:
            return 0
        full = self._key(pattern)
        removed = 0
        try:
            for k in self._store.scan(full):
                removed += self._store.delete(k)
        except StoreError as e:
            LOG.warning('cache_invalidate_pattern_failed', extra={'pattern': full, 'error': str(e)})
        log_cache_event('cache_invalidate_pattern', full, removed=removed)
        return removed

    def with_cache(self, key: str, producer: Callable[[], T], ttl: Optional[int] = None) -> T:
        # Concurrent misses on the same key each run producer; there is no
        # single-flight lock.
        cached = self._lookup(key)
        if cached is not _MISS:
            return cached
        result = producer()
        self.set(key, result, ttl)
        return result


def with_cache(cache: ResponseCache, key: str, producer: Callable[[], T], ttl: Optional[int] = None) -> T:
    return cache.with_cache(key, producer, ttl)


def _canonical(value: Any) -> str:
    try:
        return json.dumps(value, sort_keys=True, separators=(',', ':'))
    except (TypeError, ValueError):
        return str(value)


def content_hash_key(namespace: str, content: Any) -> str:
    h = hashlib.sha256(_canonical(content).encode()).hexdigest()[:16]
    return f'{namespace}:{h}'


def db_cache_key(collection: str, filters: Dict[str, Any], options: Optional[Dict[str, Any]] = None) -> str:
    parts = [collection, _canonical(filters)]
    if options:
        parts.append(_canonical(options))
    return 'db:' + ':'.join(parts)


def api_cache_key(path: str, user_id: Optional[str] = None, query_params: Optional[Dict[str, str]] = None) -> str:
    parts = ['api', path]
    if user_id:
        parts.append(f'user:{user_id}')
    if query_params:
        parts.append(_canonical(query_params))
    return ':'.join(parts)
