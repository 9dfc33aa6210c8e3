from unittest.mock import MagicMock

import redis

from quizcore.cache import ResponseCache, with_cache, content_hash_key, db_cache_key, api_cache_key
from quizcore.store import RedisStore
from tests.fixtures.mock_redis import broken_client


def test_cache_round_trip_and_expiry(response_cache, clock):
    response_cache.set('quiz:1', {'questions': [1, 2, 3]}, ttl=60)
    assert response_cache.get('quiz:1') == {'questions': [1, 2, 3]}
    clock.advance(59_999)
    assert response_cache.get('quiz:1') == {'questions': [1, 2, 3]}
    clock.advance(1)
    assert response_cache.get('quiz:1') is None


def test_cache_delete(response_cache):
    response_cache.set('k', 'v')
    response_cache.delete('k')
    assert response_cache.get('k') is None


def test_cache_keys_are_namespaced(response_cache, memory_store):
    response_cache.set('api:/flashcards', [1])
    assert memory_store.get('cache:api:/flashcards') == '[1]'
    assert memory_store.get('api:/flashcards') is None


def test_default_ttl_applies(memory_store, clock):
    cache = ResponseCache(memory_store, default_ttl=10)
    cache.set('k', 1)
    clock.advance(10_000)
    assert cache.get('k') is None


def test_with_cache_skips_producer_on_hit(response_cache):
    response_cache.set('summary:abc', {'brief': 'ok'})
    producer = MagicMock(return_value={'brief': 'fresh'})
    assert response_cache.with_cache('summary:abc', producer, 60) == {'brief': 'ok'}
    producer.assert_not_called()


def test_with_cache_populates_on_miss(response_cache):
    producer = MagicMock(return_value={'cards': 3})
    assert with_cache(response_cache, 'cards', producer, 60) == {'cards': 3}
    assert with_cache(response_cache, 'cards', producer, 60) == {'cards': 3}
    producer.assert_called_once()


def test_with_cache_propagates_producer_errors(response_cache):
    def boom():
        raise RuntimeError('generation failed')

    try:
        response_cache.with_cache('k', boom)
    except RuntimeError:
        pass
    else:
        raise AssertionError('producer error swallowed')
    assert response_cache.get('k') is None


def test_cache_fails_open_on_store_errors():
    cache = ResponseCache(RedisStore(broken_client()))
    assert cache.get('k') is None
    cache.set('k', {'a': 1})
    cache.delete('k')
    assert cache.invalidate('*') == 0
    producer = MagicMock(return_value=42)
    assert cache.with_cache('k', producer) == 42
    producer.assert_called_once()


def test_cache_treats_undecodable_value_as_miss(response_cache, memory_store):
    memory_store.set('cache:bad', '{not json')
    assert response_cache.get('bad') is None


def test_cache_skips_unserializable_values(response_cache):
    response_cache.set('obj', object())
    assert response_cache.get('obj') is None


def test_invalidate_by_pattern(response_cache, memory_store):
    response_cache.set(api_cache_key('/api/flashcards', 'u1'), [1])
    response_cache.set(api_cache_key('/api/flashcards', 'u1', {'limit': '10'}), [2])
    response_cache.set(api_cache_key('/api/quizzes', 'u1'), [3])
    memory_store.set('ai:status:x', '{}')
    assert response_cache.invalidate('api:/api/flashcards:user:u1*') == 2
    assert response_cache.get(api_cache_key('/api/quizzes', 'u1')) == [3]
    assert memory_store.get('ai:status:x') == '{}'


def test_disabled_cache_is_inert(memory_store):
    cache = ResponseCache(memory_store, enabled=False)
    cache.set('k', 1)
    assert cache.get('k') is None
    assert memory_store.get('cache:k') is None


def test_key_builders():
    assert api_cache_key('/api/flashcards') == 'api:/api/flashcards'
    assert api_cache_key('/api/flashcards', 'u1', {'public': 'true', 'limit': '10'}) == \
        'api:/api/flashcards:user:u1:{"limit":"10","public":"true"}'
    assert db_cache_key('quizzes', {'ownerId': 't1'}) == 'db:quizzes:{"ownerId":"t1"}'
    assert db_cache_key('quizzes', {'a': 1}, {'limit': 5}) == 'db:quizzes:{"a":1}:{"limit":5}'
    k1 = content_hash_key('pdf', {'b': 2, 'a': 1})
    k2 = content_hash_key('pdf', {'a': 1, 'b': 2})
    assert k1 == k2
    assert k1.startswith('pdf:') and len(k1.split(':')[1]) == 16
    assert content_hash_key('pdf', 'text one') != content_hash_key('pdf', 'text two')


def test_cache_over_redis_store(redis_store, mock_redis):
    cache = ResponseCache(redis_store, default_ttl=120)
    cache.set('k', {'v': 1})
    assert mock_redis.expirations['cache:k'] == 120
    assert cache.get('k') == {'v': 1}


def test_cache_timeout_is_swallowed():
    cache = ResponseCache(RedisStore(broken_client(redis.TimeoutError('slow'))))
    assert cache.get('k') is None


def test_explicit_ttl_is_not_replaced_by_default(memory_store, clock):
    cache = ResponseCache(memory_store, default_ttl=300)
    cache.set('short', 1, ttl=5)
    clock.advance(5_000)
    assert cache.get('short') is None


def test_zero_ttl_is_not_stored(response_cache, memory_store):
    response_cache.set('k', {'a': 1}, ttl=0)
    assert memory_store.get('cache:k') is None
    assert response_cache.get('k') is None


def test_cached_none_counts_as_hit(response_cache):
    producer = MagicMock(return_value=None)
    assert response_cache.with_cache('empty', producer, 60) is None
    assert response_cache.with_cache('empty', producer, 60) is None
    producer.assert_called_once()


def test_cache_enabled_comes_from_settings(memory_store):
    from quizcore.utils import Settings

    off = ResponseCache.from_settings(memory_store, Settings(CACHE_ENABLED=False))
    assert off.enabled is False
    off.set('k', 1)
    assert memory_store.get('cache:k') is None
    on = ResponseCache.from_settings(memory_store, Settings(CACHE_PREFIX='c2:', CACHE_DEFAULT_TTL=30))
    assert on.enabled is True
    assert (on.prefix, on.default_ttl) == ('c2:', 30)
