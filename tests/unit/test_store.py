from unittest.mock import MagicMock, patch

import pytest
import redis

from quizcore.store import (
    MemoryStore,
    RedisStore,
    CLAIM_LOWEST_SCRIPT,
    StoreConnectionError,
    StoreOperationError,
    create_store,
)
from quizcore.utils import Settings
from tests.fixtures.mock_redis import MockRedisClient, broken_client


def test_memory_store_values_and_ttl(memory_store, clock):
    memory_store.set('k', 'v', ttl_seconds=2)
    assert memory_store.get('k') == 'v'
    clock.advance(1999)
    assert memory_store.get('k') == 'v'
    clock.advance(1)
    assert memory_store.get('k') is None
    memory_store.set('p', 'x')
    assert memory_store.delete('p') == 1
    assert memory_store.delete('p') == 0


def test_memory_store_sorted_set_ordering(memory_store):
    memory_store.add('z', 3, 'c')
    memory_store.add('z', 1, 'b')
    memory_store.add('z', 1, 'a')
    assert memory_store.range_by_score('z') == ['a', 'b', 'c']
    assert memory_store.range_by_score('z', 1, 1) == ['b']
    assert memory_store.range_with_scores('z', 0, 2) == [('a', 1.0), ('b', 1.0)]
    assert memory_store.cardinality('z') == 3
    assert memory_store.score_of('z', 'c') == 3.0
    assert memory_store.score_of('z', 'missing') is None


def test_memory_store_remove_is_exclusive(memory_store):
    memory_store.add('z', 1, 'm')
    assert memory_store.remove('z', 'm') == 1
    assert memory_store.remove('z', 'm') == 0
    assert memory_store.cardinality('z') == 0


def test_memory_store_remove_by_score_and_expire(memory_store, clock):
    for i in range(5):
        memory_store.add('w', i, f'm{i}')
    assert memory_store.remove_by_score('w', float('-inf'), 2) == 3
    assert memory_store.range_by_score('w') == ['m3', 'm4']
    memory_store.expire('w', 1)
    clock.advance(1000)
    assert memory_store.cardinality('w') == 0


def test_memory_store_claim_lowest(memory_store):
    assert memory_store.claim_lowest('src', 'dst', 10) is None
    memory_store.add('src', 5, 'second')
    memory_store.add('src', 1, 'first')
    assert memory_store.claim_lowest('src', 'dst', 99) == 'first'
    assert memory_store.range_with_scores('dst') == [('first', 99.0)]
    assert memory_store.range_by_score('src') == ['second']


def test_memory_store_scan(memory_store):
    memory_store.set('cache:api:a', '1')
    memory_store.set('cache:api:b', '2')
    memory_store.set('cache:db:c', '3')
    memory_store.add('ai:queue', 1, 'x')
    assert sorted(memory_store.scan('cache:api:*')) == ['cache:api:a', 'cache:api:b']
    assert list(memory_store.scan('ai:*')) == ['ai:queue']


def test_redis_store_registers_claim_script(mock_redis):
    RedisStore(mock_redis)
    assert mock_redis.scripts[0].source == CLAIM_LOWEST_SCRIPT


def test_redis_store_claim_lowest_runs_single_script_call(redis_store, mock_redis):
    mock_redis.zadd('ai:queue', {'b': 2.0, 'a': 1.0})
    assert redis_store.claim_lowest('ai:queue', 'ai:processing', 1234.0) == 'a'
    script = mock_redis.scripts[0]
    assert script.calls == [(['ai:queue', 'ai:processing'], ['1234.0'])]
    assert mock_redis.zscore('ai:processing', 'a') == 1234.0
    assert mock_redis.zrange('ai:queue', 0, -1) == ['b']


def test_redis_store_claim_lowest_empty(redis_store):
    assert redis_store.claim_lowest('ai:queue', 'ai:processing', 1.0) is None


def test_redis_store_primitives(redis_store, mock_redis):
    redis_store.set('k', 'v', ttl_seconds=30)
    assert mock_redis.expirations['k'] == 30
    assert redis_store.get('k') == 'v'
    assert redis_store.delete('k') == 1
    redis_store.add('z', 2, 'two')
    redis_store.add('z', 1, 'one')
    assert redis_store.range_by_score('z') == ['one', 'two']
    assert redis_store.range_by_score('z', 0, 1) == ['one']
    assert redis_store.range_with_scores('z') == [('one', 1.0), ('two', 2.0)]
    assert redis_store.cardinality('z') == 2
    assert redis_store.score_of('z', 'two') == 2.0
    assert redis_store.score_of('z', 'nope') is None
    assert redis_store.remove_by_score('z', float('-inf'), 1) == 1
    assert redis_store.remove('z', 'two') == 1
    assert redis_store.remove('z', 'two') == 0
    assert redis_store.ping() is True


def test_redis_store_translates_errors():
    store = RedisStore(broken_client())
    with pytest.raises(StoreConnectionError):
        store.get('k')
    store = RedisStore(broken_client(redis.ResponseError('WRONGTYPE')))
    with pytest.raises(StoreOperationError):
        store.add('z', 1, 'm')


def test_redis_store_connect_retries_then_gives_up(monkeypatch):
    client = MagicMock()
    client.ping.side_effect = redis.ConnectionError('down')
    monkeypatch.setattr('redis.Redis', lambda *a, **k: client)
    monkeypatch.setattr('tenacity.nap.time.sleep', lambda s: None)
    with pytest.raises(StoreConnectionError):
        RedisStore.connect(host='localhost', retries=3)
    assert client.ping.call_count == 3


def test_redis_store_connect_recovers_after_transient_failure(monkeypatch):
    client = MagicMock()
    client.ping.side_effect = [redis.ConnectionError('starting'), True]
    monkeypatch.setattr('redis.Redis', lambda *a, **k: client)
    monkeypatch.setattr('tenacity.nap.time.sleep', lambda s: None)
    store = RedisStore.connect(host='localhost', retries=3)
    assert isinstance(store, RedisStore)
    assert client.ping.call_count == 2


def test_redis_store_connect_from_url(monkeypatch):
    mock = MockRedisClient()
    with patch('redis.from_url', return_value=mock) as from_url:
        store = RedisStore.connect(url='redis://cache:6379/0')
    from_url.assert_called_once()
    assert store.ping() is True


def test_create_store_selects_backend(monkeypatch):
    assert isinstance(create_store(Settings(STORE_BACKEND='memory')), MemoryStore)
    monkeypatch.setattr('redis.Redis', lambda *a, **k: MockRedisClient())
    assert isinstance(create_store(Settings(STORE_BACKEND='redis', REDIS_HOST='localhost')), RedisStore)
    with pytest.raises(ValueError):
        create_store(Settings(STORE_BACKEND='dynamo'))
