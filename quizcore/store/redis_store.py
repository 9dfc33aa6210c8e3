from __future__ import annotations

import contextlib
from typing import Iterator, List, Optional, Tuple

import redis
from tenacity import Retrying, stop_after_attempt, wait_exponential, retry_if_exception_type

from quizcore.utils import get_logger

from .base import KeyValueStore, StoreConnectionError, StoreOperationError

LOG = get_logger()

# ZRANGE + ZREM + ZADD in one script so a crash between the pop and the
# insert cannot drop the member, and two claimers never get the same one.
CLAIM_LOWEST_SCRIPT = """
local items = redis.call('ZRANGE', KEYS[1], 0, 0)
if #items == 0 then
    return false
end
redis.call('ZREM', KEYS[1], items[1])
redis.call('ZADD', KEYS[2], ARGV[1], items[1])
return items[1]
"""


@contextlib.contextmanager
def _translate_errors(op: str):
    try:
        yield
    except (redis.ConnectionError, redis.TimeoutError) as e:
        raise StoreConnectionError(f'{op}: {e}') from e
    except redis.RedisError as e:
        raise StoreOperationError(f'{op}: {e}') from e


def _count_to_stop(offset: int, count: int) -> int:
    return -1 if count < 0 else offset + count - 1


class RedisStore(KeyValueStore):
    def __init__(self, client: redis.Redis):
        self._client = client
        self._claim_script = client.register_script(CLAIM_LOWEST_SCRIPT)

    @classmethod
    def connect(cls, url: Optional[str] = None, host: str = 'redis', port: int = 6379, password: Optional[str] = None,
                socket_timeout: float = 5.0, retries: int = 3) -> 'RedisStore':
        if url:
            client = redis.from_url(url, decode_responses=True, socket_timeout=socket_timeout)
        else:
            client = redis.Redis(host=host, port=port, password=password, socket_timeout=socket_timeout, decode_responses=True)
        try:
            for attempt in Retrying(
                stop=stop_after_attempt(max(1, retries)),
                wait=wait_exponential(multiplier=0.5, max=5),
                retry=retry_if_exception_type((redis.ConnectionError, redis.TimeoutError)),
                reraise=True,
            ):
                with attempt:
                    client.ping()
        except (redis.ConnectionError, redis.TimeoutError) as e:
            LOG.warning('redis_store_unavailable', extra={'host': host, 'port': port, 'error': str(e)})
            raise StoreConnectionError(str(e)) from e
        LOG.info('redis_store_connected', extra={'host': host, 'port': port, 'from_url': bool(url)})
        return cls(client)

    @classmethod
    def from_settings(cls, settings) -> 'RedisStore':
        return cls.connect(
            url=settings.REDIS_URL,
            host=settings.REDIS_HOST,
            port=settings.REDIS_PORT,
            password=settings.REDIS_PASSWORD or None,
            socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
            retries=settings.REDIS_CONNECT_RETRIES,
        )

    def get(self, key: str) -> Optional[str]:
        with _translate_errors('get'):
            return self._client.get(key)

    def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        with _translate_errors('set'):
            if ttl_seconds:
                self._client.set(key, value, ex=int(ttl_seconds))
            else:
                self._client.set(key, value)

    def delete(self, key: str) -> int:
        with _translate_errors('delete'):
            return int(self._client.delete(key) or 0)

    def expire(self, key: str, ttl_seconds: int) -> None:
        with _translate_errors('expire'):
            self._client.expire(key, int(ttl_seconds))

    def scan(self, pattern: str) -> Iterator[str]:
        with _translate_errors('scan'):
            return iter(list(self._client.scan_iter(match=pattern)))

    def add(self, set_key: str, score: float, member: str) -> None:
        with _translate_errors('zadd'):
            self._client.zadd(set_key, {member: score})

    def remove(self, set_key: str, member: str) -> int:
        with _translate_errors('zrem'):
            return int(self._client.zrem(set_key, member) or 0)

    def range_by_score(self, set_key: str, offset: int = 0, count: int = -1) -> List[str]:
        with _translate_errors('zrange'):
            return list(self._client.zrange(set_key, offset, _count_to_stop(offset, count)))

    def range_with_scores(self, set_key: str, offset: int = 0, count: int = -1) -> List[Tuple[str, float]]:
        with _translate_errors('zrange'):
            rows = self._client.zrange(set_key, offset, _count_to_stop(offset, count), withscores=True)
        return [(member, float(score)) for member, score in rows]

    def cardinality(self, set_key: str) -> int:
        with _translate_errors('zcard'):
            return int(self._client.zcard(set_key) or 0)

    def score_of(self, set_key: str, member: str) -> Optional[float]:
        with _translate_errors('zscore'):
            score = self._client.zscore(set_key, member)
        return None if score is None else float(score)

    def remove_by_score(self, set_key: str, min_score: float, max_score: float) -> int:
        with _translate_errors('zremrangebyscore'):
            return int(self._client.zremrangebyscore(set_key, min_score, max_score) or 0)

    def claim_lowest(self, source: str, target: str, target_score: float) -> Optional[str]:
        with _translate_errors('claim_lowest'):
            member = self._claim_script(keys=[source, target], args=[repr(float(target_score))])
        return member or None

    def ping(self) -> bool:
        with _translate_errors('ping'):
            return bool(self._client.ping())

    def close(self) -> None:
        try:
            self._client.close()
            LOG.info('redis_store_closed')
        except redis.RedisError as e:
            LOG.warning('redis_store_close_failed', extra={'error': str(e)})
