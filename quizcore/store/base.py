from __future__ import annotations

import time
from abc import ABC, abstractmethod
from typing import Iterator, List, Optional, Tuple


class StoreError(Exception):
    pass


class StoreConnectionError(StoreError):
    pass


class StoreOperationError(StoreError):
    pass


def now_ms() -> int:
    return int(time.time() * 1000)


class KeyValueStore(ABC):
    """Primitives shared by the queue, the cache and the rate limiter.

    Values and sorted-set members are strings. Sorted-set ranges are ordered
    by ascending score, ties broken by member, as in Redis.
    """

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> int:
        ...

    @abstractmethod
    def expire(self, key: str, ttl_seconds: int) -> None:
        ...

    @abstractmethod
    def scan(self, pattern: str) -> Iterator[str]:
        ...

    @abstractmethod
    def add(self, set_key: str, score: float, member: str) -> None:
        ...

    @abstractmethod
    def remove(self, set_key: str, member: str) -> int:
        """Remove ``member``; returns 1 only for the caller that removed it."""

    @abstractmethod
    def range_by_score(self, set_key: str, offset: int = 0, count: int = -1) -> List[str]:
        ...

    @abstractmethod
    def range_with_scores(self, set_key: str, offset: int = 0, count: int = -1) -> List[Tuple[str, float]]:
        ...

    @abstractmethod
    def cardinality(self, set_key: str) -> int:
        ...

    @abstractmethod
    def score_of(self, set_key: str, member: str) -> Optional[float]:
        ...

    @abstractmethod
    def remove_by_score(self, set_key: str, min_score: float, max_score: float) -> int:
        ...

    @abstractmethod
    def claim_lowest(self, source: str, target: str, target_score: float) -> Optional[str]:
        """Atomically move the lowest-scored member of ``source`` into ``target``."""

    @abstractmethod
    def ping(self) -> bool:
        ...

    def close(self) -> None:
        pass
