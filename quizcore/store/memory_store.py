from __future__ import annotations

import fnmatch
import threading
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from .base import KeyValueStore, now_ms


class MemoryStore(KeyValueStore):
    """In-process store for local development and tests.

    Not shared between processes. Expiry is evaluated lazily against
    ``clock`` (milliseconds since epoch).
    """

    def __init__(self, clock: Optional[Callable[[], int]] = None):
        self._clock = clock or now_ms
        self._lock = threading.RLock()
        self._values: Dict[str, str] = {}
        self._zsets: Dict[str, Dict[str, float]] = {}
        self._expires: Dict[str, int] = {}

    def _purge(self, key: str):
        deadline = self._expires.get(key)
        if deadline is not None and deadline <= self._clock():
            self._values.pop(key, None)
            self._zsets.pop(key, None)
            self._expires.pop(key, None)

    def _sorted(self, set_key: str) -> List[Tuple[str, float]]:
        self._purge(set_key)
        members = self._zsets.get(set_key, {})
        return sorted(members.items(), key=lambda kv: (kv[1], kv[0]))

    @staticmethod
    def _slice(rows: list, offset: int, count: int) -> list:
        if count < 0:
            return rows[offset:]
        return rows[offset:offset + count]

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            self._purge(key)
            return self._values.get(key)

    def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        with self._lock:
            self._values[key] = value
            if ttl_seconds:
                self._expires[key] = self._clock() + int(ttl_seconds) * 1000
            else:
                self._expires.pop(key, None)

    def delete(self, key: str) -> int:
        with self._lock:
            self._purge(key)
            existed = key in self._values or key in self._zsets
            self._values.pop(key, None)
            self._zsets.pop(key, None)
            self._expires.pop(key, None)
            return 1 if existed else 0

    def expire(self, key: str, ttl_seconds: int) -> None:
        with self._lock:
            self._purge(key)
            if key in self._values or key in self._zsets:
                self._expires[key] = self._clock() + int(ttl_seconds) * 1000

    def scan(self, pattern: str) -> Iterator[str]:
        with self._lock:
            keys = list(self._values) + list(self._zsets)
            for k in keys:
                self._purge(k)
            live = [k for k in keys if k in self._values or k in self._zsets]
        return iter([k for k in live if fnmatch.fnmatchcase(k, pattern)])

    def add(self, set_key: str, score: float, member: str) -> None:
        with self._lock:
            self._purge(set_key)
            self._zsets.setdefault(set_key, {})[member] = float(score)

    def remove(self, set_key: str, member: str) -> int:
        with self._lock:
            self._purge(set_key)
            members = self._zsets.get(set_key)
            if not members or member not in members:
                return 0
            del members[member]
            if not members:
                self._zsets.pop(set_key, None)
                self._expires.pop(set_key, None)
            return 1

    def range_by_score(self, set_key: str, offset: int = 0, count: int = -1) -> List[str]:
        with self._lock:
            return [m for m, _ in self._slice(self._sorted(set_key), offset, count)]

    def range_with_scores(self, set_key: str, offset: int = 0, count: int = -1) -> List[Tuple[str, float]]:
        with self._lock:
            return self._slice(self._sorted(set_key), offset, count)

    def cardinality(self, set_key: str) -> int:
        with self._lock:
            self._purge(set_key)
            return len(self._zsets.get(set_key, {}))

    def score_of(self, set_key: str, member: str) -> Optional[float]:
        with self._lock:
            self._purge(set_key)
            return self._zsets.get(set_key, {}).get(member)

    def remove_by_score(self, set_key: str, min_score: float, max_score: float) -> int:
        with self._lock:
            removed = 0
            for member, score in self._sorted(set_key):
                if min_score <= score <= max_score:
                    removed += self.remove(set_key, member)
            return removed

    def claim_lowest(self, source: str, target: str, target_score: float) -> Optional[str]:
        with self._lock:
            rows = self._sorted(source)
            if not rows:
                return None
            member = rows[0][0]
            self.remove(source, member)
            self.add(target, target_score, member)
            return member

    def ping(self) -> bool:
        return True

    def flushall(self):
        with self._lock:
            self._values.clear()
            self._zsets.clear()
            self._expires.clear()
