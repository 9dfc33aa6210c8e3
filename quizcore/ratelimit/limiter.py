from __future__ import annotations

import math
import secrets
import time
from typing import Callable, Dict, Mapping, Optional

from pydantic import BaseModel, Field

from quizcore.store import KeyValueStore, StoreError, now_ms
from quizcore.utils import get_logger, log_rate_limit

LOG = get_logger()


class RateLimitConfig(BaseModel):
    limit: int = Field(..., gt=0)
    window: int = Field(..., gt=0, description='window length in seconds')


RATE_LIMITS: Dict[str, RateLimitConfig] = {
    'auth': RateLimitConfig(limit=5, window=900),
    'ai_generation': RateLimitConfig(limit=3, window=3600),
    'quiz_submit': RateLimitConfig(limit=10, window=3600),
    'general': RateLimitConfig(limit=60, window=60),
    'history': RateLimitConfig(limit=30, window=60),
    'flashcard_create': RateLimitConfig(limit=20, window=3600),
    # drafts auto-save frequently
    'draft': RateLimitConfig(limit=30, window=60),
}


class RateLimitResult(BaseModel):
    allowed: bool
    remaining: int
    reset_at: int = Field(..., description='epoch seconds when the window frees a slot')
    limit: int

    def headers(self, now: Optional[float] = None) -> Dict[str, str]:
        out = {
            'X-RateLimit-Limit': str(self.limit),
            'X-RateLimit-Remaining': str(self.remaining),
            'X-RateLimit-Reset': str(self.reset_at),
        }
        if not self.allowed:
            now_s = int(now if now is not None else time.time())
            out['Retry-After'] = str(max(0, self.reset_at - now_s))
        return out


class RateLimiter:
    """Sliding-window log limiter over a sorted set per ``(key, identifier)``.

    Each permitted hit is a member scored by its timestamp; hits older than
    the window are trimmed before counting. The trim/count/add sequence is
    not atomic, so concurrent callers may briefly overshoot ``limit``.
    """

    def __init__(self, store: KeyValueStore, prefix: str = 'ratelimit:', bypass: bool = False,
                 clock: Optional[Callable[[], int]] = None):
        self._store = store
        self.prefix = prefix
        self.bypass = bypass
        self._clock = clock or now_ms
        if self.bypass:
            LOG.warning('rate_limit_bypass_enabled')

    @classmethod
    def from_settings(cls, store: KeyValueStore, settings, clock: Optional[Callable[[], int]] = None) -> 'RateLimiter':
        return cls(store, prefix=settings.RATE_LIMIT_PREFIX, bypass=settings.RATE_LIMIT_BYPASS, clock=clock)

    def _key(self, key: str, identifier: str) -> str:
        return f'{self.prefix}{key}:{identifier}'

    def limit(self, key: str, identifier: str, config: RateLimitConfig) -> RateLimitResult:
        now = self._clock()
        window_ms = config.window * 1000
        default_reset = math.ceil((now + window_ms) / 1000)

        if self.bypass:
            return RateLimitResult(allowed=True, remaining=config.limit, reset_at=default_reset, limit=config.limit)

        full = self._key(key, identifier)
        try:
            self._store.remove_by_score(full, float('-inf'), now - window_ms)
            hits = self._store.range_with_scores(full)
            if len(hits) >= config.limit:
                oldest = hits[0][1]
                result = RateLimitResult(
                    allowed=False,
                    remaining=0,
                    reset_at=math.ceil((oldest + window_ms) / 1000),
                    limit=config.limit,
                )
            else:
                self._store.add(full, now, f'{now}-{secrets.token_hex(4)}')
                self._store.expire(full, config.window)
                oldest = hits[0][1] if hits else now
                result = RateLimitResult(
                    allowed=True,
                    remaining=config.limit - len(hits) - 1,
                    reset_at=math.ceil((oldest + window_ms) / 1000),
                    limit=config.limit,
                )
        except StoreError as e:
            LOG.warning('rate_limit_store_error', extra={'limit_key': key, 'identifier': identifier, 'error': str(e)})
            return RateLimitResult(allowed=True, remaining=config.limit - 1, reset_at=default_reset, limit=config.limit)

        log_rate_limit(key, identifier, result.allowed, result.remaining, result.reset_at)
        return result

    def check(self, name: str, identifier: str, key: Optional[str] = None) -> RateLimitResult:
        """Apply the named entry of ``RATE_LIMITS``; ``key`` defaults to the name."""
        try:
            config = RATE_LIMITS[name]
        except KeyError:
            raise ValueError(f'unknown rate limit: {name}')
        return self.limit(key or name, identifier, config)


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    val = headers.get(name)
    if val is None:
        for k, v in headers.items():
            if k.lower() == name:
                return v
    return val


def client_ip(headers: Mapping[str, str]) -> str:
    forwarded = _header(headers, 'x-forwarded-for')
    if forwarded:
        return forwarded.split(',')[0].strip()
    real_ip = _header(headers, 'x-real-ip')
    if real_ip:
        return real_ip
    cf_ip = _header(headers, 'cf-connecting-ip')
    if cf_ip:
        return cf_ip
    return 'unknown'
