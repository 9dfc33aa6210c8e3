from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', extra='ignore')

    ENVIRONMENT: str = 'development'

    # store
    STORE_BACKEND: str = 'redis'
    REDIS_URL: Optional[str] = None
    REDIS_HOST: str = 'redis'
    REDIS_PORT: int = 6379
    REDIS_PASSWORD: Optional[str] = None
    REDIS_SOCKET_TIMEOUT: float = 5.0
    REDIS_CONNECT_RETRIES: int = 3

    # ai queue
    AI_QUEUE_KEY: str = 'ai:queue'
    AI_PROCESSING_KEY: str = 'ai:processing'
    AI_STATUS_PREFIX: str = 'ai:status:'
    AI_STATUS_TTL_SECONDS: int = 86400
    AI_MAX_RETRIES: int = 3
    AI_PROCESSING_TIMEOUT_MS: int = 300000
    AI_RECOVERY_INTERVAL_SECONDS: float = 120.0
    AI_WORKER_POLL_SECONDS: float = 1.0

    # cache
    CACHE_PREFIX: str = 'cache:'
    CACHE_DEFAULT_TTL: int = 300
    CACHE_ENABLED: bool = True

    # rate limiting
    RATE_LIMIT_PREFIX: str = 'ratelimit:'
    RATE_LIMIT_BYPASS: bool = False

    REDIS_REQUIRED_FOR_READY: bool = True


@lru_cache()
def get_settings() -> Settings:
    return Settings()
