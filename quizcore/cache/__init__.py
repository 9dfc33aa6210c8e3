from .response_cache import ResponseCache, with_cache, content_hash_key, db_cache_key, api_cache_key, DEFAULT_TTL

__all__ = ['ResponseCache', 'with_cache', 'content_hash_key', 'db_cache_key', 'api_cache_key', 'DEFAULT_TTL']
