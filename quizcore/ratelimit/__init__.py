from .limiter import RateLimiter, RateLimitConfig, RateLimitResult, RATE_LIMITS, client_ip

__all__ = ['RateLimiter', 'RateLimitConfig', 'RateLimitResult', 'RATE_LIMITS', 'client_ip']
