"""Utility subpackage: logging, request context and settings"""

from .logger import (
    get_logger,
    log_request,
    log_error,
    log_queue_event,
    log_terminal_failure,
    log_recovery_sweep,
    log_rate_limit,
    log_cache_event,
    set_request_context,
    get_request_context,
)
from .settings import Settings, get_settings

__all__ = [
    'get_logger',
    'log_request',
    'log_error',
    'log_queue_event',
    'log_terminal_failure',
    'log_recovery_sweep',
    'log_rate_limit',
    'log_cache_event',
    'set_request_context',
    'get_request_context',
    'Settings',
    'get_settings',
]
