import os
import sys
import logging
import pathlib
import contextvars
from logging.handlers import RotatingFileHandler
from pythonjsonlogger import jsonlogger

_request_ctx_var = contextvars.ContextVar('request_ctx', default={})


def set_request_context(request_id: str, user_id: str = None):
    _request_ctx_var.set({'request_id': request_id, 'user_id': user_id})


def get_request_context():
    return _request_ctx_var.get()


def _inject_request_context(record):
    ctx = get_request_context()
    record.request_id = ctx.get('request_id')
    record.user_id = ctx.get('user_id')
    return True


def get_logger(name: str = 'quizcore'):
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
    LOG_FORMAT = os.getenv('LOG_FORMAT', 'json')
    LOG_FILE_PATH = os.getenv('LOG_FILE_PATH', 'logs')
    LOG_MAX_SIZE = int(os.getenv('LOG_MAX_SIZE', str(10 * 1024 * 1024)))
    LOG_MAX_FILES = int(os.getenv('LOG_MAX_FILES', '7'))

    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    logger.setLevel(LOG_LEVEL.upper())
    log_path = pathlib.Path(LOG_FILE_PATH)
    if not log_path.is_absolute():
        log_path = pathlib.Path(os.getcwd()) / log_path
    log_path.mkdir(parents=True, exist_ok=True)

    ch = logging.StreamHandler(sys.stdout)
    if LOG_FORMAT == 'json':
        fmt = jsonlogger.JsonFormatter('%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s')
    else:
        fmt = logging.Formatter('%(asctime)s %(levelname)s %(name)s %(message)s')
    ch.setFormatter(fmt)
    logger.addHandler(ch)

    combined = RotatingFileHandler(log_path / 'combined.log', maxBytes=LOG_MAX_SIZE, backupCount=LOG_MAX_FILES)
    combined.setFormatter(fmt)
    logger.addHandler(combined)

    # terminal queue failures land here for operators
    errors = RotatingFileHandler(log_path / 'error.log', maxBytes=LOG_MAX_SIZE, backupCount=LOG_MAX_FILES)
    errors.setLevel(logging.ERROR)
    errors.setFormatter(fmt)
    logger.addHandler(errors)

    f = logging.Filter()
    f.filter = _inject_request_context
    logger.addFilter(f)

    logging.captureWarnings(True)

    return logger


def log_request(request_id: str, method: str, path: str, status_code: int, duration_ms: float, ip: str = None):
    logger = get_logger()
    logger.info('http_request', extra={'request_id': request_id, 'method': method, 'path': path, 'status_code': status_code, 'duration_ms': duration_ms, 'ip': ip})


def log_error(error: Exception, context: dict = None):
    logger = get_logger()
    logger.exception('error', exc_info=True, extra=context or {})


def log_queue_event(event: str, request_id: str, operation_kind: str, priority: str = None, retry_count: int = 0, **fields):
    logger = get_logger()
    extra = {
        'ai_request_id': request_id,
        'operation_kind': operation_kind,
        'priority': priority,
        'retry_count': retry_count,
    }
    extra.update(fields)
    logger.info(event, extra=extra)


def log_terminal_failure(request_id: str, operation_kind: str, retry_count: int, error: str, reason: str = 'retries_exhausted'):
    logger = get_logger()
    logger.error('ai_request_failed', extra={
        'ai_request_id': request_id,
        'operation_kind': operation_kind,
        'retry_count': retry_count,
        'error': error,
        'reason': reason,
    })


def log_recovery_sweep(scanned: int, expired: int, requeued: int, discarded: int, duration_ms: float):
    logger = get_logger()
    logger.info('recovery_sweep', extra={
        'scanned': scanned,
        'expired': expired,
        'requeued': requeued,
        'discarded': discarded,
        'duration_ms': duration_ms,
    })


def log_rate_limit(key: str, identifier: str, allowed: bool, remaining: int, reset_at: int):
    logger = get_logger()
    level = logging.INFO if allowed else logging.WARNING
    logger.log(level, 'rate_limit_check', extra={
        'limit_key': key,
        'identifier': identifier,
        'allowed': allowed,
        'remaining': remaining,
        'reset_at': reset_at,
    })


def log_cache_event(event: str, key: str, **fields):
    logger = get_logger()
    extra = {'key': key}
    extra.update(fields)
    logger.info(event, extra=extra)
