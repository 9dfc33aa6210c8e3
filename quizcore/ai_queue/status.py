import json
from enum import Enum
from typing import Any, Callable, Dict, Optional

from quizcore.store import KeyValueStore, StoreError, now_ms
from quizcore.utils import get_logger

LOG = get_logger()


class RequestStatus(str, Enum):
    PENDING = 'pending'
    PROCESSING = 'processing'
    COMPLETED = 'completed'
    FAILED = 'failed'
    DISCARDED = 'discarded'


TERMINAL_STATUSES = (RequestStatus.COMPLETED, RequestStatus.FAILED, RequestStatus.DISCARDED)


class RequestStatusStore:
    """Per-request status records polled by producers.

    Writes are best-effort: a failed write is logged and dropped, the queue
    sets stay authoritative.
    """

    def __init__(self, store: KeyValueStore, prefix: str = 'ai:status:', ttl_seconds: int = 86400,
                 clock: Optional[Callable[[], int]] = None):
        self._store = store
        self.prefix = prefix
        self.ttl = ttl_seconds
        self._clock = clock or now_ms

    @classmethod
    def from_settings(cls, store: KeyValueStore, settings, clock: Optional[Callable[[], int]] = None) -> 'RequestStatusStore':
        return cls(store, prefix=settings.AI_STATUS_PREFIX, ttl_seconds=settings.AI_STATUS_TTL_SECONDS, clock=clock)

    def _key(self, request_id: str) -> str:
        return f'{self.prefix}{request_id}'

    def get(self, request_id: str) -> Optional[Dict[str, Any]]:
        try:
            raw = self._store.get(self._key(request_id))
        except StoreError as e:
            LOG.warning('request_status_get_failed', extra={'ai_request_id': request_id, 'error': str(e)})
            return None
        if not raw:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            LOG.warning('request_status_corrupt', extra={'ai_request_id': request_id})
            return None

    def record(self, item, status: RequestStatus, error_message: Optional[str] = None) -> Optional[Dict[str, Any]]:
        now = self._clock()
        existing = self.get(item.id) or {}
        obj = {
            'request_id': item.id,
            'owner_id': item.owner_id,
            'operation_kind': item.operation_kind.value,
            'priority': item.priority.value,
            'status': status.value,
            'retry_count': item.retry_count,
            'error_message': error_message if error_message is not None else existing.get('error_message'),
            'created_at': existing.get('created_at', now),
            'updated_at': now,
        }
        try:
            self._store.set(self._key(item.id), json.dumps(obj), ttl_seconds=self.ttl)
        except StoreError as e:
            LOG.warning('request_status_save_failed', extra={'ai_request_id': item.id, 'status': status.value, 'error': str(e)})
            return None
        return obj
