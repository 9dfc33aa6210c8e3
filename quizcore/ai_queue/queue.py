"""
AI request queue over two sorted sets of the shared store.

Pending (``ai:queue``) is scored by priority tier + enqueue time, InFlight
(``ai:processing``) by absolute processing deadline. Every transition removes
the encoded member from one set and inserts a fresh encoding into the other;
only the caller whose remove succeeded performs the insert, so racing
fail/recover calls cannot requeue the same item twice.

Store errors are not caught here: the caller owns the outer retry loop.
"""
from __future__ import annotations

import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel

from quizcore.store import KeyValueStore, now_ms
from quizcore.utils import get_logger, log_queue_event, log_terminal_failure, log_recovery_sweep

from .codec import (
    OperationKind,
    Priority,
    QueueError,
    WorkItem,
    coerce_operation_kind,
    coerce_priority,
    decode,
    encode,
    new_item_id,
    priority_score,
)
from .status import RequestStatus, RequestStatusStore

LOG = get_logger()

MAX_RETRIES = 3
PROCESSING_TIMEOUT_MS = 300000  # 5 minutes


class ProcessingTimeoutError(QueueError):
    """Synthetic error recorded when a claimed item outlives its deadline."""


class QueueStatus(BaseModel):
    pending: int
    in_flight: int


def _describe(error: Union[BaseException, str, None]) -> str:
    if error is None:
        return ''
    if isinstance(error, BaseException):
        msg = str(error)
        return f'{type(error).__name__}: {msg}' if msg else type(error).__name__
    return str(error)


class AIRequestQueue:
    def __init__(
        self,
        store: KeyValueStore,
        *,
        queue_key: str = 'ai:queue',
        processing_key: str = 'ai:processing',
        max_retries: int = MAX_RETRIES,
        processing_timeout_ms: int = PROCESSING_TIMEOUT_MS,
        clock: Optional[Callable[[], int]] = None,
        status: Optional[RequestStatusStore] = None,
    ):
        if max_retries < 0:
            raise ValueError('max_retries must be >= 0')
        if processing_timeout_ms <= 0:
            raise ValueError('processing_timeout_ms must be > 0')
        self._store = store
        self.queue_key = queue_key
        self.processing_key = processing_key
        self.max_retries = max_retries
        self.processing_timeout_ms = processing_timeout_ms
        self._clock = clock or now_ms
        self.status = status

    @classmethod
    def from_settings(cls, store: KeyValueStore, settings, clock: Optional[Callable[[], int]] = None,
                      track_status: bool = True) -> 'AIRequestQueue':
        status = RequestStatusStore.from_settings(store, settings, clock=clock) if track_status else None
        return cls(
            store,
            queue_key=settings.AI_QUEUE_KEY,
            processing_key=settings.AI_PROCESSING_KEY,
            max_retries=settings.AI_MAX_RETRIES,
            processing_timeout_ms=settings.AI_PROCESSING_TIMEOUT_MS,
            clock=clock,
            status=status,
        )

    def _record(self, item: WorkItem, status: RequestStatus, error_message: Optional[str] = None):
        if self.status is not None:
            self.status.record(item, status, error_message=error_message)

    def _push_pending(self, item: WorkItem):
        self._store.add(self.queue_key, priority_score(item.priority, item.enqueued_at), encode(item))

    def enqueue(
        self,
        owner_id: str,
        operation_kind: Union[OperationKind, str],
        payload: Optional[Mapping[str, Any]],
        priority: Union[Priority, str],
    ) -> str:
        kind = coerce_operation_kind(operation_kind)
        prio = coerce_priority(priority)
        now = self._clock()
        item = WorkItem(
            id=new_item_id(now),
            owner_id=owner_id,
            operation_kind=kind,
            payload=dict(payload) if payload is not None else {},
            enqueued_at=now,
            priority=prio,
            retry_count=0,
        )
        self._push_pending(item)
        self._record(item, RequestStatus.PENDING)
        log_queue_event('ai_request_enqueued', item.id, kind.value, prio.value, 0, owner_id=owner_id)
        return item.id

    def dequeue(self) -> Optional[WorkItem]:
        deadline = self._clock() + self.processing_timeout_ms
        raw = self._store.claim_lowest(self.queue_key, self.processing_key, deadline)
        if raw is None:
            return None
        item = decode(raw)
        self._record(item, RequestStatus.PROCESSING)
        log_queue_event('ai_request_claimed', item.id, item.operation_kind.value, item.priority.value,
                        item.retry_count, deadline=deadline)
        return item

    def _in_flight(self) -> List[Tuple[str, float]]:
        return self._store.range_with_scores(self.processing_key)

    def _find_in_flight(self, request_id: str) -> Optional[Tuple[str, WorkItem]]:
        for raw, _deadline in self._in_flight():
            item = decode(raw)
            if item.id == request_id:
                return raw, item
        return None

    def complete(self, request_id: str) -> bool:
        found = self._find_in_flight(request_id)
        if found is None:
            LOG.info('ai_request_complete_not_found', extra={'ai_request_id': request_id})
            return False
        raw, item = found
        if not self._store.remove(self.processing_key, raw):
            return False
        self._record(item, RequestStatus.COMPLETED)
        log_queue_event('ai_request_completed', item.id, item.operation_kind.value, item.priority.value, item.retry_count)
        return True

    def _retry_or_discard(self, raw: str, item: WorkItem, error_message: str) -> Optional[bool]:
        """Returns True if requeued, False if discarded, None if another caller got there first."""
        if not self._store.remove(self.processing_key, raw):
            return None
        if item.retry_count < self.max_retries:
            retry = item.model_copy(update={
                'retry_count': item.retry_count + 1,
                'enqueued_at': self._clock(),
            })
            self._push_pending(retry)
            self._record(retry, RequestStatus.PENDING, error_message=error_message)
            log_queue_event('ai_request_requeued', retry.id, retry.operation_kind.value, retry.priority.value,
                            retry.retry_count, error=error_message)
            return True
        self._record(item, RequestStatus.FAILED, error_message=error_message)
        log_terminal_failure(item.id, item.operation_kind.value, item.retry_count, error_message)
        return False

    def fail(self, request_id: str, error: Union[BaseException, str, None] = None) -> bool:
        found = self._find_in_flight(request_id)
        if found is None:
            LOG.info('ai_request_fail_not_found', extra={'ai_request_id': request_id})
            return False
        raw, item = found
        return bool(self._retry_or_discard(raw, item, _describe(error)))

    def discard(self, request_id: str, reason: Union[BaseException, str, None] = None) -> bool:
        found = self._find_in_flight(request_id)
        if found is None:
            LOG.info('ai_request_discard_not_found', extra={'ai_request_id': request_id})
            return False
        raw, item = found
        if not self._store.remove(self.processing_key, raw):
            return False
        message = _describe(reason)
        self._record(item, RequestStatus.DISCARDED, error_message=message)
        log_terminal_failure(item.id, item.operation_kind.value, item.retry_count, message, reason='non_retryable')
        return True

    def recover_stuck_requests(self) -> int:
        start = time.time()
        now = self._clock()
        rows = self._in_flight()
        expired = requeued = discarded = 0
        for raw, deadline in rows:
            if deadline >= now:
                continue
            expired += 1
            item = decode(raw)
            timeout = ProcessingTimeoutError(
                f'no completion within {self.processing_timeout_ms} ms (deadline {int(deadline)}, now {now})'
            )
            outcome = self._retry_or_discard(raw, item, _describe(timeout))
            if outcome is True:
                requeued += 1
            elif outcome is False:
                discarded += 1
        if expired:
            log_recovery_sweep(len(rows), expired, requeued, discarded, int((time.time() - start) * 1000))
        return requeued

    def get_queue_status(self) -> QueueStatus:
        return QueueStatus(
            pending=self._store.cardinality(self.queue_key),
            in_flight=self._store.cardinality(self.processing_key),
        )

    def get_request_status(self, request_id: str) -> Optional[Dict[str, Any]]:
        if self.status is None:
            return None
        return self.status.get(request_id)
