from __future__ import annotations

import threading
import time
from typing import Any, Callable, Dict, Iterable, Optional, Tuple, Type, Union

from quizcore.store import StoreError
from quizcore.utils import get_logger

from .codec import OperationKind, WorkItem, coerce_operation_kind
from .queue import AIRequestQueue

LOG = get_logger()

Handler = Callable[[WorkItem], Any]


class NonRetryableError(Exception):
    """Raise from a handler when retrying cannot help (e.g. malformed payload)."""


class QueueWorker:
    """Claims items one at a time and dispatches them by operation kind.

    Handlers are opaque to the queue: success completes the item, a
    non-retryable error discards it, anything else goes through ``fail``.

    Example:
        worker = QueueWorker(queue)

        @worker.handler('quiz_generation')
        def generate(item):
            ...

        worker.run(stop_event)
    """

    def __init__(
        self,
        queue: AIRequestQueue,
        handlers: Optional[Dict[Union[OperationKind, str], Handler]] = None,
        *,
        poll_interval: float = 1.0,
        non_retryable: Iterable[Type[BaseException]] = (),
    ):
        self.queue = queue
        self.poll_interval = poll_interval
        self.non_retryable: Tuple[Type[BaseException], ...] = (NonRetryableError,) + tuple(non_retryable)
        self._handlers: Dict[OperationKind, Handler] = {}
        for kind, fn in (handlers or {}).items():
            self.register(kind, fn)

    def register(self, kind: Union[OperationKind, str], fn: Handler):
        self._handlers[coerce_operation_kind(kind)] = fn

    def handler(self, kind: Union[OperationKind, str]):
        def decorator(fn: Handler) -> Handler:
            self.register(kind, fn)
            return fn
        return decorator

    def run_once(self) -> Optional[WorkItem]:
        item = self.queue.dequeue()
        if item is None:
            return None
        fn = self._handlers.get(item.operation_kind)
        if fn is None:
            LOG.error('ai_worker_no_handler', extra={'ai_request_id': item.id, 'operation_kind': item.operation_kind.value})
            self.queue.discard(item.id, f'no handler registered for {item.operation_kind.value}')
            return item
        start = time.time()
        try:
            fn(item)
        except self.non_retryable as e:
            LOG.warning('ai_worker_non_retryable', extra={'ai_request_id': item.id, 'error': str(e)})
            self.queue.discard(item.id, e)
            return item
        except Exception as e:
            LOG.exception('ai_worker_handler_failed', exc_info=True, extra={'ai_request_id': item.id})
            self.queue.fail(item.id, e)
            return item
        self.queue.complete(item.id)
        LOG.info('ai_worker_processed', extra={
            'ai_request_id': item.id,
            'operation_kind': item.operation_kind.value,
            'duration_ms': int((time.time() - start) * 1000),
        })
        return item

    def run(self, stop_event: threading.Event, max_items: Optional[int] = None) -> int:
        processed = 0
        LOG.info('ai_worker_started', extra={'handlers': sorted(k.value for k in self._handlers)})
        while not stop_event.is_set():
            if max_items is not None and processed >= max_items:
                break
            try:
                item = self.run_once()
            except StoreError as e:
                LOG.warning('ai_worker_store_error', extra={'error': str(e)})
                stop_event.wait(self.poll_interval)
                continue
            if item is None:
                stop_event.wait(self.poll_interval)
                continue
            processed += 1
        LOG.info('ai_worker_stopped', extra={'processed': processed})
        return processed


class RecoverySweeper:
    """Runs ``recover_stuck_requests`` on a fixed interval in a daemon thread."""

    def __init__(self, queue: AIRequestQueue, interval: float = 120.0):
        self.queue = queue
        self.interval = interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def run_once(self) -> int:
        try:
            return self.queue.recover_stuck_requests()
        except Exception:
            LOG.exception('recovery_sweep_failed', exc_info=True)
            return 0

    def _loop(self):
        while not self._stop.wait(self.interval):
            self.run_once()

    def start(self):
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name='ai-recovery-sweeper', daemon=True)
        self._thread.start()
        LOG.info('recovery_sweeper_started', extra={'interval': self.interval})

    def stop(self, timeout: Optional[float] = 5.0):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        LOG.info('recovery_sweeper_stopped')

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
