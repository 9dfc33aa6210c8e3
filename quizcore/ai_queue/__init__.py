"""
AI request queue: priority scheduling, retries and stuck-request recovery for
PDF extraction, quiz generation and flashcard generation jobs.
"""
from .codec import (
    WorkItem, Priority, OperationKind, PRIORITY_TIERS, priority_score, new_item_id, encode, decode,
    QueueError, QueueDecodeError, InvalidOperationKind, InvalidPriority,
)
from .status import RequestStatus, RequestStatusStore
from .queue import AIRequestQueue, QueueStatus, ProcessingTimeoutError, MAX_RETRIES, PROCESSING_TIMEOUT_MS
from .worker import QueueWorker, RecoverySweeper, NonRetryableError

__all__ = [
    'WorkItem', 'Priority', 'OperationKind', 'PRIORITY_TIERS', 'priority_score', 'new_item_id', 'encode', 'decode',
    'QueueError', 'QueueDecodeError', 'InvalidOperationKind', 'InvalidPriority',
    'RequestStatus', 'RequestStatusStore',
    'AIRequestQueue', 'QueueStatus', 'ProcessingTimeoutError', 'MAX_RETRIES', 'PROCESSING_TIMEOUT_MS',
    'QueueWorker', 'RecoverySweeper', 'NonRetryableError',
]
