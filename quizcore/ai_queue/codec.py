from __future__ import annotations

import secrets
import string
from enum import Enum
from typing import Any, Dict, Generic, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError


class QueueError(Exception):
    pass


class QueueDecodeError(QueueError):
    """A stored member could not be decoded back into a WorkItem."""


class InvalidOperationKind(QueueError, ValueError):
    pass


class InvalidPriority(QueueError, ValueError):
    pass


class Priority(str, Enum):
    LOW = 'low'
    NORMAL = 'normal'
    HIGH = 'high'


class OperationKind(str, Enum):
    PDF_EXTRACTION = 'pdf_extraction'
    QUIZ_GENERATION = 'quiz_generation'
    FLASHCARD_GENERATION = 'flashcard_generation'


# Lower score is claimed first. Tiers are 10^15 apart and timestamps are
# bounded below 10^15 ms, so bands never overlap and every score stays
# under 2^53 (exact as a float64 sorted-set score).
PRIORITY_TIERS: Dict[Priority, int] = {
    Priority.HIGH: 0,
    Priority.NORMAL: 10 ** 15,
    Priority.LOW: 2 * 10 ** 15,
}
MAX_TIMESTAMP_MS = 10 ** 15

_ID_ALPHABET = string.ascii_lowercase + string.digits

PayloadT = TypeVar('PayloadT')


class WorkItem(BaseModel, Generic[PayloadT]):
    model_config = ConfigDict(frozen=True)

    id: str
    owner_id: str
    operation_kind: OperationKind
    payload: PayloadT
    enqueued_at: int = Field(..., ge=0)
    priority: Priority
    retry_count: int = Field(0, ge=0)


def coerce_priority(value: Union[Priority, str, None]) -> Priority:
    if value is None:
        raise InvalidPriority('priority is required')
    if isinstance(value, Priority):
        return value
    try:
        return Priority(str(value).lower())
    except ValueError:
        raise InvalidPriority(f'unknown priority: {value!r}')


def coerce_operation_kind(value: Union[OperationKind, str, None]) -> OperationKind:
    if isinstance(value, OperationKind):
        return value
    try:
        return OperationKind(value)
    except ValueError:
        raise InvalidOperationKind(f'unknown operation kind: {value!r}')


def priority_score(priority: Union[Priority, str], enqueued_at: int) -> int:
    p = coerce_priority(priority)
    if enqueued_at < 0 or enqueued_at >= MAX_TIMESTAMP_MS:
        raise ValueError(f'enqueued_at out of range: {enqueued_at}')
    return PRIORITY_TIERS[p] + int(enqueued_at)


def new_item_id(now: int) -> str:
    suffix = ''.join(secrets.choice(_ID_ALPHABET) for _ in range(8))
    return f'{now}-{suffix}'


def encode(item: WorkItem) -> str:
    return item.model_dump_json()


def decode(raw: Any) -> WorkItem[Dict[str, Any]]:
    if not isinstance(raw, (str, bytes)):
        raise QueueDecodeError(f'unexpected member type: {type(raw).__name__}')
    try:
        return WorkItem[Dict[str, Any]].model_validate_json(raw)
    except ValidationError as e:
        raise QueueDecodeError(f'malformed work item: {e.error_count()} error(s): {e}') from e
