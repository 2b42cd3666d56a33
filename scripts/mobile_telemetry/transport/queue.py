"""
In-memory dispatch queue.

Holds QueueEntry objects in enqueue order. The queue is owned by a single
Dispatcher; nothing else reads or mutates it.
"""

import bisect
import itertools
import logging
from dataclasses import dataclass, field, replace
from typing import Iterator, List

from ..schema import Category, Record

logger = logging.getLogger(__name__)

MAX_RETRIES = 3


@dataclass(frozen=True)
class QueueEntry:
    """A record waiting to be dispatched."""
    category: Category
    record: Record
    enqueued_at: float
    retry_count: int = 0
    sequence: int = field(default=0, compare=False)

    def retried(self) -> "QueueEntry":
        """Copy of this entry with the retry count bumped."""
        return replace(self, retry_count=self.retry_count + 1)

    @property
    def can_retry(self) -> bool:
        return self.retry_count < MAX_RETRIES


class EventQueue:
    """
    Ordered queue of QueueEntry.

    Bounded by flush policy rather than by a hard capacity. Entries keep
    the sequence number assigned on first append, so re-queued failures go
    back in front of anything enqueued after them.
    """

    def __init__(self):
        self._entries: List[QueueEntry] = []
        self._sequence = itertools.count()

    def append(self, entry: QueueEntry) -> QueueEntry:
        """Append a new entry and stamp it with the next sequence number."""
        entry = replace(entry, sequence=next(self._sequence))
        self._entries.append(entry)
        return entry

    def requeue(self, entry: QueueEntry) -> bool:
        """
        Put a failed entry back for another attempt.

        Returns:
            True if re-queued, False if the entry exhausted its retries
            and was dropped.
        """
        if not entry.can_retry:
            logger.debug(
                "Dropping %s record after %d retries",
                entry.category.value, entry.retry_count,
            )
            return False

        retried = entry.retried()
        keys = [e.sequence for e in self._entries]
        self._entries.insert(bisect.bisect_left(keys, retried.sequence), retried)
        return True

    def drain(self) -> List[QueueEntry]:
        """Remove and return every entry, oldest first."""
        entries = self._entries
        self._entries = []
        return entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[QueueEntry]:
        return iter(list(self._entries))
