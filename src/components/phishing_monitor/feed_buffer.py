"""Fixed-capacity recency cache for one feed."""

from collections import deque
from typing import Any, Dict, Iterator, List

from .models import FEED_BUFFER_SIZE, FeedRecord


class FeedBuffer:
    """Newest-first ring buffer; the oldest record is evicted once full.

    Not thread-safe on its own, the orchestrator serializes writes.
    """

    def __init__(self, capacity: int = FEED_BUFFER_SIZE):
        self.capacity = capacity
        self._records: deque = deque(maxlen=capacity)

    def add(self, record: FeedRecord) -> None:
        self._records.appendleft(record)

    def clear(self) -> None:
        self._records.clear()

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[FeedRecord]:
        return iter(list(self._records))

    def to_list(self) -> List[Dict[str, Any]]:
        return [record.to_dict() for record in self._records]

    @classmethod
    def from_list(cls, items: List[Dict[str, Any]], capacity: int = FEED_BUFFER_SIZE) -> "FeedBuffer":
        buffer = cls(capacity)
        # Stored newest-first; keep that order and the cap
        for item in items[:capacity]:
            buffer._records.append(FeedRecord.from_dict(item))
        return buffer
