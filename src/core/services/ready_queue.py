# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Time and priority ordered queue of pending job entries."""

import heapq
import itertools
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterator, Optional

from src.core.models.job import Priority


@dataclass(frozen=True, order=True)
class ReadyEntry:
    """A job's next due time.

    Ordered by due time, then higher priority, then insertion sequence.
    """

    due_at: datetime
    rank: int
    sequence: int
    job_id: str = field(compare=False)

    @property
    def priority(self) -> Priority:
        return Priority(-self.rank)


class ReadyQueue:
    """Min-heap of ReadyEntry with lazy removal.

    Each job has at most one live entry, tracked in a side index. Removed
    entries stay in the heap as tombstones and are skipped when they reach
    the top. Not thread-safe; callers hold the scheduler lock.
    """

    def __init__(self) -> None:
        self._heap: list[ReadyEntry] = []
        self._live: dict[str, ReadyEntry] = {}
        self._counter = itertools.count()

    def __len__(self) -> int:
        return len(self._live)

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._live

    def __iter__(self) -> Iterator[ReadyEntry]:
        """Live entries in dispatch order."""
        return iter(sorted(self._live.values()))

    def push(self, job_id: str, due_at: datetime, priority: Priority) -> ReadyEntry:
        """Insert a new entry for a job.

        :raises ValueError: If the job already has a queued entry
        """
        if job_id in self._live:
            raise ValueError(f"Job {job_id} is already queued")
        entry = ReadyEntry(
            due_at=due_at,
            rank=-int(priority),
            sequence=next(self._counter),
            job_id=job_id,
        )
        self._live[job_id] = entry
        heapq.heappush(self._heap, entry)
        return entry

    def restore(self, entry: ReadyEntry) -> None:
        """Put a popped entry back with its original ordering."""
        if entry.job_id in self._live:
            raise ValueError(f"Job {entry.job_id} is already queued")
        self._live[entry.job_id] = entry
        heapq.heappush(self._heap, entry)

    def reschedule(self, job_id: str, due_at: datetime, priority: Priority) -> ReadyEntry:
        """Replace a job's entry (or add one) with a new due time."""
        self.remove(job_id)
        return self.push(job_id, due_at, priority)

    def remove(self, job_id: str) -> bool:
        """Drop a job's entry; returns False if it had none."""
        entry = self._live.pop(job_id, None)
        if entry is None:
            return False
        if len(self._heap) > 2 * len(self._live) + 16:
            self._compact()
        return True

    def get(self, job_id: str) -> Optional[ReadyEntry]:
        return self._live.get(job_id)

    def peek(self) -> Optional[ReadyEntry]:
        """Earliest live entry without removing it."""
        self._discard_stale()
        return self._heap[0] if self._heap else None

    def pop(self) -> Optional[ReadyEntry]:
        """Remove and return the earliest live entry."""
        self._discard_stale()
        if not self._heap:
            return None
        entry = heapq.heappop(self._heap)
        del self._live[entry.job_id]
        return entry

    def clear(self) -> None:
        self._heap.clear()
        self._live.clear()

    def _discard_stale(self) -> None:
        while self._heap and self._live.get(self._heap[0].job_id) is not self._heap[0]:
            heapq.heappop(self._heap)

    def _compact(self) -> None:
        self._heap = list(self._live.values())
        heapq.heapify(self._heap)
