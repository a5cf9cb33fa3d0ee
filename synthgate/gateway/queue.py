"""Priority queue for batch submissions.

Lower ``Task.priority`` runs first; equal priorities keep submission order.
Batch workers pull from one shared queue, so the number of workers bounds
the batch's parallelism.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from heapq import heappop, heappush

from synthgate.gateway.types import Task

logger = logging.getLogger(__name__)


@dataclass(order=True)
class _PriorityItem:
    """Wrapper for heap queue ordering."""

    priority: int
    sequence: int  # Tie-breaker for FIFO within same priority
    task: Task = field(compare=False)


class TaskQueue:
    """Priority queue of tasks.

    Usage:
        queue = TaskQueue()
        await queue.enqueue_batch(tasks)

        while (task := await queue.dequeue()) is not None:
            ...
    """

    def __init__(self):
        self._heap: list[_PriorityItem] = []
        self._sequence: int = 0
        self._lock = asyncio.Lock()

    async def enqueue(self, task: Task) -> None:
        async with self._lock:
            self._push(task)

    async def enqueue_batch(self, tasks: list[Task]) -> int:
        """Add multiple tasks. Returns the number enqueued."""
        async with self._lock:
            for task in tasks:
                self._push(task)
        logger.debug("Enqueued batch of %d tasks", len(tasks))
        return len(tasks)

    def _push(self, task: Task) -> None:
        self._sequence += 1
        heappush(self._heap, _PriorityItem(priority=task.priority, sequence=self._sequence, task=task))

    async def dequeue(self) -> Task | None:
        """Next task by priority, or None when the queue is empty."""
        async with self._lock:
            if not self._heap:
                return None
            return heappop(self._heap).task

    def __len__(self) -> int:
        return len(self._heap)
