"""FIFO queue of tasks waiting for capacity."""

from collections import deque
from typing import Callable, Deque, Iterator, List, Optional
from loguru import logger


class DeferredQueue:
    """Tasks that could not be placed, retried when capacity frees up.

    Entries leave the queue only when an attempt reports success; failures
    go back to the tail in their original relative order.
    """

    def __init__(self) -> None:
        self._entries: Deque[int] = deque()

    def push(self, task_id: int) -> None:
        if task_id in self._entries:
            return
        self._entries.append(task_id)
        logger.debug(f"Task {task_id} deferred ({len(self._entries)} waiting)")

    def retry(
        self,
        attempt: Callable[[int], bool],
        predicate: Optional[Callable[[int], bool]] = None,
    ) -> List[int]:
        """Run ``attempt`` over the queue head to tail, return the tasks it placed.

        Entries rejected by ``predicate`` are not attempted and keep their
        position relative to the entries that are.
        """
        batch = list(self._entries)
        self._entries.clear()

        placed = []
        remaining = []
        for task_id in batch:
            if (predicate is None or predicate(task_id)) and attempt(task_id):
                placed.append(task_id)
            else:
                remaining.append(task_id)

        # Anything deferred while the batch ran goes behind the survivors
        arrived = list(self._entries)
        self._entries.clear()
        self._entries.extend(remaining)
        self._entries.extend(t for t in arrived if t not in remaining)

        if placed:
            logger.info(f"Placed {len(placed)} deferred tasks, {len(self._entries)} still waiting")
        return placed

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._entries

    def __iter__(self) -> Iterator[int]:
        return iter(list(self._entries))
