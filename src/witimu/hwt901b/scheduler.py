from __future__ import annotations

import heapq
import itertools
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass
class TimerHandle:
    deadline: float
    callback: Callable[..., Any]
    args: Tuple[Any, ...] = ()
    label: str = ""
    cancelled: bool = field(default=False)

    def cancel(self) -> None:
        self.cancelled = True


class Scheduler:
    """
    Single-threaded timer queue.

    Timers only fire from :meth:`run_due`, which the host loop calls between
    serial polls. The clock is injectable so tests can advance time manually.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._heap: List[Tuple[float, int, TimerHandle]] = []
        self._seq = itertools.count()

    def now(self) -> float:
        return self._clock()

    def call_later(self, delay_sec: float, callback: Callable[..., Any], *args: Any, label: str = "") -> TimerHandle:
        handle = TimerHandle(
            deadline=self._clock() + max(delay_sec, 0.0),
            callback=callback,
            args=args,
            label=label,
        )
        heapq.heappush(self._heap, (handle.deadline, next(self._seq), handle))
        return handle

    def run_due(self) -> int:
        """Fire every timer whose deadline has passed, in deadline order."""
        fired = 0
        while self._heap:
            deadline, _, handle = self._heap[0]
            if handle.cancelled:
                heapq.heappop(self._heap)
                continue
            if deadline > self._clock():
                break
            heapq.heappop(self._heap)
            handle.cancelled = True
            fired += 1
            handle.callback(*handle.args)
        return fired

    def next_deadline(self) -> Optional[float]:
        while self._heap and self._heap[0][2].cancelled:
            heapq.heappop(self._heap)
        return self._heap[0][0] if self._heap else None

    def pending(self) -> int:
        return sum(1 for _, _, handle in self._heap if not handle.cancelled)

    def cancel_all(self) -> None:
        for _, _, handle in self._heap:
            handle.cancel()
        self._heap.clear()
