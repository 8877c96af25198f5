"""
Chunk Scheduler

Design Decision: Worker Model
=============================

Options Considered:
1. asyncio.gather over every chunk
   - Unbounded concurrency, no way to hold back work on pause
2. Fixed pool of worker coroutines reading an asyncio.Queue
   - Bounded, but pausing means parking workers and the queue has no
     notion of "aborted, run again later"
3. Explicit run set + pending deque, one asyncio task per running chunk
   - Bounded by len(running) < concurrency
   - Every running chunk has its own asyncio task, which is exactly what
     a per-chunk cancellation handle needs to abort mid-transfer

Decision: Option 3

Signals:
- on_completed(part_number) when a chunk finishes
- join() raises the first failure; at that point queued work is dropped
  and running work is aborted
- join() returns when idle: nothing running and nothing startable
"""

import asyncio
import logging
from collections import deque
from enum import Enum
from typing import Awaitable, Callable, Deque, Dict, List, Optional, Set

from ..file.chunker import ChunkStatus, ChunkTask

logger = logging.getLogger(__name__)

Worker = Callable[[ChunkTask], Awaitable[Optional[int]]]
CompletedCallback = Callable[[int], None]


class PassOutcome(str, Enum):
    """How one upload pass ended once the scheduler went idle."""
    COMPLETE = 'complete'
    FAILED = 'failed'          # tasks existed, none completed
    INCOMPLETE = 'incomplete'  # some completed, some not (e.g. paused)


class ChunkScheduler:
    """
    Runs chunk uploads with at most `concurrency` in flight.

    Submission order is start order, not completion order.
    """

    def __init__(self, worker: Worker, concurrency: int = 3,
                 on_completed: Optional[CompletedCallback] = None):
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")
        self._worker = worker
        self.concurrency = concurrency
        self._on_completed = on_completed

        self._pending: Deque[ChunkTask] = deque()
        self._running: Dict[asyncio.Task, ChunkTask] = {}
        self._planned: Set[int] = set()
        self._completed: Set[int] = set()
        self._paused = False
        self._error: Optional[BaseException] = None
        self._idle = asyncio.Event()
        self._idle.set()

        # High-water mark of simultaneous runs
        self.peak_running = 0

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def running_count(self) -> int:
        return len(self._running)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def completed(self) -> Set[int]:
        return set(self._completed)

    @property
    def planned_count(self) -> int:
        return len(self._planned)

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    def submit(self, task: ChunkTask):
        """Queue a chunk; it starts as soon as a slot is free."""
        if self._error is not None:
            logger.debug(f"Dropping chunk {task.part_number}: scheduler has failed")
            return
        self._planned.add(task.part_number)
        self._completed.discard(task.part_number)
        task.status = ChunkStatus.PENDING
        self._pending.append(task)
        self._fill()
        self._update_idle()

    def _fill(self):
        while (not self._paused and self._error is None and self._pending
               and len(self._running) < self.concurrency):
            task = self._pending.popleft()
            runner = asyncio.ensure_future(self._run(task))
            runner.add_done_callback(self._runner_done)
            task.handle.bind(runner)
            self._running[runner] = task
            self.peak_running = max(self.peak_running, len(self._running))
            logger.debug(f"Started chunk {task.part_number} "
                         f"({len(self._running)}/{self.concurrency} running)")

    async def _run(self, task: ChunkTask):
        try:
            part_number = await self._worker(task)
        except Exception as e:
            if self._error is None:
                logger.debug(f"Chunk {task.part_number} failed, discarding remaining work")
                self._error = e
                self.clear(spare=asyncio.current_task())
        else:
            if part_number is not None:
                self._completed.add(part_number)
                if self._on_completed:
                    self._on_completed(part_number)

    def _runner_done(self, runner: asyncio.Task):
        # Also reached by runners cancelled before their first step
        self._running.pop(runner, None)
        self._fill()
        self._update_idle()

    def _update_idle(self):
        if not self._running and (self._paused or not self._pending
                                  or self._error is not None):
            self._idle.set()
        else:
            self._idle.clear()

    def pause(self) -> List[ChunkTask]:
        """
        Stop starting new work and abort every running chunk.

        Aborted chunks are marked right away, so an immediate resume()
        finds them even before their tasks have unwound.

        Returns:
            The chunks that were aborted
        """
        self._paused = True
        aborted = []
        for task in list(self._running.values()):
            if task.handle.cancelled:
                continue
            task.status = ChunkStatus.ABORTED
            task.handle.cancel()
            aborted.append(task)
        self._update_idle()
        return aborted

    def resume(self, tasks: Optional[List[ChunkTask]] = None):
        """Start working again, re-queueing the given (aborted) chunks first."""
        self._paused = False
        for task in reversed(tasks or []):
            task.renew_handle()
            self._planned.add(task.part_number)
            self._pending.appendleft(task)
        self._fill()
        self._update_idle()

    def clear(self, spare: Optional[asyncio.Task] = None):
        """Drop queued work and abort everything in flight except `spare`."""
        self._pending.clear()
        for runner, task in list(self._running.items()):
            if runner is not spare:
                task.handle.cancel()
        self._update_idle()

    def resolve(self) -> PassOutcome:
        """Classify the current idle state."""
        if not self._completed and self._planned:
            return PassOutcome.FAILED
        if self._completed >= self._planned:
            return PassOutcome.COMPLETE
        return PassOutcome.INCOMPLETE

    async def join(self) -> PassOutcome:
        """
        Wait until idle.

        Raises:
            The first failure of any chunk
        """
        # Work may restart between the event firing and this coroutine resuming
        while True:
            await self._idle.wait()
            if self._idle.is_set():
                break
        if self._error is not None:
            raise self._error
        return self.resolve()
