"""
test_scheduler.py - Bounded chunk scheduling
"""

import asyncio

import pytest

from pan_uploader.file.chunker import ChunkPlanner, ChunkStatus
from pan_uploader.transfer.scheduler import ChunkScheduler, PassOutcome


def plan(count: int):
    return ChunkPlanner(1).plan(count)


class SlowWorker:
    """Finishes chunks after a delay; counts overlap."""

    def __init__(self, delay: float = 0.01, fail: int = None):
        self.delay = delay
        self.fail = fail
        self.started = []
        self.inflight = 0
        self.peak = 0

    async def __call__(self, task):
        self.started.append(task.part_number)
        self.inflight += 1
        self.peak = max(self.peak, self.inflight)
        try:
            await asyncio.sleep(self.delay)
            if task.part_number == self.fail:
                raise RuntimeError(f"chunk {task.part_number} broke")
            task.status = ChunkStatus.COMPLETED
            return task.part_number
        finally:
            self.inflight -= 1


class TestChunkScheduler:

    @pytest.mark.asyncio
    async def test_runs_everything_within_bound(self):
        worker = SlowWorker()
        completed = []
        scheduler = ChunkScheduler(worker, concurrency=2, on_completed=completed.append)
        for task in plan(6):
            scheduler.submit(task)

        assert await scheduler.join() is PassOutcome.COMPLETE
        assert sorted(completed) == [1, 2, 3, 4, 5, 6]
        assert worker.peak <= 2
        assert scheduler.peak_running == 2

    @pytest.mark.asyncio
    async def test_starts_in_submission_order(self):
        worker = SlowWorker()
        scheduler = ChunkScheduler(worker, concurrency=1)
        for task in plan(4):
            scheduler.submit(task)

        await scheduler.join()

        assert worker.started == [1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_empty_scheduler_is_complete(self):
        scheduler = ChunkScheduler(SlowWorker())
        assert await scheduler.join() is PassOutcome.COMPLETE

    @pytest.mark.asyncio
    async def test_first_failure_is_raised_and_queue_dropped(self):
        worker = SlowWorker(fail=1)
        scheduler = ChunkScheduler(worker, concurrency=1)
        for task in plan(5):
            scheduler.submit(task)

        with pytest.raises(RuntimeError, match="chunk 1 broke"):
            await scheduler.join()

        assert worker.started == [1]
        assert scheduler.pending_count == 0
        assert isinstance(scheduler.error, RuntimeError)

    @pytest.mark.asyncio
    async def test_submit_after_failure_is_ignored(self):
        scheduler = ChunkScheduler(SlowWorker(fail=1))
        scheduler.submit(plan(1)[0])
        with pytest.raises(RuntimeError):
            await scheduler.join()

        scheduler.submit(plan(2)[1])

        assert scheduler.pending_count == 0
        assert scheduler.running_count == 0

    @pytest.mark.asyncio
    async def test_pause_aborts_running_and_holds_queue(self):
        gate = asyncio.Event()

        async def worker(task):
            try:
                await gate.wait()
            except asyncio.CancelledError:
                return None
            return task.part_number

        scheduler = ChunkScheduler(worker, concurrency=2)
        tasks = plan(4)
        for task in tasks:
            scheduler.submit(task)

        aborted = scheduler.pause()

        assert [t.part_number for t in aborted] == [1, 2]
        assert all(t.status is ChunkStatus.ABORTED for t in aborted)
        assert await scheduler.join() is PassOutcome.FAILED
        assert scheduler.pending_count == 2

        gate.set()
        scheduler.resume(aborted)

        assert await scheduler.join() is PassOutcome.COMPLETE
        assert scheduler.completed == {1, 2, 3, 4}

    @pytest.mark.asyncio
    async def test_partial_completion_is_incomplete(self):
        async def worker(task):
            return task.part_number if task.part_number == 1 else None

        scheduler = ChunkScheduler(worker, concurrency=2)
        for task in plan(2):
            scheduler.submit(task)

        assert await scheduler.join() is PassOutcome.INCOMPLETE

    @pytest.mark.asyncio
    async def test_clear_from_inside_worker_aborts_it(self):
        scheduler = None

        async def worker(task):
            scheduler.clear()
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                return None
            return task.part_number

        scheduler = ChunkScheduler(worker, concurrency=1)
        for task in plan(2):
            scheduler.submit(task)

        assert await asyncio.wait_for(scheduler.join(), 5) is PassOutcome.FAILED
        assert scheduler.pending_count == 0

    def test_invalid_concurrency(self):
        with pytest.raises(ValueError):
            ChunkScheduler(SlowWorker(), concurrency=0)
