"""
Tests for the TaskScheduler worker pool: bounds, backpressure, cancellation.
"""

import asyncio

import pytest

from pyhashlib import FileTask, TaskScheduler


def tasks(n):
    return [FileTask(path=f"/data/file{i}", size=i) for i in range(n)]


class ConcurrencyRecorder:
    """Handler that records how many tasks run at the same time."""

    def __init__(self, delay: float = 0.01) -> None:
        self.delay = delay
        self.running = 0
        self.peak = 0
        self.handled = []

    async def __call__(self, task: FileTask) -> None:
        self.running += 1
        self.peak = max(self.peak, self.running)
        try:
            await asyncio.sleep(self.delay)
            self.handled.append(task.path)
        finally:
            self.running -= 1


class TestTaskScheduler:
    def test_rejects_zero_workers(self, quiet_logger):
        with pytest.raises(ValueError):
            TaskScheduler(0, ConcurrencyRecorder(), quiet_logger)

    @pytest.mark.asyncio
    async def test_submit_requires_start(self, quiet_logger):
        scheduler = TaskScheduler(1, ConcurrencyRecorder(), quiet_logger)
        with pytest.raises(RuntimeError, match="not started"):
            await scheduler.submit(tasks(1)[0])

    @pytest.mark.asyncio
    async def test_every_task_handled_exactly_once(self, quiet_logger):
        recorder = ConcurrencyRecorder(delay=0)
        scheduler = TaskScheduler(4, recorder, quiet_logger)
        await scheduler.start()
        for task in tasks(40):
            assert await scheduler.submit(task)
        await scheduler.join()

        assert sorted(recorder.handled) == sorted(t.path for t in tasks(40))
        assert len(recorder.handled) == len(set(recorder.handled))
        assert not scheduler.is_running

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self, quiet_logger):
        recorder = ConcurrencyRecorder(delay=0.01)
        scheduler = TaskScheduler(3, recorder, quiet_logger)
        await scheduler.start()
        for task in tasks(20):
            await scheduler.submit(task)
        await scheduler.join()

        assert recorder.peak == 3

    @pytest.mark.asyncio
    async def test_queue_is_bounded(self, quiet_logger):
        release = asyncio.Event()

        async def blocked(task):
            await release.wait()

        scheduler = TaskScheduler(1, blocked, quiet_logger, queue_size=2)
        await scheduler.start()
        items = tasks(4)
        await scheduler.submit(items[0])
        await asyncio.sleep(0)  # worker claims the first task
        await scheduler.submit(items[1])
        await scheduler.submit(items[2])
        assert scheduler.pending == 2

        blocked_submit = asyncio.create_task(scheduler.submit(items[3]))
        await asyncio.sleep(0.01)
        assert not blocked_submit.done()

        release.set()
        assert await asyncio.wait_for(blocked_submit, timeout=1)
        await scheduler.join()

    @pytest.mark.asyncio
    async def test_cancel_drops_queued_and_finishes_in_flight(self, quiet_logger):
        started = asyncio.Event()
        release = asyncio.Event()
        finished = []

        async def handler(task):
            started.set()
            await release.wait()
            finished.append(task.path)

        dropped = []
        scheduler = TaskScheduler(1, handler, quiet_logger, queue_size=5, on_dropped=dropped.append)
        await scheduler.start()
        items = tasks(4)
        for task in items:
            await scheduler.submit(task)
        await started.wait()

        assert scheduler.active_tasks == {items[0].path: items[0]}
        assert scheduler.cancel() == items[1:]
        late = tasks(5)[4]
        assert not await scheduler.submit(late)

        release.set()
        await scheduler.join()
        assert finished == [items[0].path]
        assert dropped == items[1:] + [late]
        assert scheduler.active_tasks == {}

    @pytest.mark.asyncio
    async def test_cancel_unblocks_waiting_submit(self, quiet_logger):
        release = asyncio.Event()

        async def blocked(task):
            await release.wait()

        dropped = []
        scheduler = TaskScheduler(1, blocked, quiet_logger, queue_size=1, on_dropped=dropped.append)
        await scheduler.start()
        items = tasks(3)
        await scheduler.submit(items[0])
        await asyncio.sleep(0)
        await scheduler.submit(items[1])

        waiting = asyncio.create_task(scheduler.submit(items[2]))
        await asyncio.sleep(0.01)
        assert not waiting.done()

        assert scheduler.cancel() == [items[1]]
        assert await asyncio.wait_for(waiting, timeout=1) is False
        release.set()
        await asyncio.wait_for(scheduler.join(), timeout=1)
        # the task whose put completed after cancel is dropped by the worker
        assert dropped == [items[1], items[2]]

    @pytest.mark.asyncio
    async def test_every_submitted_task_is_handled_or_dropped(self, quiet_logger):
        recorder = ConcurrencyRecorder(delay=0.005)
        dropped = []
        scheduler = TaskScheduler(2, recorder, quiet_logger, queue_size=3, on_dropped=dropped.append)
        await scheduler.start()
        items = tasks(30)

        async def feed():
            for task in items:
                if not await scheduler.submit(task):
                    return task
            return None

        feeder = asyncio.create_task(feed())
        await asyncio.sleep(0.02)
        scheduler.cancel()
        last_submitted = await feeder
        await scheduler.join()

        submitted = items if last_submitted is None else items[:items.index(last_submitted) + 1]
        assert sorted(recorder.handled + [t.path for t in dropped]) == sorted(t.path for t in submitted)
        assert not set(recorder.handled) & {t.path for t in dropped}
        assert dropped

    @pytest.mark.asyncio
    async def test_handler_errors_do_not_kill_workers(self, quiet_logger):
        handled = []

        async def flaky(task):
            if task.size % 2:
                raise OSError("boom")
            handled.append(task.path)

        scheduler = TaskScheduler(2, flaky, quiet_logger)
        await scheduler.start()
        for task in tasks(10):
            await scheduler.submit(task)
        await scheduler.join()
        assert len(handled) == 5
