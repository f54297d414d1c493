import asyncio
from typing import Awaitable, Callable, Dict, List, Optional

from .async_logger import AsyncLogger
from .models import FileTask


class TaskScheduler:
    """
    Fixed pool of worker coroutines fed by a bounded task queue.

    ``submit`` blocks while the queue is full, so memory stays proportional to
    the pool size instead of the number of discovered files. Each queued task
    is taken by exactly one worker; a worker runs its handler to completion
    before taking the next task.

    Every task passed to :meth:`submit` ends up in exactly one place: the
    handler, or ``on_dropped`` once the scheduler is cancelled.
    """

    def __init__(
            self,
            max_concurrent: int,
            handler: Callable[[FileTask], Awaitable[None]],
            logger: AsyncLogger,
            queue_size: Optional[int] = None,
            on_dropped: Optional[Callable[[FileTask], None]] = None,
    ) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        self._max_concurrent = max_concurrent
        self._queue_size = queue_size or 2 * max_concurrent
        self._handler = handler
        self._on_dropped = on_dropped
        self._log = logger

        self._queue: Optional[asyncio.Queue] = None
        self._cancelled: bool = False
        self._worker_tasks: List[asyncio.Task] = []
        self.active_tasks: Dict[str, FileTask] = {}

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._queue is not None and bool(self._worker_tasks)

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    @property
    def queue_size(self) -> int:
        return self._queue_size

    @property
    def pending(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Launch workers if not already running."""
        if self.is_running:
            return
        self._queue = asyncio.Queue(maxsize=self._queue_size)
        self._worker_tasks = [
            asyncio.create_task(self._worker(n)) for n in range(self._max_concurrent)
        ]
        self._log.debug(
            "Scheduler launched: %d workers, queue capacity %d",
            self._max_concurrent, self._queue_size,
        )

    async def submit(self, task: FileTask) -> bool:
        """
        Queue *task*, waiting for room if the queue is full.

        Returns False once the scheduler is cancelled. A task submitted after
        cancellation goes straight to ``on_dropped``; one whose ``put`` was
        still waiting when cancellation arrived is dropped by the worker that
        takes it.
        """
        if self._queue is None:
            raise RuntimeError("Scheduler is not started")
        if self._cancelled:
            self._drop(task)
            return False
        await self._queue.put(task)
        return not self._cancelled

    def cancel(self) -> List[FileTask]:
        """
        Stop admitting tasks and drop the ones not yet claimed.

        Tasks already claimed by a worker run to completion.
        Returns the dropped tasks, each of which was also passed to
        ``on_dropped``.
        """
        self._cancelled = True
        dropped: List[FileTask] = []
        sentinels = 0
        if self._queue is not None:
            while True:
                try:
                    item = self._queue.get_nowait()
                except asyncio.QueueEmpty:
                    break
                self._queue.task_done()
                if item is None:
                    sentinels += 1
                else:
                    dropped.append(item)
            # Sentinels queued by join() must still reach the workers.
            for _ in range(sentinels):
                self._queue.put_nowait(None)
        if dropped:
            self._log.debug("Scheduler cancelled: %d queued task(s) dropped", len(dropped))
        for task in dropped:
            self._drop(task)
        return dropped

    async def join(self) -> None:
        """Let workers finish everything admitted, then stop them."""
        if not self.is_running:
            return
        for _ in range(len(self._worker_tasks)):
            await self._queue.put(None)  # one sentinel per worker
        await asyncio.gather(*self._worker_tasks)
        self._worker_tasks.clear()
        self._queue = None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _drop(self, task: FileTask) -> None:
        if self._on_dropped is None:
            return
        try:
            self._on_dropped(task)
        except Exception as e:
            self._log.error("Drop callback failed on %s: %s", task.path, e)

    async def _worker(self, worker_id: int) -> None:
        self._log.debug("Worker %d started", worker_id)

        while True:
            task = await self._queue.get()
            try:
                if task is None:  # sentinel
                    self._log.debug("Worker %d received sentinel, stopping", worker_id)
                    break
                if self._cancelled:
                    self._drop(task)
                    continue

                if task.path in self.active_tasks:
                    self._log.error("Worker %d: %s is already being hashed", worker_id, task.path)
                    continue
                self.active_tasks[task.path] = task
                try:
                    await self._handler(task)
                except Exception as e:
                    self._log.error("Worker %d error on %s: %s", worker_id, task.path, e)
                finally:
                    self.active_tasks.pop(task.path, None)
            finally:
                self._queue.task_done()
