import asyncio
import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from contextlib import aclosing
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Sequence

import aiofiles.os

from .async_logger import AsyncLogger
from .digest_engine import DigestEngine
from .errors import DigestError, InvalidRunRequest
from .events import EventBus, Handler
from .file_walker import FileWalker
from .models import (
    AlgorithmId, DigestResult, EngineConfig, EventType, FileFailure, FileTask,
    ProgressSnapshot, RunPolicy, RunRequest, RunState, RunSummary, TraversalError,
)
from .progress import ProgressCadence, ProgressTracker
from .scheduler import TaskScheduler


CANCELLED_REASON = "Cancelled"


# ---------------------------------------------------------------------------
# HashRun
# ---------------------------------------------------------------------------

class HashRun:
    """
    One hashing run, from dispatch to completion or cancellation.

    Owns its :class:`RunState`, progress counters and traversal records.
    Walker and workers run concurrently; everything they produce leaves the
    run through the event bus.
    """

    def __init__(
            self,
            request: RunRequest,
            config: EngineConfig,
            bus: EventBus,
            logger: AsyncLogger,
            previous: Optional["HashRun"] = None,
    ) -> None:
        self.run_id = uuid.uuid4().hex
        self.request = request
        self._config = config
        self._bus = bus
        self._log = logger.bind(run=self.run_id[:8])
        self._previous = previous

        self._state = RunState.IDLE
        self._tracker = ProgressTracker()
        self._cadence = ProgressCadence(
            bytes_interval=config.progress_bytes_interval,
            interval=config.progress_interval,
        )
        self._scheduler: Optional[TaskScheduler] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._cancel_requested = False
        self._task: Optional[asyncio.Task] = None
        self._done = asyncio.Event()

        self.traversal_errors: List[TraversalError] = []
        self.started_at: Optional[str] = None
        self.finished_at: Optional[str] = None
        self.error_message: Optional[str] = None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def progress(self) -> ProgressSnapshot:
        return self._tracker.snapshot()

    @property
    def done(self) -> bool:
        return self._done.is_set()

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._execute(), name=f"hash-run-{self.run_id[:8]}")

    def cancel(self) -> bool:
        """
        Request cancellation. Queued files are dropped and reported as
        ``Cancelled`` failures, files being hashed finish normally.
        Returns False if the run had already finished.
        """
        if self.done or self._state.is_terminal:
            return False
        if self._cancel_requested:
            return True
        self._cancel_requested = True
        self._log.info("Cancellation requested")
        if self._state in (RunState.DISCOVERING, RunState.HASHING):
            self._set_state(RunState.CANCELLING)
        if self._scheduler is not None:
            self._scheduler.cancel()
        return True

    async def wait(self) -> RunSummary:
        await self._done.wait()
        return self.summary()

    def summary(self) -> RunSummary:
        return RunSummary(
            run_id=self.run_id,
            state=self._state,
            progress=self.progress,
            request=self.request,
            traversal_errors=list(self.traversal_errors),
            started_at=self.started_at,
            finished_at=self.finished_at,
            error_message=self.error_message,
        )

    # ------------------------------------------------------------------
    # Run lifecycle
    # ------------------------------------------------------------------

    async def _execute(self) -> None:
        try:
            if self._previous is not None and not self._previous.done:
                self._log.debug("Waiting for run %s to finish", self._previous.run_id[:8])
                await self._previous.wait()

            self.started_at = datetime.now().isoformat()
            if self._cancel_requested:
                self._log.info("Cancelled before start")
                self._set_state(RunState.CANCELLING)
                self._finish(RunState.COMPLETED)
                return

            await self._hash_all()
        except asyncio.CancelledError:
            self._log.warning("Run task cancelled")
            self._finish(RunState.FAILED, "Run task cancelled")
            raise
        except Exception as e:
            self._log.exception("Run failed: %s", e)
            self._finish(RunState.FAILED, str(e))
        else:
            self._finish(RunState.COMPLETED)

    async def _hash_all(self) -> None:
        config = self._config
        self._loop = asyncio.get_running_loop()
        self._executor = ThreadPoolExecutor(
            max_workers=config.workers,
            thread_name_prefix=f"pyhashlib-{self.run_id[:8]}",
        )
        self._scheduler = TaskScheduler(
            max_concurrent=config.workers,
            handler=self._hash_task,
            logger=self._log,
            queue_size=config.pending_capacity,
            on_dropped=self._task_dropped,
        )
        walker = FileWalker(logger=self._log, on_error=self._on_traversal_error)

        self._log.info(
            "Run started: %d path(s), algorithms=%s, workers=%d",
            len(self.request.roots),
            ",".join(a.value for a in sorted(self.request.algorithms)),
            config.workers,
        )
        self._set_state(RunState.DISCOVERING)
        await self._scheduler.start()
        try:
            async with aclosing(walker.walk(self.request.roots)) as tasks:
                async for task in tasks:
                    if self._cancel_requested:
                        break
                    self._tracker.file_discovered(task.size)
                    self._bus.publish(EventType.FILE_DISCOVERED, task.to_payload(), self.run_id)
                    self._emit_progress()
                    if not await self._scheduler.submit(task):
                        break

            if not self._cancel_requested:
                self._log.debug("Discovery finished: %d file(s)", self.progress.files_discovered)
                self._set_state(RunState.HASHING)
        except BaseException:
            self._scheduler.cancel()
            raise
        finally:
            await self._scheduler.join()
            # A pass abandoned by a cancelled run task may still be reading.
            self._executor.shutdown(wait=False, cancel_futures=True)

    async def _hash_task(self, task: FileTask) -> None:
        """Worker handler: digest one file and publish its outcome."""
        self._log.debug("Hashing %s (%d bytes)", task.path, task.size)
        try:
            digests = await DigestEngine.digest_file(
                task.path,
                self.request.algorithms,
                chunk_size=self._config.chunk_size,
                on_progress=self._bytes_from_thread,
                timeout=self._config.file_timeout,
                executor=self._executor,
            )
        except (OSError, DigestError) as e:
            self._file_failed(task, self._describe(e))
        except Exception as e:
            self._log.exception("Unexpected error hashing %s", task.path)
            self._file_failed(task, f"Unexpected error: {e}")
        else:
            self._tracker.file_completed()
            result = DigestResult(path=task.path, per_algorithm=digests)
            self._bus.publish(EventType.FILE_UPDATED, result.to_payload(), self.run_id)
        self._emit_progress()

    def _file_failed(self, task: FileTask, reason: str) -> None:
        self._log.warning("Failed to hash %s: %s", task.path, reason)
        self._tracker.file_failed()
        failure = FileFailure(path=task.path, error=reason)
        self._bus.publish(EventType.FILE_UPDATED, failure.to_payload(), self.run_id)

    def _task_dropped(self, task: FileTask) -> None:
        """Scheduler callback: *task* was discovered but will never be hashed."""
        self._log.debug("Dropped %s: run cancelled", task.path)
        self._tracker.file_failed()
        failure = FileFailure(path=task.path, error=CANCELLED_REASON)
        self._bus.publish(EventType.FILE_UPDATED, failure.to_payload(), self.run_id)
        self._emit_progress()

    @staticmethod
    def _describe(error: Exception) -> str:
        if isinstance(error, OSError) and error.strerror:
            return error.strerror
        return str(error) or type(error).__name__

    # ------------------------------------------------------------------
    # Progress and state
    # ------------------------------------------------------------------

    def _bytes_from_thread(self, count: int) -> None:
        # Called from executor threads; counters are owned by the loop thread.
        self._loop.call_soon_threadsafe(self._bytes_processed, count)

    def _bytes_processed(self, count: int) -> None:
        self._tracker.bytes_processed(count)
        self._emit_progress()

    def _emit_progress(self, force: bool = False) -> None:
        done = self._tracker.bytes_done
        if not force and not self._cadence.due(done):
            return
        snapshot = self._tracker.snapshot()
        self._cadence.mark(snapshot.bytes_processed)
        self._bus.publish(EventType.HASH_PROGRESS, snapshot.to_payload(), self.run_id)

    def _on_traversal_error(self, error: TraversalError) -> None:
        self.traversal_errors.append(error)
        self._bus.publish(EventType.TRAVERSAL_ERROR, error.to_payload(), self.run_id)

    def _set_state(self, state: RunState) -> None:
        if state == self._state:
            return
        self._log.debug("State %s -> %s", self._state, state)
        self._state = state
        self._bus.publish(
            EventType.RUN_STATE, {"runId": self.run_id, "state": str(state)}, self.run_id
        )

    def _finish(self, state: RunState, error_message: Optional[str] = None) -> None:
        self.error_message = error_message
        self.finished_at = datetime.now().isoformat()
        if self.started_at is not None:
            self._emit_progress(force=True)
        self._set_state(state)
        snapshot = self.progress
        self._log.info(
            "Run %s: %d discovered, %d completed, %d failed, %d skipped",
            state, snapshot.files_discovered, snapshot.files_completed,
            snapshot.files_failed, len(self.traversal_errors),
        )
        self._done.set()


# ---------------------------------------------------------------------------
# HashManager
# ---------------------------------------------------------------------------

class HashManager:
    """Command entry point of the hashing engine."""

    def __init__(
            self,
            config: Optional[EngineConfig] = None,
            log_file: Optional[str] = None,
            log_level: int = logging.INFO,
            log_stream=None,
    ) -> None:
        self.config = config or EngineConfig()
        self._log = AsyncLogger(
            name=__name__,
            level=log_level,
            log_file=log_file,
            stream=log_stream,
        )
        self.events = EventBus(logger=self._log)
        self._active: Optional[HashRun] = None
        self._runs: List[HashRun] = []

    # ------------------------------------------------------------------
    # Subscription
    # ------------------------------------------------------------------

    def listen(self, event_type: Optional[EventType], handler: Handler) -> Callable[[], None]:
        return self.events.listen(event_type, handler)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    @property
    def active_run(self) -> Optional[HashRun]:
        return self._active

    async def select_files(
            self,
            paths: Sequence[str],
            algorithms: Iterable["AlgorithmId | str"],
    ) -> HashRun:
        """
        Start hashing *paths* with *algorithms* and return immediately.

        Results arrive only as events. Raises :class:`InvalidRunRequest`
        before anything is scheduled if the algorithm set is empty or
        unknown, or if none of the paths exists.
        """
        request = RunRequest.create(paths, algorithms)
        await self._check_roots(request)
        self._start_services()

        previous = self._active
        if previous is not None and not previous.done:
            if self.config.run_policy == RunPolicy.SUPERSEDE:
                self._log.info("New selection supersedes run %s", previous.run_id[:8])
                previous.cancel()
            else:
                self._log.info("New selection queued behind run %s", previous.run_id[:8])
        else:
            previous = None

        run = HashRun(request, self.config, self.events, self._log, previous=previous)
        self._active = run
        self._runs = [r for r in self._runs if not r.done] + [run]
        run.start()
        return run

    async def cancel(self) -> bool:
        if self._active is None:
            return False
        return self._active.cancel()

    async def wait_idle(self) -> Optional[RunSummary]:
        """Wait for the latest run to finish and its events to be delivered."""
        summary = None
        if self._active is not None:
            summary = await self._active.wait()
        await self.events.join()
        return summary

    async def close(self) -> None:
        pending = [run for run in self._runs if not run.done]
        for run in pending:
            run.cancel()
        for run in pending:
            await run.wait()
        self._runs.clear()
        await self.events.stop()
        await self._log.stop()

    async def __aenter__(self) -> "HashManager":
        self._start_services()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _start_services(self) -> None:
        self._log.start()
        self.events.start()

    async def _check_roots(self, request: RunRequest) -> None:
        for root in request.roots:
            if await aiofiles.os.path.exists(root):
                return
        raise InvalidRunRequest(
            f"None of the selected paths exist: {', '.join(request.roots)}"
        )
