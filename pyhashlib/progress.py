import threading
import time
from typing import Callable, Optional

from .models import ProgressSnapshot, DEFAULT_PROGRESS_BYTES, DEFAULT_PROGRESS_INTERVAL


class ProgressTracker:
    """
    Owner of a run's counters.

    Every mutation and every snapshot happens under one lock, so a reader on
    any thread sees a consistent set of counters. All counters only grow.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._discovered = 0
        self._completed = 0
        self._failed = 0
        self._bytes_processed = 0
        self._bytes_total = 0

    def file_discovered(self, size: int) -> None:
        with self._lock:
            self._discovered += 1
            self._bytes_total += max(size, 0)

    def bytes_processed(self, count: int) -> None:
        if count <= 0:
            return
        with self._lock:
            self._bytes_processed += count

    def file_completed(self) -> None:
        with self._lock:
            self._check_finishable()
            self._completed += 1

    def file_failed(self) -> None:
        with self._lock:
            self._check_finishable()
            self._failed += 1

    def _check_finishable(self) -> None:
        if self._completed + self._failed >= self._discovered:
            raise RuntimeError(
                "More files finished than discovered "
                f"({self._completed} completed, {self._failed} failed, "
                f"{self._discovered} discovered)"
            )

    @property
    def bytes_done(self) -> int:
        with self._lock:
            return self._bytes_processed

    def snapshot(self) -> ProgressSnapshot:
        with self._lock:
            return ProgressSnapshot(
                files_discovered=self._discovered,
                files_completed=self._completed,
                files_failed=self._failed,
                bytes_processed=self._bytes_processed,
                bytes_total=self._bytes_total,
            )


class ProgressCadence:
    """
    Decides when a ``hash-progress`` event is due.

    Due once ``bytes_interval`` bytes were processed or ``interval`` seconds
    passed since the last emission, whichever comes first. ``None`` disables
    a trigger; with both disabled only forced emissions happen.
    """

    def __init__(
            self,
            bytes_interval: Optional[int] = DEFAULT_PROGRESS_BYTES,
            interval: Optional[float] = DEFAULT_PROGRESS_INTERVAL,
            clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._bytes_interval = bytes_interval
        self._interval = interval
        self._clock = clock
        self._last_bytes = 0
        self._last_time = clock()

    def due(self, bytes_processed: int) -> bool:
        if self._bytes_interval is not None:
            if bytes_processed - self._last_bytes >= self._bytes_interval:
                return True
        if self._interval is not None:
            if self._clock() - self._last_time >= self._interval:
                return True
        return False

    def mark(self, bytes_processed: int) -> None:
        self._last_bytes = bytes_processed
        self._last_time = self._clock()
