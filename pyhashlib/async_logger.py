import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional, Dict, Any


DEFAULT_FORMAT = "%(asctime)s [%(levelname)-8s] %(name)s: %(message)s"


class AsyncLogger:
    """
    Non-blocking async logger backed by an asyncio.Queue.

    Writes are enqueued instantly; a background task flushes them to the
    stdlib handlers. Output goes to stderr because stdout carries the
    event stream when the engine runs as a process.
    """

    def __init__(
        self,
        name: str,
        level: int = logging.INFO,
        log_file: Optional[str] = None,
        fmt: str = DEFAULT_FORMAT,
        stream=None,
    ) -> None:
        self._name = name
        self._level = level
        self._fmt = fmt
        self._log_file = log_file
        self._stream = stream if stream is not None else sys.stderr
        self._queue: asyncio.Queue[Optional[logging.LogRecord]] = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None
        self._logger = self._build_sync_logger()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _build_sync_logger(self) -> logging.Logger:
        logger = logging.getLogger(self._name)
        logger.setLevel(self._level)
        logger.propagate = False

        # Loggers are process-wide; a second engine with the same name replaces
        # the handlers instead of stacking duplicates.
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()

        formatter = logging.Formatter(self._fmt, datefmt="%Y-%m-%d %H:%M:%S")

        stream_handler = logging.StreamHandler(self._stream)
        stream_handler.setFormatter(formatter)
        logger.addHandler(stream_handler)

        if self._log_file:
            Path(self._log_file).parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(self._log_file, encoding="utf-8")
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)

        return logger

    async def _consumer(self) -> None:
        """Background task: drain the queue and emit records."""
        while True:
            record = await self._queue.get()
            try:
                if record is None:          # sentinel
                    break
                # Handler.emit reports its own failures through handleError.
                self._logger.handle(record)
            finally:
                self._queue.task_done()

    def _enqueue(self, level: int, msg: str, args: tuple, exc_info=None) -> None:
        if not self._logger.isEnabledFor(level):
            return
        record = self._logger.makeRecord(
            self._name, level, "(async)", 0, msg, args, exc_info
        )
        self._queue.put_nowait(record)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Schedule the consumer coroutine. Call once inside a running event loop."""
        if not self.is_running:
            self._task = asyncio.ensure_future(self._consumer())

    async def flush(self) -> None:
        if self.is_running:
            await self._queue.join()

    async def stop(self) -> None:
        """Flush remaining records and stop the consumer gracefully."""
        if not self.is_running:
            return
        await self._queue.put(None)          # sentinel
        await self._queue.join()
        await self._task
        for handler in self._logger.handlers:
            handler.flush()

    def bind(self, **context: Any) -> "BoundLogger":
        """Return a view of this logger that tags every message with *context*."""
        return BoundLogger(self, context)

    # ------------------------------------------------------------------
    # Public logging API
    # ------------------------------------------------------------------

    def debug(self, msg: str, *args) -> None:
        self._enqueue(logging.DEBUG, msg, args)

    def info(self, msg: str, *args) -> None:
        self._enqueue(logging.INFO, msg, args)

    def warning(self, msg: str, *args) -> None:
        self._enqueue(logging.WARNING, msg, args)

    def error(self, msg: str, *args) -> None:
        self._enqueue(logging.ERROR, msg, args)

    def exception(self, msg: str, *args) -> None:
        """Log at ERROR with the exception currently being handled."""
        self._enqueue(logging.ERROR, msg, args, exc_info=sys.exc_info())

    def critical(self, msg: str, *args) -> None:
        self._enqueue(logging.CRITICAL, msg, args)


class BoundLogger:
    """AsyncLogger view that prefixes messages with ``[key=value ...]``."""

    def __init__(self, parent: AsyncLogger, context: Dict[str, Any]) -> None:
        self._parent = parent
        self._prefix = "[" + " ".join(f"{k}={v}" for k, v in context.items()) + "] "

    def debug(self, msg: str, *args) -> None:
        self._parent.debug(self._prefix + msg, *args)

    def info(self, msg: str, *args) -> None:
        self._parent.info(self._prefix + msg, *args)

    def warning(self, msg: str, *args) -> None:
        self._parent.warning(self._prefix + msg, *args)

    def error(self, msg: str, *args) -> None:
        self._parent.error(self._prefix + msg, *args)

    def exception(self, msg: str, *args) -> None:
        self._parent.exception(self._prefix + msg, *args)

    def critical(self, msg: str, *args) -> None:
        self._parent.critical(self._prefix + msg, *args)
