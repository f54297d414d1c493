import asyncio
import inspect
import itertools
from typing import Callable, Dict, List, Optional, Any

from .async_logger import AsyncLogger
from .models import Event, EventType


Handler = Callable[[Event], Any]  # sync or async


class EventBus:
    """
    Engine → UI message channel.

    Publishers enqueue without blocking; a single consumer task delivers
    events to listeners in publication order. Ordering between events is
    therefore decided by the order of :meth:`publish` calls, not by how the
    listeners are scheduled.
    """

    def __init__(self, logger: AsyncLogger) -> None:
        self._log = logger
        self._queue: asyncio.Queue[Optional[Event]] = asyncio.Queue()
        self._listeners: Dict[Optional[EventType], List[Handler]] = {}
        self._sequence = itertools.count(1)
        self._task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Subscription
    # ------------------------------------------------------------------

    def listen(self, event_type: Optional[EventType], handler: Handler) -> Callable[[], None]:
        """
        Register *handler* for *event_type* (``None`` = every event).

        Returns a callable that removes the registration.
        """
        key = EventType(event_type) if event_type is not None else None
        self._listeners.setdefault(key, []).append(handler)

        def unlisten() -> None:
            handlers = self._listeners.get(key, [])
            if handler in handlers:
                handlers.remove(handler)

        return unlisten

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    def publish(self, event_type: EventType, payload: dict, run_id: Optional[str] = None) -> Event:
        event = Event(
            type=EventType(event_type),
            payload=payload,
            run_id=run_id,
            sequence=next(self._sequence),
        )
        self._queue.put_nowait(event)
        return event

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if not self.is_running:
            self._task = asyncio.ensure_future(self._consumer())

    async def join(self) -> None:
        """Wait until every event published so far has been delivered."""
        if self.is_running:
            await self._queue.join()

    async def stop(self) -> None:
        if not self.is_running:
            return
        await self._queue.put(None)
        await self._queue.join()
        await self._task

    async def _consumer(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                if event is None:
                    break
                await self._dispatch(event)
            finally:
                self._queue.task_done()

    async def _dispatch(self, event: Event) -> None:
        handlers = list(self._listeners.get(event.type, ())) + list(self._listeners.get(None, ()))
        for handler in handlers:
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                self._log.exception(
                    "Listener %r failed on %s event #%d", handler, event.type, event.sequence
                )
