import asyncio
from collections.abc import Awaitable, Callable

from loguru import logger

from .session.events import SessionEvent, SessionEventKind

EventCallback = Callable[[SessionEvent], Awaitable[None]]


class SessionEventBus:
    """Fan-out of session events to async subscribers.

    Every (event, subscriber) pair runs as its own task so a slow subscriber
    (e.g. a webhook relay) never blocks the transport reading the next event.
    Ordering across distinct events is therefore not guaranteed.
    """

    def __init__(self) -> None:
        self._subscribers: dict[SessionEventKind, list[EventCallback]] = {}
        self._tasks: set[asyncio.Task] = set()

    def subscribe(self, kind: SessionEventKind, callback: EventCallback) -> None:
        """Subscribe to events of a specific kind."""
        if kind not in self._subscribers:
            self._subscribers[kind] = []
        self._subscribers[kind].append(callback)

    def publish(self, event: SessionEvent) -> list[asyncio.Task]:
        """Schedule every subscriber of ``event.kind``; returns the spawned tasks."""
        spawned = []
        for callback in self._subscribers.get(event.kind, []):
            task = asyncio.create_task(
                self._run(callback, event),
                name=f"session-{event.label}-{event.kind.value}",
            )
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            spawned.append(task)
        return spawned

    async def drain(self) -> None:
        """Wait for every in-flight subscriber task (useful for shutdown and tests)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    @staticmethod
    async def _run(callback: EventCallback, event: SessionEvent) -> None:
        try:
            await callback(event)
        except Exception as e:
            logger.exception(
                f"[{event.label}] Error dispatching {event.kind.value} event: {e}"
            )

    @property
    def pending(self) -> int:
        """Return the number of subscriber tasks still running."""
        return len(self._tasks)
