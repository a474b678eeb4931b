# transport: connect/disconnect, send, download media for one chat account session

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any

from warelay.handler.messages import MediaObject, SendContent
from warelay.handler.session.events import SessionEvent

EventListener = Callable[[SessionEvent], Awaitable[None]]


class BaseSessionTransport(ABC):
    """Interface to the external session provider that speaks the network protocol.

    The transport owns the wire; the SessionManager above it owns the
    lifecycle state. Transports report everything that happens on the wire
    through the listener handed to ``connect()``.
    """

    name: str = "base"

    def __init__(self, label: str, config: dict | None = None):
        self._running = False
        self._label = label
        self._config = config or {}
        self._listener: EventListener | None = None

    @abstractmethod
    async def connect(self, listener: EventListener):
        """Start the underlying session and begin reporting events to ``listener``."""
        pass

    @abstractmethod
    async def disconnect(self):
        """Terminate the underlying session."""
        pass

    @abstractmethod
    async def send(
        self,
        recipient_id: str,
        content: SendContent,
        options: dict[str, Any] | None = None,
    ) -> str | None:
        """Send text or media; returns the provider's message id when known."""
        pass

    @abstractmethod
    async def download_media(self, message_id: str) -> MediaObject:
        """Fetch the media attached to an inbound message."""
        pass

    async def _emit(self, event: SessionEvent):
        """Report an event to the listener registered by connect()."""
        if self._listener is not None:
            await self._listener(event)

    @property
    def label(self) -> str:
        return self._label

    @property
    def is_running(self) -> bool:
        """Return True if the transport is running, False otherwise."""
        return self._running
