"""Session manager: owns one chat account session and its lifecycle.

State machine::

    uninitialized ──► pairing ──► ready ──► disconnected
          │              │  ▲
          └──────────────┼──┘ (stored credentials skip pairing)
                         └──► auth_failed

``disconnected`` and ``auth_failed`` are terminal for the running session;
``initialize()`` must be called again to start over.

Designed for single-event-loop asyncio; no locking needed.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from loguru import logger

from warelay.errors import InitError, MediaError, SendError
from warelay.handler.channels.base import BaseSessionTransport
from warelay.handler.event_bus import EventCallback, SessionEventBus
from warelay.handler.messages import InboundMessage, MediaObject, SendContent
from warelay.handler.session.events import (
    SessionEvent,
    SessionEventKind,
    SessionState,
    can_transition,
)


class SessionManager:
    """Lifecycle, event fan-out and send/receive primitives for one session."""

    def __init__(
        self,
        label: str,
        transport: BaseSessionTransport,
        bus: SessionEventBus | None = None,
    ) -> None:
        self.label = label
        self._transport = transport
        self.bus = bus or SessionEventBus()
        self._state = SessionState.UNINITIALIZED

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, callback: EventCallback) -> None:
        """Receive every lifecycle event (pairing, ready, auth failure, disconnect, loading)."""
        for kind in SessionEventKind:
            if kind is not SessionEventKind.MESSAGE:
                self.bus.subscribe(kind, callback)

    def on_message(self, callback: EventCallback) -> None:
        """Receive every inbound message event, each in its own task."""
        self.bus.subscribe(SessionEventKind.MESSAGE, callback)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Start the underlying transport.

        Raises:
            InitError: The transport could not be started. Not retried.
        """
        if self._state.is_terminal:
            logger.info(f"[{self.label}] Re-initializing from {self._state.value}")
            # the provider may report a terminal state while the wire is still open
            if self._transport.is_running:
                await self._transport.disconnect()
            self._state = SessionState.UNINITIALIZED

        logger.info(f"[{self.label}] Initializing session...")
        try:
            await self._transport.connect(self._handle_event)
        except Exception as e:
            logger.error(f"[{self.label}] Session initialization failed: {e}")
            raise InitError(f"[{self.label}] initialization failed: {e}") from e
        logger.info(f"[{self.label}] Session initialization complete")

    async def shutdown(self) -> None:
        """Stop the transport and wait for in-flight subscriber tasks."""
        await self._transport.disconnect()
        await self.bus.drain()

    async def _handle_event(self, event: SessionEvent) -> None:
        """Apply the event to the state machine, then fan it out."""
        target = event.target_state
        if target is not None:
            if not can_transition(self._state, target):
                logger.warning(
                    f"[{self.label}] Ignoring {event.kind.value} event in state "
                    f"{self._state.value}"
                )
                return
            self._state = target

        if event.kind is SessionEventKind.MESSAGE and event.message is not None:
            self._log_inbound(event.message)

        self.bus.publish(event)

    def _log_inbound(self, msg: InboundMessage) -> None:
        try:
            when = datetime.fromtimestamp(msg.timestamp).strftime("%Y-%m-%d %H:%M:%S")
        except (ValueError, OverflowError, OSError):
            when = f"timestamp {msg.timestamp}"
        logger.info(
            f"[{self.label}] Message from {msg.sender_id} to {msg.recipient_id}: "
            f"{msg.body!r} at {when}"
        )

    # ------------------------------------------------------------------
    # Send / receive
    # ------------------------------------------------------------------

    async def send(
        self,
        recipient_id: str,
        content: SendContent,
        options: dict[str, Any] | None = None,
    ) -> str | None:
        """Send text or media through the session.

        Raises:
            SendError: The session is not ready or the transport rejected the send.
        """
        if self._state is not SessionState.READY:
            raise SendError(
                f"[{self.label}] Cannot send: session is {self._state.value}"
            )
        try:
            return await self._transport.send(recipient_id, content, options)
        except SendError:
            raise
        except Exception as e:
            raise SendError(f"[{self.label}] Send to {recipient_id} failed: {e}") from e

    async def download_media(self, message: InboundMessage) -> MediaObject:
        """Download the media attached to an inbound message.

        Raises:
            MediaError: The transport could not deliver the media.
        """
        try:
            return await self._transport.download_media(message.message_id)
        except MediaError:
            raise
        except Exception as e:
            raise MediaError(
                f"[{self.label}] Download of media for {message.message_id} failed: {e}"
            ) from e

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is SessionState.READY


class SessionRegistry:
    """Sessions keyed by label."""

    def __init__(self) -> None:
        self._sessions: dict[str, SessionManager] = {}

    def add(self, session: SessionManager) -> None:
        if session.label in self._sessions:
            raise ValueError(f"Session '{session.label}' already registered")
        self._sessions[session.label] = session
        logger.debug(f"Registered session: {session.label}")

    def get(self, label: str) -> SessionManager | None:
        return self._sessions.get(label)

    def states(self) -> dict[str, str]:
        """Current lifecycle state of every session."""
        return {label: s.state.value for label, s in self._sessions.items()}

    def __iter__(self):
        return iter(self._sessions.values())

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, label: str) -> bool:
        return label in self._sessions

    @property
    def default(self) -> SessionManager | None:
        """The first registered session, used by the unlabelled /reply route."""
        return next(iter(self._sessions.values()), None)
