"""WhatsApp session transport backed by a Node.js bridge.

The bridge process runs whatsapp-web.js (LocalAuth keeps credentials on its
disk between restarts) and speaks JSON over a WebSocket:

    bridge → relay:  qr, ready, authenticated, auth_failure, disconnected,
                     loading_screen, message, result, error
    relay → bridge:  initialize, send, download_media

Requests that expect an answer carry a ``request_id``; the bridge echoes it
back on the matching ``result`` or ``error`` frame.
"""

import asyncio
import json
import uuid
from typing import Any

import websockets
from loguru import logger
from websockets.exceptions import ConnectionClosed

from warelay.constants import DEFAULT_BRIDGE_TIMEOUT
from warelay.errors import MediaError, SendError
from warelay.handler.messages import InboundMessage, MediaObject, SendContent
from warelay.handler.session.events import SessionEvent, SessionEventKind

from .base import BaseSessionTransport, EventListener


class BridgeRequestError(Exception):
    """The bridge answered a request with an error frame."""


class BridgeTransport(BaseSessionTransport):
    """Session transport over the bridge WebSocket.

    No reconnect loop: once the socket closes the session is reported as
    disconnected and stays that way until the SessionManager re-initializes.
    """

    name = "bridge"

    def __init__(
        self,
        label: str,
        bridge_url: str,
        timeout: float = DEFAULT_BRIDGE_TIMEOUT,
        config: dict | None = None,
    ):
        super().__init__(label, config)
        self._bridge_url = bridge_url
        self._timeout = timeout
        self._ws = None
        self._reader_task: asyncio.Task | None = None
        self._pending: dict[str, asyncio.Future] = {}
        self._closing = False

    # ------------------------------------------------------------------
    # BaseSessionTransport interface
    # ------------------------------------------------------------------

    async def connect(self, listener: EventListener):
        """Open the socket, ask the bridge to start its client, start reading."""
        if self._running:
            logger.warning(f"[{self._label}] BridgeTransport.connect() called while already connected")
            return

        self._listener = listener
        self._closing = False
        logger.info(f"[{self._label}] Connecting to WhatsApp bridge at {self._bridge_url}...")

        self._ws = await websockets.connect(self._bridge_url)
        self._running = True
        self._reader_task = asyncio.create_task(
            self._listen(), name=f"bridge-{self._label}-reader"
        )
        await self._ws.send(json.dumps({"type": "initialize", "label": self._label}))
        logger.info(f"[{self._label}] Connected to WhatsApp bridge")

    async def disconnect(self):
        """Close the socket and stop the reader."""
        if not self._running:
            return

        self._closing = True
        try:
            if self._ws is not None:
                await self._ws.close()
        except Exception as exc:
            logger.error(f"[{self._label}] Error during bridge disconnect: {exc}")
        finally:
            if self._reader_task is not None:
                self._reader_task.cancel()
                self._reader_task = None
            self._fail_pending("bridge connection closed")
            self._ws = None
            self._running = False
            logger.info(f"[{self._label}] Bridge transport disconnected")

    async def send(
        self,
        recipient_id: str,
        content: SendContent,
        options: dict[str, Any] | None = None,
    ) -> str | None:
        """Send text or media to ``recipient_id`` and wait for the bridge's confirmation."""
        payload: dict[str, Any] = {"type": "send", "to": recipient_id}
        if isinstance(content, MediaObject):
            payload["media"] = content.to_wire()
        else:
            payload["text"] = content
        if options:
            payload["options"] = options

        try:
            result = await self._request(payload)
        except (BridgeRequestError, ConnectionError, asyncio.TimeoutError) as e:
            raise SendError(f"Send to {recipient_id} failed: {e}") from e

        message_id = result.get("id")
        logger.debug(f"[{self._label}] Sent message {message_id} to {recipient_id}")
        return message_id

    async def download_media(self, message_id: str) -> MediaObject:
        """Ask the bridge for the media attached to ``message_id``."""
        try:
            result = await self._request(
                {"type": "download_media", "message_id": message_id}
            )
        except (BridgeRequestError, ConnectionError, asyncio.TimeoutError) as e:
            raise MediaError(f"Media download for message {message_id} failed: {e}") from e

        media = result.get("media") or {}
        if not media.get("data"):
            raise MediaError(f"Media download for message {message_id} returned no data")

        return MediaObject(
            mimetype=media.get("mimetype") or "application/octet-stream",
            data=media["data"],
            filename=media.get("filename"),
        )

    # ------------------------------------------------------------------
    # Request / response correlation
    # ------------------------------------------------------------------

    async def _request(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Send a frame with a fresh request_id and wait for its result."""
        if self._ws is None or not self._running:
            raise ConnectionError("bridge not connected")

        request_id = uuid.uuid4().hex
        payload = {**payload, "request_id": request_id}
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future

        try:
            await self._ws.send(json.dumps(payload))
            return await asyncio.wait_for(future, timeout=self._timeout)
        finally:
            self._pending.pop(request_id, None)

    def _fail_pending(self, reason: str) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(ConnectionError(reason))
        self._pending.clear()

    # ------------------------------------------------------------------
    # Inbound frames
    # ------------------------------------------------------------------

    async def _listen(self) -> None:
        reason = "bridge connection closed"
        try:
            async for raw in self._ws:
                try:
                    await self._handle_frame(raw)
                except Exception as e:
                    logger.error(f"[{self._label}] Error handling bridge frame: {e}")
        except asyncio.CancelledError:
            raise
        except ConnectionClosed as e:
            reason = f"bridge connection lost: {e}"

        self._running = False
        self._fail_pending(reason)
        if not self._closing:
            await self._emit(
                SessionEvent(SessionEventKind.DISCONNECTED, label=self._label, reason=reason)
            )

    async def _handle_frame(self, raw: str | bytes) -> None:
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"[{self._label}] Invalid JSON from bridge: {str(raw)[:100]}")
            return

        frame_type = data.get("type")
        request_id = data.get("request_id")

        if frame_type == "result" and request_id:
            future = self._pending.get(request_id)
            if future and not future.done():
                future.set_result(data)
            return

        if frame_type == "error":
            future = self._pending.get(request_id) if request_id else None
            if future and not future.done():
                future.set_exception(BridgeRequestError(data.get("error") or "unknown bridge error"))
            else:
                logger.error(f"[{self._label}] WhatsApp bridge error: {data.get('error')}")
            return

        event = self._to_event(frame_type, data)
        if event is not None:
            await self._emit(event)

    def _to_event(self, frame_type: str | None, data: dict) -> SessionEvent | None:
        """Map a lifecycle or message frame to a SessionEvent."""
        label = self._label
        if frame_type == "qr":
            return SessionEvent(SessionEventKind.PAIRING, label=label, code=data.get("qr"))
        if frame_type == "ready":
            return SessionEvent(SessionEventKind.READY, label=label)
        if frame_type == "auth_failure":
            return SessionEvent(
                SessionEventKind.AUTH_FAILED, label=label, reason=data.get("message")
            )
        if frame_type == "disconnected":
            return SessionEvent(
                SessionEventKind.DISCONNECTED, label=label, reason=data.get("reason")
            )
        if frame_type == "loading_screen":
            return SessionEvent(
                SessionEventKind.LOADING,
                label=label,
                percent=data.get("percent"),
                text=data.get("message"),
            )
        if frame_type == "message":
            return SessionEvent(
                SessionEventKind.MESSAGE, label=label, message=self._parse_message(data)
            )
        if frame_type == "authenticated":
            logger.debug(f"[{label}] Bridge reports session authenticated")
            return None

        logger.debug(f"[{label}] Ignoring bridge frame of type {frame_type!r}")
        return None

    @staticmethod
    def _parse_message(data: dict) -> InboundMessage:
        return InboundMessage(
            message_id=str(data.get("id") or ""),
            sender_id=data.get("from") or "",
            recipient_id=data.get("to") or "",
            timestamp=float(data.get("timestamp") or 0),
            body=data.get("body"),
            caption=data.get("caption"),
            has_media=bool(data.get("hasMedia")),
            from_me=bool(data.get("fromMe")),
        )
