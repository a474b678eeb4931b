"""Unit tests for BridgeTransport (the WebSocket is replaced by an in-memory fake)."""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from warelay.errors import MediaError, SendError
from warelay.handler.channels.bridge import BridgeTransport
from warelay.handler.messages import MediaObject
from warelay.handler.session.events import SessionEventKind, SessionState
from warelay.handler.session.session import SessionManager


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeWebSocket:
    """Quacks like a websockets client connection."""

    def __init__(self):
        self.sent: list[dict] = []
        self.closed = False
        self._incoming: asyncio.Queue = asyncio.Queue()

    async def send(self, data):
        self.sent.append(json.loads(data))

    async def close(self):
        self.closed = True
        self._incoming.put_nowait(None)

    def feed(self, frame: dict):
        self._incoming.put_nowait(json.dumps(frame))

    def remote_close(self):
        self._incoming.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._incoming.get()
        if item is None:
            raise StopAsyncIteration
        return item


async def _next_request(ws: FakeWebSocket, frame_type: str) -> dict:
    """Wait until the transport has written a request frame of ``frame_type``."""
    for _ in range(200):
        frames = [f for f in ws.sent if f.get("type") == frame_type]
        if frames:
            return frames[-1]
        await asyncio.sleep(0)
    raise AssertionError(f"no {frame_type} frame sent")


@pytest.fixture
def ws():
    return FakeWebSocket()


@pytest.fixture
def events():
    return []


async def _connected(ws, events, timeout: float = 2.0) -> BridgeTransport:
    async def listener(event):
        events.append(event)

    transport = BridgeTransport("client1", "ws://bridge.test", timeout=timeout)
    fake_module = MagicMock()
    fake_module.connect = AsyncMock(return_value=ws)
    with patch("warelay.handler.channels.bridge.websockets", fake_module):
        await transport.connect(listener)
    fake_module.connect.assert_awaited_once_with("ws://bridge.test")
    return transport


async def _settle():
    for _ in range(10):
        await asyncio.sleep(0)


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


class TestConnect:
    @pytest.mark.asyncio
    async def test_connect_asks_bridge_to_initialize(self, ws, events):
        transport = await _connected(ws, events)

        assert ws.sent[0] == {"type": "initialize", "label": "client1"}
        assert transport.is_running
        await transport.disconnect()
        assert ws.closed
        assert not transport.is_running


class TestInboundFrames:
    @pytest.mark.asyncio
    async def test_lifecycle_frames_become_events(self, ws, events):
        transport = await _connected(ws, events)

        ws.feed({"type": "qr", "qr": "2@pairing"})
        ws.feed({"type": "loading_screen", "percent": 55, "message": "WhatsApp"})
        ws.feed({"type": "authenticated"})
        ws.feed({"type": "ready"})
        ws.feed({"type": "auth_failure", "message": "bad"})
        await _settle()

        assert [e.kind for e in events] == [
            SessionEventKind.PAIRING,
            SessionEventKind.LOADING,
            SessionEventKind.READY,
            SessionEventKind.AUTH_FAILED,
        ]
        assert events[0].code == "2@pairing"
        assert events[1].percent == 55
        assert events[3].reason == "bad"
        await transport.disconnect()

    @pytest.mark.asyncio
    async def test_message_frame_is_parsed(self, ws, events):
        transport = await _connected(ws, events)

        ws.feed(
            {
                "type": "message",
                "id": "ABC",
                "from": "628111@c.us",
                "to": "628222@c.us",
                "body": "",
                "caption": "look",
                "hasMedia": True,
                "fromMe": False,
                "timestamp": 1700000000,
            }
        )
        await _settle()

        msg = events[0].message
        assert events[0].kind is SessionEventKind.MESSAGE
        assert msg.message_id == "ABC"
        assert msg.sender_id == "628111@c.us"
        assert msg.caption == "look"
        assert msg.has_media and not msg.from_me
        await transport.disconnect()

    @pytest.mark.asyncio
    async def test_invalid_json_is_ignored(self, ws, events):
        transport = await _connected(ws, events)

        ws._incoming.put_nowait("not json")
        ws.feed({"type": "ready"})
        await _settle()

        assert [e.kind for e in events] == [SessionEventKind.READY]
        await transport.disconnect()

    @pytest.mark.asyncio
    async def test_remote_close_reports_disconnect(self, ws, events):
        transport = await _connected(ws, events)

        ws.remote_close()
        await _settle()

        assert events[-1].kind is SessionEventKind.DISCONNECTED
        assert "closed" in events[-1].reason
        assert not transport.is_running

    @pytest.mark.asyncio
    async def test_local_disconnect_is_not_reported(self, ws, events):
        transport = await _connected(ws, events)

        await transport.disconnect()
        await _settle()

        assert events == []


class TestRequests:
    @pytest.mark.asyncio
    async def test_send_text_waits_for_result(self, ws, events):
        transport = await _connected(ws, events)

        task = asyncio.create_task(transport.send("628111@c.us", "hello"))
        request = await _next_request(ws, "send")
        ws.feed({"type": "result", "request_id": request["request_id"], "id": "wamid.1"})

        assert await task == "wamid.1"
        assert request["to"] == "628111@c.us"
        assert request["text"] == "hello"
        assert "media" not in request
        await transport.disconnect()

    @pytest.mark.asyncio
    async def test_send_media_with_caption(self, ws, events):
        transport = await _connected(ws, events)
        media = MediaObject(mimetype="image/png", data="AA==", filename="a.png")

        task = asyncio.create_task(
            transport.send("628111@c.us", media, {"caption": "first"})
        )
        request = await _next_request(ws, "send")
        ws.feed({"type": "result", "request_id": request["request_id"], "id": "wamid.2"})
        await task

        assert request["media"] == {"mimetype": "image/png", "data": "AA==", "filename": "a.png"}
        assert request["options"] == {"caption": "first"}
        await transport.disconnect()

    @pytest.mark.asyncio
    async def test_error_frame_raises_send_error(self, ws, events):
        transport = await _connected(ws, events)

        task = asyncio.create_task(transport.send("bad-id", "hello"))
        request = await _next_request(ws, "send")
        ws.feed({"type": "error", "request_id": request["request_id"], "error": "invalid wid"})

        with pytest.raises(SendError, match="invalid wid"):
            await task
        await transport.disconnect()

    @pytest.mark.asyncio
    async def test_send_times_out(self, ws, events):
        transport = await _connected(ws, events, timeout=0.01)

        with pytest.raises(SendError):
            await transport.send("628111@c.us", "hello")
        await transport.disconnect()

    @pytest.mark.asyncio
    async def test_send_when_not_connected(self):
        transport = BridgeTransport("client1", "ws://bridge.test")

        with pytest.raises(SendError, match="not connected"):
            await transport.send("628111@c.us", "hello")

    @pytest.mark.asyncio
    async def test_pending_send_fails_when_socket_closes(self, ws, events):
        transport = await _connected(ws, events)

        task = asyncio.create_task(transport.send("628111@c.us", "hello"))
        await _next_request(ws, "send")
        ws.remote_close()

        with pytest.raises(SendError, match="closed"):
            await task

    @pytest.mark.asyncio
    async def test_download_media(self, ws, events):
        transport = await _connected(ws, events)

        task = asyncio.create_task(transport.download_media("ABC"))
        request = await _next_request(ws, "download_media")
        ws.feed(
            {
                "type": "result",
                "request_id": request["request_id"],
                "media": {"mimetype": "image/jpeg", "data": "/9j/", "filename": None},
            }
        )

        media = await task
        assert request["message_id"] == "ABC"
        assert media.mimetype == "image/jpeg"
        assert media.data == "/9j/"
        await transport.disconnect()

    @pytest.mark.asyncio
    async def test_download_without_data_raises_media_error(self, ws, events):
        transport = await _connected(ws, events)

        task = asyncio.create_task(transport.download_media("ABC"))
        request = await _next_request(ws, "download_media")
        ws.feed({"type": "result", "request_id": request["request_id"], "media": None})

        with pytest.raises(MediaError, match="no data"):
            await task
        await transport.disconnect()


# ---------------------------------------------------------------------------
# Session re-initialization over a live socket
# ---------------------------------------------------------------------------


class TestSessionReinitialize:
    @pytest.mark.parametrize(
        "terminal_frame, terminal_state",
        [
            ({"type": "disconnected", "reason": "LOGOUT"}, SessionState.DISCONNECTED),
            ({"type": "auth_failure", "message": "bad"}, SessionState.AUTH_FAILED),
        ],
    )
    @pytest.mark.asyncio
    async def test_reinitialize_restarts_bridge_client(self, terminal_frame, terminal_state):
        first, second = FakeWebSocket(), FakeWebSocket()
        fake_module = MagicMock()
        fake_module.connect = AsyncMock(side_effect=[first, second])
        transport = BridgeTransport("client1", "ws://bridge.test")
        session = SessionManager("client1", transport)

        with patch("warelay.handler.channels.bridge.websockets", fake_module):
            await session.initialize()
            first.feed({"type": "qr", "qr": "2@code"})
            first.feed(terminal_frame)
            await _settle()
            assert session.state is terminal_state
            assert transport.is_running

            await session.initialize()

        assert first.closed
        assert fake_module.connect.await_count == 2
        assert second.sent == [{"type": "initialize", "label": "client1"}]
        assert session.state is SessionState.UNINITIALIZED

        second.feed({"type": "ready"})
        await _settle()
        assert session.is_ready
        await session.shutdown()
