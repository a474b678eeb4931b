"""Shared fakes for session-level tests (no bridge, no network)."""

from typing import Any

import pytest

from warelay.config import (
    AppConfig,
    CloudinaryConfig,
    RelayConfig,
    ServerConfig,
    ServiceAccountConfig,
)
from warelay.errors import MediaError, SendError
from warelay.handler.channels.base import BaseSessionTransport
from warelay.handler.messages import InboundMessage, MediaObject
from warelay.handler.session.events import SessionEvent, SessionEventKind, SessionState
from warelay.handler.session.session import SessionManager


class FakeTransport(BaseSessionTransport):
    """In-memory transport that records sends and lets tests emit events."""

    name = "fake"

    def __init__(self, label: str = "client1", connect_error: Exception | None = None):
        super().__init__(label)
        self.connect_error = connect_error
        self.sent: list[tuple[str, Any, dict | None]] = []
        self.media: dict[str, MediaObject] = {}
        self.fail_on_send: int | None = None  # zero-based index of the send to reject
        self.connect_calls = 0

    async def connect(self, listener):
        if self._running:
            return
        self.connect_calls += 1
        if self.connect_error is not None:
            raise self.connect_error
        self._listener = listener
        self._running = True

    async def disconnect(self):
        self._running = False

    async def send(self, recipient_id, content, options=None):
        if self.fail_on_send is not None and len(self.sent) == self.fail_on_send:
            raise SendError(f"recipient {recipient_id} rejected")
        self.sent.append((recipient_id, content, options))
        return f"msg-{len(self.sent)}"

    async def download_media(self, message_id):
        if message_id not in self.media:
            raise MediaError(f"no media for {message_id}")
        return self.media[message_id]

    async def emit(self, kind: SessionEventKind, **fields):
        await self._emit(SessionEvent(kind, label=self._label, **fields))


def make_inbound(
    body: str | None = "hello",
    *,
    message_id: str = "m1",
    from_me: bool = False,
    has_media: bool = False,
    caption: str | None = None,
) -> InboundMessage:
    return InboundMessage(
        message_id=message_id,
        sender_id="6281234@c.us",
        recipient_id="6289999@c.us",
        timestamp=1_700_000_000,
        body=body,
        caption=caption,
        has_media=has_media,
        from_me=from_me,
    )


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def session(transport):
    return SessionManager("client1", transport)


@pytest.fixture
def ready_session(session):
    session._state = SessionState.READY
    return session


@pytest.fixture
def app_config():
    return AppConfig(
        server=ServerConfig(),
        relay=RelayConfig(webhook_url="https://backend.test/webhook", http_timeout=5.0),
        cloudinary=CloudinaryConfig(cloud_name="demo", api_key="key", api_secret="secret"),
        service_account=ServiceAccountConfig(client_email="relay@project.iam.test"),
        sessions={},
    )
