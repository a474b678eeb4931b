"""Lifecycle subscribers: pairing-code hosting and status logging."""

from __future__ import annotations

import asyncio
import base64
import io

import qrcode
from loguru import logger

from warelay.constants import QR_FOLDER, QR_PUBLIC_ID_PREFIX
from warelay.errors import MediaError
from warelay.handler.session.events import SessionEvent, SessionEventKind
from warelay.handler.session.session import SessionManager
from warelay.media.bridge import MediaBridge


def render_qr_data_uri(code: str) -> str:
    """Render a pairing code as a PNG QR image, returned as a data URI."""
    image = qrcode.make(code)
    buffer = io.BytesIO()
    image.save(buffer)
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/png;base64,{encoded}"


class PairingHandler:
    """Hosts every pairing code a session emits so an operator can scan it remotely.

    Hosting failures are logged and swallowed: the session keeps waiting for
    the account to approve whichever code reached the operator.
    """

    def __init__(self, media: MediaBridge) -> None:
        self._media = media
        self.last_url: dict[str, str] = {}

    async def handle(self, event: SessionEvent) -> None:
        if event.kind is not SessionEventKind.PAIRING or not event.code:
            return

        logger.info(f"[{event.label}] Scan QR code to pair this session")
        try:
            data_uri = await asyncio.to_thread(render_qr_data_uri, event.code)
            url = await self._media.host_image(
                data_uri,
                folder=QR_FOLDER,
                public_id=f"{QR_PUBLIC_ID_PREFIX}{event.label}",
            )
        except (MediaError, ValueError, OSError) as e:
            logger.error(f"[{event.label}] Could not host QR code: {e}")
            return

        self.last_url[event.label] = url
        logger.info(f"[{event.label}] QR uploaded: {url}")


async def log_status(event: SessionEvent) -> None:
    """Log lifecycle transitions other than pairing."""
    if event.kind is SessionEventKind.READY:
        logger.info(f"[{event.label}] Session ready")
    elif event.kind is SessionEventKind.AUTH_FAILED:
        logger.error(f"[{event.label}] Authentication failed: {event.reason}")
    elif event.kind is SessionEventKind.DISCONNECTED:
        logger.warning(f"[{event.label}] Disconnected: {event.reason}")
    elif event.kind is SessionEventKind.LOADING:
        logger.info(f"[{event.label}] Loading {event.percent}% - {event.text}")


def attach_lifecycle_handlers(session: SessionManager, pairing: PairingHandler) -> None:
    """Wire pairing-code hosting and status logging onto a session."""
    session.bus.subscribe(SessionEventKind.PAIRING, pairing.handle)
    session.subscribe(log_status)
