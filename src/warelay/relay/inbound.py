"""Inbound relay: forwards chat messages to the backend webhook.

One message, one best-effort delivery: a fresh access token, an optional
media upload, one POST. Any failure is logged and dropped; nothing is retried
and other messages are unaffected.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import httpx
from loguru import logger

from warelay.auth.token import TokenProvider
from warelay.constants import DEFAULT_HTTP_TIMEOUT, INBOX_FOLDER
from warelay.handler.messages import InboundMessage
from warelay.handler.session.events import SessionEvent
from warelay.handler.session.session import SessionManager
from warelay.media.bridge import MediaBridge


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class InboundRelay:
    """Normalizes inbound messages and POSTs them to the webhook."""

    def __init__(
        self,
        session: SessionManager,
        tokens: TokenProvider,
        media: MediaBridge,
        webhook_url: str | None,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._session = session
        self._tokens = tokens
        self._media = media
        self._webhook_url = webhook_url
        self._timeout = timeout
        self._client = client

    def attach(self) -> None:
        """Subscribe to the session's inbound messages."""
        self._session.on_message(self.handle)

    async def handle(self, event: SessionEvent) -> None:
        if event.message is not None:
            await self.relay(event.message)

    async def relay(self, msg: InboundMessage) -> int | None:
        """Relay one message; returns the webhook status code, or None if skipped/failed."""
        label = self._session.label
        if msg.from_me:
            return None

        kind = "media" if msg.has_media else "text"
        try:
            if not self._webhook_url:
                raise RuntimeError("WEBHOOK_URL is not configured")

            token = await self._tokens.get_access_token()
            if msg.has_media:
                payload = await self._media_payload(msg, token.token)
            else:
                payload = self._text_payload(msg, token.token)

            status = await self._post(payload)
        except Exception as e:
            logger.error(
                f"[{label}] Failed to relay {kind} message {msg.message_id} "
                f"from {msg.sender_id} to webhook: {type(e).__name__}: {e}"
            )
            return None

        logger.info(f"[{label}] Webhook ({kind}) status: {status}")
        return status

    def _text_payload(self, msg: InboundMessage, token: str) -> dict[str, Any]:
        return {
            "from": msg.sender_id,
            "text": msg.body,
            "access_token": token,
            "timestamp": _utc_now_iso(),
        }

    async def _media_payload(self, msg: InboundMessage, token: str) -> dict[str, Any]:
        media = await self._session.download_media(msg)
        image_url = await self._media.host_image(media, folder=INBOX_FOLDER)
        return {
            "from": msg.sender_id,
            "imageUrl": image_url,
            "mimetype": media.mimetype,
            "text": msg.caption or msg.body or "",
            "access_token": token,
            "timestamp": _utc_now_iso(),
        }

    async def _post(self, payload: dict[str, Any]) -> int:
        if self._client is not None:
            response = await self._client.post(
                self._webhook_url, json=payload, timeout=self._timeout
            )
            return response.status_code

        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.post(self._webhook_url, json=payload)
        return response.status_code
