"""Reply dispatcher: turns backend reply payloads into chat sends.

Accepted payload shapes, tried in order until one yields an object:

    1. a JSON string                       '{"from": ..., "reply": ...}'
    2. an envelope with a string ``data``  {"data": '{"from": ...}'}
    3. an envelope with an object ``data`` {"data": {"from": ...}}
    4. a bare object                       {"from": ..., "reply": ...}

A decoded JSON string goes through shapes 2-4 as well. Anything that does
not decode to an object is rejected rather than guessed at.

Dispatch by ``imageUrl``:
    * absent            → one text send
    * "url" or ["url"]  → one media send carrying the caption
    * ["a", "b", ...]   → media resolved concurrently, sent in order,
                          caption on the first send only
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from typing import Any

from loguru import logger

from warelay.errors import DispatchError, ValidationError
from warelay.handler.messages import OutboundSend, ReplyRequest
from warelay.handler.session.session import SessionManager
from warelay.media.bridge import MediaBridge

_REQUIRED_FIELDS_MESSAGE = "from and reply/imageUrl are required"


# ----------------------------------------------------------------------
# Decoding
# ----------------------------------------------------------------------


def _loads_object(text: str | bytes, what: str) -> dict[str, Any]:
    try:
        value = json.loads(text)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ValidationError(f"{what} is not valid JSON: {e}") from e
    if not isinstance(value, dict):
        raise ValidationError(f"{what} must be a JSON object, got {type(value).__name__}")
    return value


def _envelope_with_string_data(payload: dict[str, Any]) -> dict[str, Any] | None:
    data = payload.get("data")
    if isinstance(data, str):
        return _loads_object(data, "Envelope 'data'")
    return None


def _envelope_with_object_data(payload: dict[str, Any]) -> dict[str, Any] | None:
    data = payload.get("data")
    if isinstance(data, dict):
        return data
    if data is not None:
        raise ValidationError(
            f"Envelope 'data' must be an object or a JSON string, got {type(data).__name__}"
        )
    return None


def _bare_object(payload: dict[str, Any]) -> dict[str, Any] | None:
    return payload


_DECODERS: tuple[Callable[[dict[str, Any]], dict[str, Any] | None], ...] = (
    _envelope_with_string_data,
    _envelope_with_object_data,
    _bare_object,
)


def decode_payload(raw: Any) -> dict[str, Any]:
    """Unwrap a raw reply payload to the object holding from/reply/imageUrl/caption."""
    if isinstance(raw, (str, bytes, bytearray)):
        raw = _loads_object(raw, "Reply payload")
    if not isinstance(raw, dict):
        raise ValidationError(f"Reply payload must be an object, got {type(raw).__name__}")

    for decoder in _DECODERS:
        fields = decoder(raw)
        if fields is not None:
            return fields
    raise ValidationError("Reply payload could not be decoded")  # unreachable: _bare_object


def _optional_str(fields: dict[str, Any], key: str) -> str | None:
    value = fields.get(key)
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ValidationError(f"'{key}' must be a string")
    return value


def _image_urls(value: Any) -> tuple[str, ...]:
    if value is None or value == "" or value == []:
        return ()
    if isinstance(value, str):
        return (value,)
    if isinstance(value, list):
        if not all(isinstance(url, str) and url for url in value):
            raise ValidationError("'imageUrl' list must contain only non-empty strings")
        return tuple(value)
    raise ValidationError("'imageUrl' must be a string or a list of strings")


def parse_reply_request(raw: Any) -> ReplyRequest:
    """Decode and validate a raw payload into a ReplyRequest.

    Raises:
        ValidationError: Undecodable payload, missing ``from``, or neither
            ``reply`` nor ``imageUrl`` present.
    """
    fields = decode_payload(raw)

    recipient = _optional_str(fields, "from")
    reply = _optional_str(fields, "reply")
    caption = _optional_str(fields, "caption")
    urls = _image_urls(fields.get("imageUrl"))

    if not recipient or (not reply and not urls):
        raise ValidationError(_REQUIRED_FIELDS_MESSAGE)

    return ReplyRequest(
        recipient_id=recipient,
        reply=reply,
        caption=caption,
        image_urls=urls,
    )


# ----------------------------------------------------------------------
# Dispatch
# ----------------------------------------------------------------------


class ReplyDispatcher:
    """Validates reply payloads and sends them through one session."""

    def __init__(self, session: SessionManager, media: MediaBridge) -> None:
        self._session = session
        self._media = media

    async def handle_reply(self, raw: Any) -> dict[str, bool]:
        """Process one reply payload end to end.

        Returns:
            ``{"success": True}`` once every send completed.

        Raises:
            ValidationError: The payload is malformed; nothing was sent.
            DispatchError: A fetch or send failed; earlier sends are not undone.
        """
        label = self._session.label
        logger.info(f"[{label}] Reply payload received: {raw!r}")

        request = parse_reply_request(raw)

        try:
            batch = await self.build_batch(request)
            await self.execute(batch)
        except Exception as e:
            logger.error(f"[{label}] Reply to {request.recipient_id} failed: {e}")
            raise DispatchError("Failed to send reply", detail=str(e)) from e

        return {"success": True}

    async def build_batch(self, request: ReplyRequest) -> list[OutboundSend]:
        """Resolve media and produce the ordered list of sends for a request."""
        recipient = request.recipient_id
        if not request.image_urls:
            return [OutboundSend(recipient, request.reply or "")]

        if len(request.image_urls) == 1:
            media = await self._media.to_sendable_media(request.image_urls[0])
            return [OutboundSend(recipient, media, {"caption": request.media_caption})]

        media_list = await asyncio.gather(
            *(self._media.to_sendable_media(url) for url in request.image_urls)
        )
        logger.info(
            f"[{self._session.label}] Sending {len(media_list)} images to {recipient}"
        )
        return [
            OutboundSend(recipient, media, {"caption": request.media_caption} if i == 0 else {})
            for i, media in enumerate(media_list)
        ]

    async def execute(self, batch: list[OutboundSend]) -> None:
        """Send strictly in order; the first failure stops the batch."""
        for send in batch:
            await self._session.send(send.recipient_id, send.content, send.options or None)
