# inbound messages, media, tokens and reply requests

from __future__ import annotations

import base64
import time
from dataclasses import dataclass, field
from typing import Any, Union


@dataclass(frozen=True)
class InboundMessage:
    message_id: str
    sender_id: str
    recipient_id: str
    timestamp: float  # epoch seconds, as reported by the session provider
    body: str | None = None
    caption: str | None = None
    has_media: bool = False
    from_me: bool = False


@dataclass(frozen=True)
class MediaObject:
    """Media ready to be sent through a session transport.

    ``data`` is base64-encoded, which is what the bridge expects on the
    wire and what data URIs carry.
    """

    mimetype: str
    data: str
    filename: str | None = None

    @classmethod
    def from_bytes(
        cls, raw: bytes, mimetype: str, filename: str | None = None
    ) -> MediaObject:
        return cls(
            mimetype=mimetype,
            data=base64.b64encode(raw).decode("ascii"),
            filename=filename,
        )

    @property
    def data_uri(self) -> str:
        return f"data:{self.mimetype};base64,{self.data}"

    def to_wire(self) -> dict[str, Any]:
        return {
            "mimetype": self.mimetype,
            "data": self.data,
            "filename": self.filename,
        }


@dataclass(frozen=True)
class AccessToken:
    token: str
    issued_at: float
    expires_in: int = 3600

    @property
    def expires_at(self) -> float:
        return self.issued_at + self.expires_in

    def is_expired(self, now: float | None = None) -> bool:
        return (now if now is not None else time.time()) >= self.expires_at


@dataclass(frozen=True)
class ReplyRequest:
    recipient_id: str
    reply: str | None = None
    caption: str | None = None
    image_urls: tuple[str, ...] = ()

    @property
    def media_caption(self) -> str:
        """Caption for the first media send: caption, else reply text, else empty."""
        return self.caption or self.reply or ""


SendContent = Union[str, MediaObject]


@dataclass(frozen=True)
class OutboundSend:
    recipient_id: str
    content: SendContent
    options: dict[str, Any] = field(default_factory=dict)
