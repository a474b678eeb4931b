"""Media bridge between the chat session and the Cloudinary media host.

Inbound: raw media or data URIs are uploaded and replaced by a public URL.
Outbound: image URLs are fetched and wrapped as MediaObjects for sending.
The declared MIME type of a fetched URL is trusted as-is, even when it does
not match the extension in the URL path.
"""

from __future__ import annotations

import asyncio
import io
import mimetypes
from pathlib import PurePosixPath
from typing import Any, Union
from urllib.parse import urlparse

import cloudinary.uploader
import httpx
from loguru import logger

from warelay.config import CloudinaryConfig
from warelay.constants import DEFAULT_HTTP_TIMEOUT, DEFAULT_USER_AGENT, FALLBACK_MIMETYPE
from warelay.errors import MediaError
from warelay.handler.messages import MediaObject

HostableMedia = Union[bytes, str, MediaObject]

_HEADERS = {"User-Agent": DEFAULT_USER_AGENT}


class MediaBridge:
    """Uploads media to Cloudinary and resolves URLs into sendable media."""

    def __init__(
        self,
        credentials: CloudinaryConfig,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._credentials = credentials
        self._timeout = timeout
        self._client = client

    # ------------------------------------------------------------------
    # Hosting
    # ------------------------------------------------------------------

    async def host_image(
        self,
        media: HostableMedia,
        *,
        folder: str,
        public_id: str | None = None,
    ) -> str:
        """Upload an image and return its public HTTPS URL.

        Args:
            media:     Raw bytes, a ``data:`` URI, or a MediaObject.
            folder:    Cloudinary folder to upload into.
            public_id: Fixed key inside the folder (random when omitted).

        Raises:
            MediaError: The upload failed or returned no URL.
        """
        upload_source = self._upload_source(media)
        options: dict[str, Any] = {"folder": folder, "resource_type": "image"}
        if public_id:
            options["public_id"] = public_id

        try:
            result = await asyncio.to_thread(self._upload_sync, upload_source, options)
        except Exception as e:
            raise MediaError(
                f"Upload to {folder!r} failed ({self._describe(media)}): {e}"
            ) from e

        url = (result or {}).get("secure_url")
        if not url:
            raise MediaError(f"Upload to {folder!r} returned no secure_url ({self._describe(media)})")

        logger.debug(f"Hosted {self._describe(media)} at {url}")
        return url

    def _upload_sync(self, source: Any, options: dict[str, Any]) -> dict[str, Any]:
        """Blocking call to the Cloudinary uploader."""
        return cloudinary.uploader.upload(
            source,
            cloud_name=self._credentials.cloud_name,
            api_key=self._credentials.api_key,
            api_secret=self._credentials.api_secret,
            **options,
        )

    @staticmethod
    def _upload_source(media: HostableMedia) -> Any:
        if isinstance(media, MediaObject):
            return media.data_uri
        if isinstance(media, (bytes, bytearray)):
            return io.BytesIO(bytes(media))
        if isinstance(media, str):
            return media
        raise MediaError(f"Unsupported media type for upload: {type(media).__name__}")

    @staticmethod
    def _describe(media: HostableMedia) -> str:
        if isinstance(media, MediaObject):
            return f"{media.mimetype}, {len(media.data)} base64 chars"
        if isinstance(media, (bytes, bytearray)):
            return f"{len(media)} bytes"
        return f"data URI, {len(media)} chars" if isinstance(media, str) else "unknown"

    # ------------------------------------------------------------------
    # Resolving
    # ------------------------------------------------------------------

    async def to_sendable_media(self, url: str) -> MediaObject:
        """Fetch ``url`` and wrap the body as a MediaObject.

        Raises:
            MediaError: The URL could not be fetched.
        """
        try:
            response = await self._fetch(url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise MediaError(f"Could not fetch media from {url}: {type(e).__name__}: {e}") from e

        mimetype = self._detect_mimetype(url, response.headers.get("content-type"))
        filename = PurePosixPath(urlparse(url).path).name or None
        return MediaObject.from_bytes(response.content, mimetype, filename)

    async def _fetch(self, url: str) -> httpx.Response:
        if self._client is not None:
            return await self._client.get(url, timeout=self._timeout, follow_redirects=True)

        async with httpx.AsyncClient(
            headers=_HEADERS,
            timeout=self._timeout,
            follow_redirects=True,
        ) as client:
            return await client.get(url)

    @staticmethod
    def _detect_mimetype(url: str, content_type: str | None) -> str:
        """Server-declared type first, then the URL extension, then octet-stream."""
        if content_type:
            declared = content_type.split(";", 1)[0].strip()
            if declared:
                return declared
        guessed, _ = mimetypes.guess_type(urlparse(url).path)
        return guessed or FALLBACK_MIMETYPE
