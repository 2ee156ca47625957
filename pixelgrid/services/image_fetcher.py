"""
Image Fetcher for Pixel Grid
=============================

Downloads item images (``http(s)://`` or ``data:`` URLs) and decodes them
with Pillow for the grid painter.
"""

import base64
import binascii
import io
import logging
from typing import Optional

import httpx
from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

MAX_IMAGE_BYTES = 10 * 1024 * 1024


class ImageFetchError(Exception):
    """Raised when an image cannot be downloaded or decoded."""


class ImageFetcher:
    """Fetch-and-decode helper shared by every image cache entry."""

    def __init__(
        self,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
                follow_redirects=True
            )
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def fetch_bytes(self, src: str) -> bytes:
        """Raw bytes behind ``src``, at most ``MAX_IMAGE_BYTES``."""
        if src.startswith("data:"):
            return decode_data_url(src)

        chunks = []
        size = 0
        try:
            client = await self._get_client()
            async with client.stream("GET", src) as response:
                response.raise_for_status()
                async for chunk in response.aiter_bytes():
                    size += len(chunk)
                    if size > MAX_IMAGE_BYTES:
                        raise ImageFetchError(f"Image too large: over {MAX_IMAGE_BYTES} bytes")
                    chunks.append(chunk)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise ImageFetchError(f"Failed to download {src[:80]}: {e}") from e
        return b"".join(chunks)

    async def fetch(self, src: str) -> Image.Image:
        """Download and decode ``src`` into an RGBA image."""
        data = await self.fetch_bytes(src)
        return decode_image(data)


def decode_data_url(src: str) -> bytes:
    """Payload of a ``data:[<mime>][;base64],<data>`` URL."""
    header, sep, payload = src.partition(",")
    if not sep:
        raise ImageFetchError("Malformed data URL")
    if header.endswith(";base64"):
        # base64 grows the payload by 4/3
        if len(payload) * 3 // 4 > MAX_IMAGE_BYTES:
            raise ImageFetchError(f"Image too large: over {MAX_IMAGE_BYTES} bytes")
        try:
            return base64.b64decode(payload, validate=False)
        except (binascii.Error, ValueError) as e:
            raise ImageFetchError(f"Invalid base64 payload: {e}") from e
    data = payload.encode("utf-8")
    if len(data) > MAX_IMAGE_BYTES:
        raise ImageFetchError(f"Image too large: over {MAX_IMAGE_BYTES} bytes")
    return data


def decode_image(data: bytes) -> Image.Image:
    """Decode bytes into an RGBA Pillow image."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            return img.convert("RGBA")
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
        raise ImageFetchError(f"Cannot decode image: {e}") from e
