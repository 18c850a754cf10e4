"""
Image cropping backend.

The size probe reads only the image header. Cropping downloads the
source image, crops a pixel box with Pillow and stores the
result in R2. Pillow work runs in a worker thread so the event loop keeps
serving other nodes.
"""

from __future__ import annotations

import asyncio
import io
import logging
from typing import AsyncIterator, Optional, Tuple

import httpx
from PIL import Image as PILImage
from PIL import ImageFile

from nodeflow.agents.media_utils import download_bytes
from nodeflow.config import http_timeout_seconds
from nodeflow.storage.r2 import upload_bytes

logger = logging.getLogger(__name__)


def _open_image(content: bytes) -> PILImage.Image:
    img = PILImage.open(io.BytesIO(content))
    img.load()
    return img


async def read_image_size(chunks: AsyncIterator[bytes]) -> tuple[int, int]:
    """
    Feed image bytes to Pillow's incremental parser until the header is
    decoded. Stops consuming `chunks` as soon as the size is known.

    Raises:
        OSError: the bytes are not a recognizable image.
    """
    parser = ImageFile.Parser()
    async for chunk in chunks:
        parser.feed(chunk)
        if parser.image is not None:
            return parser.image.size
    return parser.close().size


async def probe_image_size(image_url: str) -> tuple[int, int]:
    """Return (width, height) of a remote image, downloading only its header."""
    async with httpx.AsyncClient(timeout=http_timeout_seconds(), follow_redirects=True) as client:
        async with client.stream("GET", image_url) as resp:
            resp.raise_for_status()
            return await read_image_size(resp.aiter_bytes())


def _crop_to_jpeg(content: bytes, x: int, y: int, width: int, height: int) -> bytes:
    img = _open_image(content)
    cropped = img.crop((x, y, x + width, y + height))
    if cropped.mode != "RGB":
        cropped = cropped.convert("RGB")
    buffer = io.BytesIO()
    cropped.save(buffer, format="JPEG", quality=92)
    return buffer.getvalue()


async def crop_image(
    image_url: str,
    x: int,
    y: int,
    width: int,
    height: int,
) -> Tuple[Optional[str], Optional[str]]:
    """
    Crop a remote image to the pixel box (x, y, width, height).

    Returns:
        Tuple of (cropped_image_url, error_message)
        - On success: (url, None)
        - On failure: (None, error_message)
    """
    try:
        content, _ = await download_bytes(image_url)
        jpeg = await asyncio.to_thread(_crop_to_jpeg, content, x, y, width, height)
        url = await asyncio.to_thread(upload_bytes, jpeg, "cropped.jpg", "image/jpeg")
        logger.info("Cropped %s to %dx%d at (%d, %d)", image_url[:80], width, height, x, y)
        return url, None
    except Exception as e:
        logger.exception("Crop failed for %s: %s", image_url[:80], e)
        return None, str(e)
