"""
Shared helpers for the media agents: downloads, crop geometry and
frame timestamps.
"""

from __future__ import annotations

import math
import mimetypes
import os
import tempfile

import httpx

from nodeflow.config import http_timeout_seconds
from nodeflow.services.errors import ValidationError


async def download_bytes(url: str) -> tuple[bytes, str | None]:
    """Fetch a remote file. Returns (content, content_type)."""
    async with httpx.AsyncClient(timeout=http_timeout_seconds(), follow_redirects=True) as client:
        resp = await client.get(url)
        resp.raise_for_status()
        content_type = resp.headers.get("content-type", "").split(";")[0].strip() or None
        return resp.content, content_type


async def download_to_tempfile(url: str, default_suffix: str = ".mp4") -> str:
    """Download a remote file to a named temp file. Caller removes it."""
    content, _ = await download_bytes(url)
    suffix = os.path.splitext(url.split("?")[0])[-1] or default_suffix
    with tempfile.NamedTemporaryFile(delete=False, suffix=suffix) as f:
        f.write(content)
        return f.name


def guess_image_mime(url: str, content_type: str | None) -> str:
    if content_type and content_type.startswith("image/"):
        return content_type
    guessed = mimetypes.guess_type(url.split("?")[0])[0]
    if guessed and guessed.startswith("image/"):
        return guessed
    return "image/jpeg"


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def compute_crop_box(
    width: int,
    height: int,
    x_percent: float,
    y_percent: float,
    width_percent: float,
    height_percent: float,
) -> tuple[int, int, int, int]:
    """
    Convert a percentage crop region to a pixel box (x, y, w, h).

    Each coordinate is the percentage of the matching image dimension,
    rounded to the nearest pixel. The box is trimmed to stay inside the
    image.
    """
    if width <= 0 or height <= 0:
        raise ValidationError(f"Invalid image dimensions {width}x{height}")

    x = min(_round_half_up(x_percent / 100 * width), width - 1)
    y = min(_round_half_up(y_percent / 100 * height), height - 1)
    w = min(_round_half_up(width_percent / 100 * width), width - x)
    h = min(_round_half_up(height_percent / 100 * height), height - y)

    if w <= 0 or h <= 0:
        raise ValidationError("Crop area is empty; width and height must be greater than 0%")
    return x, y, w, h


def is_percent_timestamp(timestamp: str) -> bool:
    return str(timestamp).strip().endswith("%")


def resolve_seek_time(timestamp: str, duration: float | None = None) -> str:
    """
    Resolve a frame timestamp to an absolute seek time in seconds.

    ``"12.5"`` is returned as is. ``"50%"`` needs the video duration and is
    formatted with two decimals, e.g. ``"5.00"`` for a 10 second video.
    """
    raw = str(timestamp).strip() or "0"

    if is_percent_timestamp(raw):
        try:
            percent = float(raw[:-1])
        except ValueError:
            raise ValidationError(f"Invalid timestamp percentage: {timestamp!r}")
        if percent < 0 or percent > 100:
            raise ValidationError(f"Timestamp percentage must be between 0% and 100%, got {timestamp!r}")
        if duration is None or duration <= 0 or math.isnan(duration):
            raise ValidationError("Could not determine video duration")
        return f"{duration * percent / 100:.2f}"

    try:
        seconds = float(raw)
    except ValueError:
        raise ValidationError(f"Invalid timestamp: {timestamp!r}; use seconds or a percentage like '50%'")
    if seconds < 0:
        raise ValidationError(f"Timestamp must not be negative, got {timestamp!r}")
    return raw
