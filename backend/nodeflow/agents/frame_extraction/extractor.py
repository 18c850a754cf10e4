"""
Video frame extraction backend.

Reads a single frame with OpenCV at an absolute seek time and stores it in
R2 as a JPEG.
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Optional, Tuple

import cv2

from nodeflow.agents.media_utils import download_to_tempfile
from nodeflow.storage.r2 import upload_bytes

logger = logging.getLogger(__name__)


def get_video_duration(video_path: str) -> float:
    """Duration in seconds of a local file or stream URL."""
    cap = cv2.VideoCapture(video_path)
    if not cap.isOpened():
        raise ValueError(f"Cannot open video: {video_path}")
    try:
        fps = cap.get(cv2.CAP_PROP_FPS)
        frame_count = cap.get(cv2.CAP_PROP_FRAME_COUNT)
    finally:
        cap.release()
    return frame_count / fps if fps > 0 else 0.0


def read_frame_jpeg(video_path: str, seek_seconds: float) -> bytes:
    cap = cv2.VideoCapture(video_path)
    if not cap.isOpened():
        raise ValueError(f"Cannot open video: {video_path}")
    try:
        cap.set(cv2.CAP_PROP_POS_MSEC, seek_seconds * 1000)
        ok, frame = cap.read()
        if not ok or frame is None:
            raise ValueError(f"No frame available at {seek_seconds:.2f}s")
        ok, encoded = cv2.imencode(".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), 95])
        if not ok:
            raise ValueError("Failed to encode frame as JPEG")
        return encoded.tobytes()
    finally:
        cap.release()


async def probe_video_duration(video_url: str) -> float:
    """
    Probe a remote video's duration in seconds.

    OpenCV reads the container header straight from the URL when its
    backend supports streaming; otherwise the file is downloaded first.
    """
    try:
        return await asyncio.to_thread(get_video_duration, video_url)
    except ValueError:
        logger.debug("Direct probe failed for %s, downloading", video_url[:80])

    video_path = await download_to_tempfile(video_url)
    try:
        return await asyncio.to_thread(get_video_duration, video_path)
    finally:
        if os.path.exists(video_path):
            os.unlink(video_path)


async def extract_frame(video_url: str, seek_time: str) -> Tuple[Optional[str], Optional[str]]:
    """
    Extract the frame at `seek_time` seconds.

    Returns:
        Tuple of (frame_url, error_message)
    """
    video_path = None
    try:
        video_path = await download_to_tempfile(video_url)
        jpeg = await asyncio.to_thread(read_frame_jpeg, video_path, float(seek_time))
        url = await asyncio.to_thread(upload_bytes, jpeg, "frame.jpg", "image/jpeg")
        logger.info("Extracted frame at %ss from %s", seek_time, video_url[:80])
        return url, None
    except Exception as e:
        logger.exception("Frame extraction failed for %s: %s", video_url[:80], e)
        return None, str(e)
    finally:
        if video_path and os.path.exists(video_path):
            os.unlink(video_path)
