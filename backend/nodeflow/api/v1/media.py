"""
Single-operation media endpoints: crop an image, extract a video frame,
run an LLM prompt, and upload source media.

Crop and frame extraction go through the same node executor as workflow
runs, so percentages, timestamps and validation behave identically.
"""

import asyncio
import logging
from typing import Callable, List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from pydantic import BaseModel, ConfigDict, Field

from nodeflow.auth.dependencies import User, get_current_user
from nodeflow.config import (
    IMAGE_CONTENT_TYPES,
    VIDEO_CONTENT_TYPES,
    default_llm_model,
    max_image_upload_bytes,
    max_video_upload_bytes,
)
from nodeflow.models.workflow import CropImageNode, ExtractFrameNode
from nodeflow.services.errors import NodeExecutionError, UploadError, ValidationError
from nodeflow.services.node_executor import MediaServices, default_media_services, execute_node

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/media", tags=["media"])


def get_media_services() -> MediaServices:
    """FastAPI dependency; overridden in tests."""
    return default_media_services()


def get_uploader() -> Callable[..., str]:
    """FastAPI dependency returning the storage upload function."""
    from nodeflow.storage.r2 import upload_file
    return upload_file


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class CropImageRequest(_CamelModel):
    image_url: str = Field(..., alias="imageUrl", min_length=1)
    x_percent: Optional[float] = Field(0, alias="xPercent")
    y_percent: Optional[float] = Field(0, alias="yPercent")
    width_percent: Optional[float] = Field(100, alias="widthPercent")
    height_percent: Optional[float] = Field(100, alias="heightPercent")


class ExtractFrameRequest(_CamelModel):
    video_url: str = Field(..., alias="videoUrl", min_length=1)
    timestamp: Optional[str] = "0"


class ExecuteLLMRequest(_CamelModel):
    model: Optional[str] = None
    system_prompt: Optional[str] = Field(None, alias="systemPrompt")
    user_message: Optional[str] = Field(None, alias="userMessage")
    image_urls: List[str] = Field(default_factory=list, alias="imageUrls")


async def _run_single(node, services: MediaServices) -> str:
    try:
        return await execute_node(node, [node], [], {}, services)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except NodeExecutionError as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/crop-image")
async def crop_image(
    request: CropImageRequest,
    user: User = Depends(get_current_user),
    services: MediaServices = Depends(get_media_services),
):
    """Crop by percentages of the image size. Percentages are clamped to 0-100."""
    node = CropImageNode(
        id="crop-image",
        data={
            "imageUrl": request.image_url,
            "xPercent": request.x_percent,
            "yPercent": request.y_percent,
            "widthPercent": request.width_percent,
            "heightPercent": request.height_percent,
        },
    )
    url = await _run_single(node, services)
    return {"success": True, "croppedImageUrl": url}


@router.post("/extract-frame")
async def extract_frame(
    request: ExtractFrameRequest,
    user: User = Depends(get_current_user),
    services: MediaServices = Depends(get_media_services),
):
    """Extract one frame; ``timestamp`` is seconds or a percentage like ``"50%"``."""
    node = ExtractFrameNode(
        id="extract-frame",
        data={"videoUrl": request.video_url, "timestamp": request.timestamp},
    )
    url = await _run_single(node, services)
    return {"success": True, "extractedFrameUrl": url}


@router.post("/execute-llm")
async def execute_llm(
    request: ExecuteLLMRequest,
    user: User = Depends(get_current_user),
    services: MediaServices = Depends(get_media_services),
):
    if not request.user_message or not request.user_message.strip():
        raise HTTPException(status_code=400, detail="userMessage is required")

    image_urls = [url for url in request.image_urls if isinstance(url, str) and url.strip()]
    try:
        text, error = await services.llm_complete(
            request.system_prompt or None,
            request.user_message,
            image_urls,
            request.model or default_llm_model(),
        )
    except Exception as e:
        logger.exception("LLM request failed: %s", e)
        raise HTTPException(status_code=500, detail=f"LLM request failed: {str(e)}")

    if error or not text:
        raise HTTPException(status_code=500, detail=error or "LLM returned no text")
    return {"success": True, "output": text}


async def _upload(
    file: UploadFile,
    uploader: Callable[..., str],
    accepted_types: List[str],
    max_size_bytes: int,
) -> dict:
    if not file.filename:
        raise HTTPException(status_code=400, detail="No file provided")
    data = await file.read()
    try:
        url = await asyncio.to_thread(
            uploader,
            data,
            file.filename,
            file.content_type or "",
            accepted_types,
            max_size_bytes,
        )
    except UploadError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.exception("Upload of %s failed: %s", file.filename, e)
        raise HTTPException(status_code=500, detail=f"Upload failed: {str(e)}")
    return {"url": url}


@router.post("/upload-image")
async def upload_image(
    file: UploadFile = File(...),
    user: User = Depends(get_current_user),
    uploader: Callable[..., str] = Depends(get_uploader),
):
    return await _upload(file, uploader, IMAGE_CONTENT_TYPES, max_image_upload_bytes())


@router.post("/upload-video")
async def upload_video(
    file: UploadFile = File(...),
    user: User = Depends(get_current_user),
    uploader: Callable[..., str] = Depends(get_uploader),
):
    return await _upload(file, uploader, VIDEO_CONTENT_TYPES, max_video_upload_bytes())
