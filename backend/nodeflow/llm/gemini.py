from functools import lru_cache
from typing import Optional, Tuple
import asyncio
import logging
import os

from dotenv import load_dotenv
from google import genai
from google.genai import types

from nodeflow.agents.media_utils import download_bytes, guess_image_mime
from nodeflow.config import default_llm_model

load_dotenv()

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_client() -> genai.Client:
    gemini_api_key = os.getenv("GEMINI_API_KEY")
    if not gemini_api_key:
        raise ValueError("GEMINI_API_KEY environment variable is required")
    return genai.Client(api_key=gemini_api_key)


async def _image_part(url: str) -> Optional[types.Part]:
    try:
        content, content_type = await download_bytes(url)
    except Exception as e:
        # Unreachable images are skipped, the prompt still runs
        logger.warning("Skipping image %s: %s", url[:80], e)
        return None
    return types.Part.from_bytes(data=content, mime_type=guess_image_mime(url, content_type))


async def llm_complete(
    system_prompt: Optional[str],
    user_message: str,
    image_urls: list[str],
    model: Optional[str] = None,
) -> Tuple[Optional[str], Optional[str]]:
    """
    Run a Gemini completion, optionally multimodal.

    Returns:
        Tuple of (text, error_message)
        - On success: (text, None)
        - On failure: (None, error_message)
    """
    try:
        parts = await asyncio.gather(*(_image_part(url) for url in image_urls))
        contents: list = [user_message, *(p for p in parts if p is not None)]

        config = None
        if system_prompt:
            config = types.GenerateContentConfig(system_instruction=system_prompt)

        response = await get_client().aio.models.generate_content(
            model=model or default_llm_model(),
            contents=contents,
            config=config,
        )
        text = response.text
        if not text:
            return None, "No text response from Gemini API"
        return text, None

    except Exception as e:
        logger.exception("Gemini completion failed: %s", e)
        return None, str(e)
