"""
Runtime configuration read from environment variables.

Values are read on every call so tests and long-running workers pick up
changes without a restart. Invalid values fall back to the defaults.
"""

import os

from dotenv import load_dotenv

load_dotenv()


DEFAULT_LLM_MODEL = "gemini-2.5-flash"

IMAGE_CONTENT_TYPES = ["image/jpeg", "image/jpg", "image/png", "image/webp", "image/gif"]
VIDEO_CONTENT_TYPES = ["video/mp4", "video/quicktime", "video/webm", "video/x-m4v"]


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name, "")
    if not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    if not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def default_llm_model() -> str:
    return os.getenv("NODEFLOW_DEFAULT_LLM_MODEL", DEFAULT_LLM_MODEL).strip() or DEFAULT_LLM_MODEL


def node_timeout_seconds() -> float | None:
    """
    Per-node execution timeout.

    0 or unset disables the timeout, leaving each remote call to its own
    timeout behaviour.
    """
    value = _float_env("NODEFLOW_NODE_TIMEOUT_SECONDS", 0.0)
    return value if value > 0 else None


def max_concurrent_nodes() -> int | None:
    """Upper bound on nodes running at once. 0 or unset means unbounded."""
    value = _int_env("NODEFLOW_MAX_CONCURRENT_NODES", 0)
    return value if value > 0 else None


def http_timeout_seconds() -> float:
    value = _float_env("NODEFLOW_HTTP_TIMEOUT_SECONDS", 120.0)
    return value if value > 0 else 120.0


def max_image_upload_bytes() -> int:
    value = _int_env("NODEFLOW_MAX_IMAGE_UPLOAD_BYTES", 10 * 1024 * 1024)
    return value if value > 0 else 10 * 1024 * 1024


def max_video_upload_bytes() -> int:
    value = _int_env("NODEFLOW_MAX_VIDEO_UPLOAD_BYTES", 500 * 1024 * 1024)
    return value if value > 0 else 500 * 1024 * 1024


def supabase_credentials() -> tuple[str | None, str | None]:
    """(SUPABASE_URL, SUPABASE_SERVICE_ROLE_KEY), blank values as None."""
    url = os.getenv("SUPABASE_URL", "").strip() or None
    key = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "").strip() or None
    return url, key
