"""
Cloudflare R2 (S3-compatible) storage client.
Uses boto3 for S3-compatible operations.

Uploaded media and derived artifacts (crops, extracted frames) are stored
here and handed around the workflow as public URLs.
"""
import os
import uuid
import logging
import boto3
from botocore.client import BaseClient
from typing import Optional

from nodeflow.services.errors import UploadError

logger = logging.getLogger(__name__)


class R2Client:
    """Singleton R2 client wrapper."""

    _instance: Optional['R2Client'] = None
    _client: Optional[BaseClient] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if self._client is None:
            endpoint_url = os.getenv("R2_ENDPOINT")
            access_key_id = os.getenv("R2_ACCESS_KEY_ID")
            secret_access_key = os.getenv("R2_SECRET_ACCESS_KEY")

            if not endpoint_url:
                raise ValueError("R2_ENDPOINT environment variable is required")
            if not access_key_id:
                raise ValueError("R2_ACCESS_KEY_ID environment variable is required")
            if not secret_access_key:
                raise ValueError("R2_SECRET_ACCESS_KEY environment variable is required")

            try:
                self._client = boto3.client(
                    "s3",
                    endpoint_url=endpoint_url,
                    aws_access_key_id=access_key_id,
                    aws_secret_access_key=secret_access_key,
                    region_name="auto"
                )
            except Exception as e:
                raise ValueError(f"Failed to create R2 client: {str(e)}")

    @property
    def client(self) -> BaseClient:
        """Get the R2 client instance."""
        if self._client is None:
            raise RuntimeError("R2 client not initialized. Check environment variables.")
        return self._client


def get_r2() -> R2Client:
    """Get the R2 client singleton."""
    return R2Client()


def get_bucket() -> str:
    return os.getenv("R2_BUCKET", "nodeflow")


def public_url_for(key: str) -> str:
    """
    Public URL for an object key.

    Uses R2_PUBLIC_URL (a public bucket or custom domain) when set, otherwise
    a presigned GET URL valid for 7 days.
    """
    public_base = os.getenv("R2_PUBLIC_URL", "").rstrip("/")
    if public_base:
        return f"{public_base}/{key}"
    return get_r2().client.generate_presigned_url(
        'get_object',
        Params={'Bucket': get_bucket(), 'Key': key},
        ExpiresIn=7 * 24 * 3600,
    )


def upload_bytes(data: bytes, filename: str, content_type: str, prefix: str = "artifacts") -> str:
    """Store bytes under a unique key and return their public URL."""
    ext = os.path.splitext(filename)[-1] or ""
    key = f"{prefix}/{uuid.uuid4()}{ext}"
    try:
        get_r2().client.put_object(
            Bucket=get_bucket(),
            Key=key,
            Body=data,
            ContentType=content_type,
        )
    except Exception as e:
        logger.exception("Failed to upload %s to R2: %s", key, e)
        raise UploadError(f"Failed to store file: {e}")
    return public_url_for(key)


def upload_file(
    data: bytes,
    filename: str,
    content_type: str,
    accepted_types: list[str],
    max_size_bytes: int,
) -> str:
    """
    Validate and store a user upload, returning its public URL.

    Raises:
        UploadError: on an unsupported content type, an empty or oversized
            file, or a storage failure.
    """
    if content_type not in accepted_types:
        raise UploadError(
            f"Invalid file type '{content_type}'. Allowed: {', '.join(accepted_types)}"
        )
    if not data:
        raise UploadError("Uploaded file is empty")
    if len(data) > max_size_bytes:
        raise UploadError(
            f"File is too large ({len(data)} bytes); the limit is {max_size_bytes} bytes"
        )
    return upload_bytes(data, filename, content_type, prefix="uploads")
