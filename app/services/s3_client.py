"""
S3 client service for downloading source videos and uploading clip artifacts.

Works against AWS S3 or any S3-compatible store (set S3_ENDPOINT_URL).
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Optional, Protocol

import boto3
from botocore.exceptions import ClientError

from app.config import get_settings

logger = logging.getLogger(__name__)


MEDIA_EXTENSION = "mp4"
CAPTION_EXTENSION = "srt"

CONTENT_TYPES = {
    MEDIA_EXTENSION: "video/mp4",
    CAPTION_EXTENSION: "text/plain",
}


def _format_seconds(value: float) -> str:
    """Render a window start as 15 rather than 15.0 when integral."""
    return str(int(value)) if float(value).is_integer() else f"{value:g}"


def clip_base_key(user_id: str, job_id: str, window_start: float, format_id: str) -> str:
    """Key prefix shared by a clip's media and caption artifacts."""
    return f"{user_id}/{job_id}/clip-{_format_seconds(window_start)}-{format_id}"


def clip_media_key(user_id: str, job_id: str, window_start: float, format_id: str) -> str:
    return f"{clip_base_key(user_id, job_id, window_start, format_id)}.{MEDIA_EXTENSION}"


def clip_caption_key(user_id: str, job_id: str, window_start: float, format_id: str) -> str:
    return f"{clip_base_key(user_id, job_id, window_start, format_id)}.{CAPTION_EXTENSION}"


def source_video_key(uploader_id: str, file_id: str, extension: str = MEDIA_EXTENSION) -> str:
    """Source uploads live under their own namespace, keyed by uploader and file id."""
    return f"uploads/{uploader_id}/{file_id}.{extension}"


@dataclass
class UploadResult:
    """Result of an upload operation."""

    url: str
    bucket: str
    key: str
    file_size_bytes: int
    content_type: str


class ObjectStore(Protocol):
    """Blob get/put contract consumed by the clip pipeline."""

    async def download_source(self, key: str, local_path: str) -> str:
        ...

    async def upload_file(self, local_path: str, key: str, content_type: Optional[str] = None) -> UploadResult:
        ...


class S3Client:
    """
    Service for interacting with S3.

    Source videos are read from the videos bucket; clips and captions are
    written to the clips bucket. boto3 is synchronous, so every call runs in
    the default thread pool.
    """

    def __init__(
        self,
        videos_bucket: Optional[str] = None,
        clips_bucket: Optional[str] = None,
        region: Optional[str] = None,
        endpoint_url: Optional[str] = None,
    ):
        settings = get_settings()

        self.videos_bucket = videos_bucket or settings.s3_bucket_videos
        self.clips_bucket = clips_bucket or settings.s3_bucket_clips
        self.region = region or settings.aws_region
        self.endpoint_url = endpoint_url or settings.s3_endpoint_url
        self._presign_expiration = settings.presigned_url_expiration_seconds

        # Build client kwargs
        client_kwargs = {"region_name": self.region}
        if self.endpoint_url:
            client_kwargs["endpoint_url"] = self.endpoint_url
        if settings.aws_access_key_id and settings.aws_secret_access_key:
            client_kwargs["aws_access_key_id"] = settings.aws_access_key_id
            client_kwargs["aws_secret_access_key"] = settings.aws_secret_access_key

        self._client = boto3.client("s3", **client_kwargs)
        logger.info(f"S3 client initialized for buckets: {self.videos_bucket}, {self.clips_bucket}")

    def public_url(self, key: str, bucket: Optional[str] = None) -> str:
        bucket = bucket or self.clips_bucket
        if self.endpoint_url:
            return f"{self.endpoint_url.rstrip('/')}/{bucket}/{key}"
        return f"https://{bucket}.s3.{self.region}.amazonaws.com/{key}"

    async def download_source(self, key: str, local_path: str) -> str:
        """
        Download a source video from the videos bucket.

        Raises:
            StorageError: If download fails (partial file is removed)
        """
        logger.info(f"Downloading s3://{self.videos_bucket}/{key} to {local_path}")

        loop = asyncio.get_event_loop()
        try:
            await loop.run_in_executor(
                None,
                lambda: self._client.download_file(self.videos_bucket, key, local_path),
            )
        except ClientError as e:
            logger.error(f"Failed to download from S3: {e}")
            if os.path.exists(local_path):
                os.remove(local_path)
            raise StorageError(f"Failed to download {key}: {e}") from e

        file_size = os.path.getsize(local_path)
        logger.info(f"Downloaded {file_size / 1024 / 1024:.2f} MB to {local_path}")
        return local_path

    async def upload_file(
        self,
        local_path: str,
        key: str,
        content_type: Optional[str] = None,
    ) -> UploadResult:
        """
        Upload a clip artifact to the clips bucket.

        Content type defaults from the key's extension.
        """
        if not os.path.isfile(local_path):
            raise StorageError(f"File not found: {local_path}")

        if content_type is None:
            extension = key.rsplit(".", 1)[-1]
            content_type = CONTENT_TYPES.get(extension, "application/octet-stream")

        logger.info(f"Uploading {local_path} to s3://{self.clips_bucket}/{key}")
        file_size = os.path.getsize(local_path)

        loop = asyncio.get_event_loop()
        try:
            await loop.run_in_executor(
                None,
                lambda: self._client.upload_file(
                    local_path,
                    self.clips_bucket,
                    key,
                    ExtraArgs={"ContentType": content_type},
                ),
            )
        except ClientError as e:
            logger.error(f"Failed to upload to S3: {e}")
            raise StorageError(f"Failed to upload {key}: {e}") from e

        url = self.public_url(key)
        logger.info(f"Uploaded {file_size / 1024 / 1024:.2f} MB to {key}")

        return UploadResult(
            url=url,
            bucket=self.clips_bucket,
            key=key,
            file_size_bytes=file_size,
            content_type=content_type,
        )

    def get_presigned_url(self, key: str, expires_in: Optional[int] = None) -> str:
        """
        Generate a presigned download URL for a clip artifact.

        Args:
            key: S3 key in the clips bucket
            expires_in: URL expiration time in seconds (default 1 hour)
        """
        return self._client.generate_presigned_url(
            "get_object",
            Params={"Bucket": self.clips_bucket, "Key": key},
            ExpiresIn=expires_in or self._presign_expiration,
        )


class StorageError(Exception):
    """Exception raised when an object store operation fails."""
    pass
