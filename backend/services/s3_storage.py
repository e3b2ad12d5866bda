"""
Object storage service for movie scene assets.

Handles presigned upload URLs, public URL construction and bounded-timeout
transfers. Works against S3 or any S3-compatible endpoint (e.g. R2).
"""

from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError
import httpx
import structlog

from config import settings
from pipeline.error_handler import ConfigurationError, ErrorCode, StorageError

logger = structlog.get_logger()


class S3StorageService:
    """
    Service for movie asset storage.

    Uploads go through presigned PUT URLs so the same code path works for
    every S3-compatible backend.
    """

    def __init__(self, s3_client=None, bucket_name: str = None, public_base_url: str = None):
        """Initialize S3 client."""
        self.bucket_name = bucket_name or settings.STORAGE_BUCKET
        self.public_base_url = (public_base_url or settings.STORAGE_PUBLIC_BASE_URL).rstrip("/")
        self.s3_client = s3_client or boto3.client(
            's3',
            region_name=settings.AWS_REGION,
            endpoint_url=settings.STORAGE_ENDPOINT_URL,
            aws_access_key_id=settings.AWS_ACCESS_KEY_ID or None,
            aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY or None
        )

        logger.info(
            "s3_storage_initialized",
            bucket=self.bucket_name,
            region=settings.AWS_REGION,
            endpoint=settings.STORAGE_ENDPOINT_URL
        )

    def get_signed_upload_url(
        self,
        s3_key: str,
        content_type: str,
        expiry: int = None
    ) -> str:
        """
        Generate presigned PUT URL for an object.

        Args:
            s3_key: S3 object key
            content_type: MIME type the upload must carry
            expiry: URL expiration in seconds (default: from settings)

        Returns:
            Presigned URL string

        Raises:
            StorageError if URL generation fails
        """
        if not self.bucket_name:
            raise ConfigurationError("STORAGE_BUCKET is not configured")
        s3_key = validate_s3_key(s3_key, "upload key")

        if expiry is None:
            expiry = settings.PRESIGNED_URL_EXPIRY

        try:
            url = self.s3_client.generate_presigned_url(
                'put_object',
                Params={
                    'Bucket': self.bucket_name,
                    'Key': s3_key,
                    'ContentType': content_type
                },
                ExpiresIn=expiry
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(
                "s3_presigned_url_failed",
                s3_key=s3_key,
                error=str(e),
                exc_info=True
            )
            raise StorageError(f"Failed to generate presigned URL: {e}", details={"s3_key": s3_key}) from e

        logger.debug("s3_presigned_url_generated", s3_key=s3_key, expiry_seconds=expiry)
        return url

    def get_public_url(self, s3_key: str) -> str:
        """
        Permanent public URL for an object.

        Examples:
            >>> S3StorageService(public_base_url="https://cdn.example.com").get_public_url("movies/1/final.mp4")
            "https://cdn.example.com/movies/1/final.mp4"
        """
        s3_key = validate_s3_key(s3_key, "public key")
        if self.public_base_url:
            return f"{self.public_base_url}/{s3_key}"
        return f"https://{self.bucket_name}.s3.{settings.AWS_REGION}.amazonaws.com/{s3_key}"

    def upload_bytes(
        self,
        s3_key: str,
        data: bytes,
        content_type: str,
        timeout: int = None
    ) -> str:
        """
        Upload bytes through a presigned PUT.

        Returns:
            Public URL of the uploaded object

        Raises:
            StorageError on non-2xx status or transport failure
        """
        upload_url = self.get_signed_upload_url(s3_key, content_type)
        timeout = timeout or settings.UPLOAD_TIMEOUT

        try:
            response = httpx.put(
                upload_url,
                content=data,
                headers={"Content-Type": content_type},
                timeout=timeout
            )
        except httpx.HTTPError as e:
            logger.error("s3_upload_failed", s3_key=s3_key, error=str(e))
            raise StorageError(f"Upload failed for {s3_key}: {e}", details={"s3_key": s3_key}) from e

        if response.status_code >= 300:
            logger.error("s3_upload_failed", s3_key=s3_key, status_code=response.status_code)
            raise StorageError(
                f"Upload failed for {s3_key}",
                status_code=response.status_code,
                details={"s3_key": s3_key}
            )

        logger.info(
            "s3_file_uploaded",
            bucket=self.bucket_name,
            s3_key=s3_key,
            content_type=content_type,
            size_bytes=len(data)
        )
        return self.get_public_url(s3_key)

    def download_bytes(self, url: str, timeout: int = None) -> bytes:
        """
        Download a remote media URL.

        Raises:
            StorageError on non-2xx status, empty body or transport failure
        """
        timeout = timeout or settings.DOWNLOAD_TIMEOUT
        try:
            response = httpx.get(url, timeout=timeout, follow_redirects=True)
        except httpx.HTTPError as e:
            logger.error("media_download_failed", url=url, error=str(e))
            raise StorageError(
                f"Download failed: {e}",
                code=ErrorCode.ASSET_DOWNLOAD_FAILED,
                details={"url": url}
            ) from e

        if response.status_code >= 300:
            logger.error("media_download_failed", url=url, status_code=response.status_code)
            raise StorageError(
                f"Download failed with status {response.status_code}",
                code=ErrorCode.ASSET_DOWNLOAD_FAILED,
                status_code=response.status_code,
                details={"url": url}
            )
        if not response.content:
            raise StorageError("Downloaded file is empty", code=ErrorCode.ASSET_DOWNLOAD_FAILED, details={"url": url})

        return response.content


def scene_video_key(project_id: str, scene_number: int) -> str:
    """
    Examples:
        >>> scene_video_key("123", 1)
        "movies/123/scene_001.mp4"
    """
    return f"movies/{project_id}/scene_{scene_number:03d}.mp4"


def narrated_video_key(project_id: str, scene_number: int) -> str:
    return f"movies/{project_id}/scene_{scene_number:03d}_narrated.mp4"


def frame_key(project_id: str, scene_number: int) -> str:
    return f"movies/{project_id}/frames/scene_{scene_number:03d}.jpg"


def final_video_key(project_id: str) -> str:
    return f"movies/{project_id}/final.mp4"


def validate_s3_key(s3_key: Optional[str], field_name: str = "S3 key") -> Optional[str]:
    """
    Validate that an S3 key is not a URL.

    Keys look like "movies/{id}/scene_001.mp4", never "https://..." or
    "s3://...". Keeps presigned or full URLs out of object names.

    Args:
        s3_key: S3 key to validate (can be None)
        field_name: Name of the field for error messages

    Returns:
        The validated S3 key (or None if input was None)

    Raises:
        ValueError: If s3_key appears to be a URL instead of a key
    """
    if s3_key is None:
        return None

    s3_key = s3_key.strip()

    if s3_key.startswith(("http://", "https://", "s3://")):
        raise ValueError(
            f"{field_name} must be an S3 key (e.g., 'movies/<id>/final.mp4'), "
            f"not a URL. Received: {s3_key[:50]}..."
        )

    if "?" in s3_key and ("X-Amz-" in s3_key or "AWSAccessKeyId" in s3_key):
        raise ValueError(
            f"{field_name} must be an S3 key, not a presigned URL. "
            f"Received: {s3_key[:50]}..."
        )

    return s3_key


# Singleton instance
_s3_storage_service: Optional[S3StorageService] = None


def get_s3_storage_service() -> S3StorageService:
    """
    Get singleton S3 storage service instance.

    Returns:
        S3StorageService instance
    """
    global _s3_storage_service
    if _s3_storage_service is None:
        _s3_storage_service = S3StorageService()
    return _s3_storage_service
