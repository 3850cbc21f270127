"""
Object storage for palindrome photos.

This module uploads admin-submitted images to an S3-compatible bucket and
builds the public URL the gallery links to. Bucket, endpoint and public base
URL come from the ``storage`` section of the configuration.

When no bucket is configured the service reports itself as unavailable
instead of failing at import time, so the rest of the API keeps working in
local development.
"""

from __future__ import annotations

import logging
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from omegaconf import DictConfig

from .configuration import allowed_buckets
from .models import UploadResult
from .utils import build_object_key

logger = logging.getLogger(__name__)


class UploadRejected(ValueError):
    """The uploaded file failed type or size checks."""


class StorageService:
    """
    Thin wrapper around a boto3 S3 client.

    Args:
        config: The ``storage`` configuration section
        client: Pre-built S3 client; created lazily from ``config`` when omitted
    """

    def __init__(self, config: DictConfig, client=None):
        self.config = config
        self.default_bucket = str(config.bucket or "")
        self.max_upload_bytes = int(config.max_upload_bytes)
        self._client = client

    def _get_client(self):
        """
        Get or create the S3 client.

        Returns:
            boto3 S3 client or None if it could not be created
        """
        if self._client is None:
            kwargs = {}
            if self.config.endpoint_url:
                kwargs["endpoint_url"] = str(self.config.endpoint_url)
            if self.config.region:
                kwargs["region_name"] = str(self.config.region)
            try:
                self._client = boto3.client("s3", **kwargs)
            except BotoCoreError as e:
                logger.warning(f"Failed to create S3 client: {e}")
                self._client = None
        return self._client

    def is_configured(self) -> bool:
        return bool(self.default_bucket) and self._get_client() is not None

    def resolve_bucket(self, requested: Optional[str]) -> str:
        """
        Pick the bucket for an upload.

        Raises:
            UploadRejected: If ``requested`` is not one of the allowed buckets
        """
        if not requested:
            return self.default_bucket
        if requested not in allowed_buckets(self.config):
            raise UploadRejected(f"Bucket '{requested}' is not allowed")
        return requested

    def check_upload(self, content_type: Optional[str], size: int) -> None:
        """
        Raises:
            UploadRejected: If the file is not an image or is too large
        """
        if not (content_type or "").startswith("image/"):
            raise UploadRejected("Invalid file type. Only images are allowed.")
        if size > self.max_upload_bytes:
            limit_mb = self.max_upload_bytes // (1024 * 1024)
            raise UploadRejected(f"File too large. Maximum size is {limit_mb}MB.")

    def public_url(self, bucket: str, key: str) -> str:
        base = str(self.config.public_base_url or "").rstrip("/")
        if base:
            return f"{base}/{bucket}/{key}"
        if self.config.endpoint_url:
            return f"{str(self.config.endpoint_url).rstrip('/')}/{bucket}/{key}"
        return f"https://{bucket}.s3.amazonaws.com/{key}"

    def upload_image(
        self,
        data: bytes,
        filename: str,
        content_type: str,
        bucket: Optional[str] = None,
    ) -> Optional[UploadResult]:
        """
        Store an image and return where it can be fetched from.

        Args:
            data: Raw image bytes
            filename: Original file name; sanitized into the object key
            content_type: MIME type reported by the client
            bucket: Target bucket, defaults to the configured bucket

        Returns:
            UploadResult on success, None if the storage call failed

        Raises:
            UploadRejected: If the file or bucket fails validation
        """
        self.check_upload(content_type, len(data))
        target_bucket = self.resolve_bucket(bucket)

        client = self._get_client()
        if client is None or not target_bucket:
            logger.warning("S3 client or bucket not available, skipping upload")
            return None

        file_name, key = build_object_key(filename, prefix=str(self.config.key_prefix))
        try:
            logger.info(f"Uploading {file_name} ({len(data)} bytes) to s3://{target_bucket}/{key}")
            client.put_object(
                Bucket=target_bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                CacheControl=str(self.config.cache_control),
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"S3 upload failed: {e}")
            return None

        return UploadResult(
            path=key,
            public_url=self.public_url(target_bucket, key),
            file_name=file_name,
            size=len(data),
            type=content_type,
        )
