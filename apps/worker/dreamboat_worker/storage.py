"""
Storage Client

S3-compatible storage client for the worker: reads reference photos
and writes generated images.
"""

import io
import logging

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from .config import Settings

logger = logging.getLogger(__name__)


class StorageClient:
    """S3-compatible storage client."""

    def __init__(self, settings: Settings, client=None):
        """Initialize S3 client."""
        if client is None:
            endpoint_url = f"{'https' if settings.s3_secure else 'http'}://{settings.s3_endpoint}"
            client = boto3.client(
                "s3",
                endpoint_url=endpoint_url,
                aws_access_key_id=settings.s3_access_key,
                aws_secret_access_key=settings.s3_secret_key,
                config=Config(signature_version="s3v4"),
                region_name=settings.s3_region,
            )
        self.client = client
        self.bucket = settings.s3_bucket

    def download_bytes(self, key: str) -> bytes:
        """
        Download a file from S3 as bytes.

        Args:
            key: S3 object key

        Returns:
            File contents as bytes
        """
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()
        except ClientError as e:
            logger.error(f"Failed to download file: {e}")
            raise

    def upload_bytes(self, data: bytes, key: str, content_type: str = "image/jpeg") -> str:
        """
        Upload bytes to S3.

        Args:
            data: Bytes to upload
            key: S3 object key
            content_type: MIME type

        Returns:
            S3 key
        """
        try:
            self.client.upload_fileobj(
                io.BytesIO(data),
                self.bucket,
                key,
                ExtraArgs={"ContentType": content_type},
            )
            logger.info(f"Uploaded bytes to s3://{self.bucket}/{key}")
            return key
        except ClientError as e:
            logger.error(f"Failed to upload bytes: {e}")
            raise
