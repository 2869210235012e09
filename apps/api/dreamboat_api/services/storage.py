"""
Storage Gateway

S3-compatible object storage client: presigned upload/download URLs,
existence checks and reads for the validation engine.
"""

import logging
import uuid
from pathlib import PurePosixPath

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from ..config import Settings

logger = logging.getLogger(__name__)


class StorageGateway:
    """
    S3-compatible storage gateway.

    Clients upload photo bytes directly to object storage through
    presigned PUT URLs; the API only ever sees storage keys.
    """

    def __init__(self, settings: Settings, client=None):
        """Initialize S3 client."""
        self.settings = settings
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

    def ensure_bucket(self):
        """Create bucket if it doesn't exist."""
        try:
            self.client.head_bucket(Bucket=self.bucket)
            logger.info(f"Bucket '{self.bucket}' exists")
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code")
            if error_code == "404":
                logger.info(f"Creating bucket '{self.bucket}'")
                self.client.create_bucket(Bucket=self.bucket)
            else:
                logger.error(f"Error checking bucket: {e}")
                raise

    @staticmethod
    def build_photo_key(owner_id: str, file_name: str) -> str:
        """
        Build a unique storage key for a user photo.

        Args:
            owner_id: Owner subject
            file_name: Client-side file name (only the suffix is kept)

        Returns:
            Storage key under ``users/{owner}/photos/``
        """
        suffix = PurePosixPath(file_name).suffix.lower() or ".jpg"
        return f"users/{owner_id}/photos/{uuid.uuid4().hex}{suffix}"

    def create_upload_url(self, key: str, content_type: str, expires_in: int) -> str:
        """
        Generate a presigned PUT URL bound to a content type.

        Args:
            key: S3 object key
            content_type: MIME type the client must send
            expires_in: URL lifetime in seconds

        Returns:
            Presigned URL string
        """
        try:
            return self.client.generate_presigned_url(
                "put_object",
                Params={"Bucket": self.bucket, "Key": key, "ContentType": content_type},
                ExpiresIn=expires_in,
            )
        except ClientError as e:
            logger.error(f"Failed to generate upload URL: {e}")
            raise

    def get_presigned_url(self, key: str, expires_in: int | None = None) -> str:
        """Generate a presigned GET URL for temporary read access."""
        try:
            return self.client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=expires_in or self.settings.download_url_expires_seconds,
            )
        except ClientError as e:
            logger.error(f"Failed to generate presigned URL: {e}")
            raise

    def file_exists(self, key: str) -> bool:
        """Check if an object exists."""
        try:
            self.client.head_object(Bucket=self.bucket, Key=key)
            return True
        except ClientError:
            return False

    def download_bytes(self, key: str) -> bytes:
        """
        Download an object as bytes.

        Args:
            key: S3 object key

        Returns:
            Object contents
        """
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()
        except ClientError as e:
            logger.error(f"Failed to download file: {e}")
            raise

    def health_check(self) -> bool:
        try:
            self.client.head_bucket(Bucket=self.bucket)
            return True
        except ClientError:
            return False
