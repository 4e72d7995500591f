"""
Object storage for device images: S3 (or an S3-compatible service) and a
local-disk fallback with the same interface.
"""
from pathlib import Path
from typing import Optional

import boto3
from botocore.exceptions import ClientError, BotoCoreError

from core.logger import logger
import config


class S3Client:
    """S3 client for storing and retrieving device images."""

    def __init__(
        self,
        bucket_name: str,
        aws_access_key_id: Optional[str] = None,
        aws_secret_access_key: Optional[str] = None,
        region_name: str = "us-east-1",
        endpoint_url: Optional[str] = None,  # For S3-compatible services (MinIO, etc.)
        public_base_url: Optional[str] = None,
        auto_create_bucket: bool = True
    ):
        """
        Initialize S3 client.

        Args:
            bucket_name: Bucket holding all device images
            aws_access_key_id: AWS access key (or from env)
            aws_secret_access_key: AWS secret key (or from env)
            region_name: AWS region
            endpoint_url: Custom endpoint URL (for MinIO, etc.)
            public_base_url: CDN or public bucket URL used for public links
            auto_create_bucket: Create the bucket if it doesn't exist
        """
        self.bucket_name = bucket_name
        self.region_name = region_name
        self.endpoint_url = endpoint_url
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None

        client_kwargs = {
            "region_name": region_name
        }
        if aws_access_key_id:
            client_kwargs["aws_access_key_id"] = aws_access_key_id
        if aws_secret_access_key:
            client_kwargs["aws_secret_access_key"] = aws_secret_access_key
        if endpoint_url:
            client_kwargs["endpoint_url"] = endpoint_url

        self.s3_client = boto3.client("s3", **client_kwargs)

        if auto_create_bucket:
            self._ensure_bucket_exists()

        logger.info(f"S3 storage initialized (bucket: {bucket_name})")

    def _ensure_bucket_exists(self):
        """Ensure bucket exists, create if it doesn't."""
        try:
            self.s3_client.head_bucket(Bucket=self.bucket_name)
            logger.debug(f"Bucket {self.bucket_name} exists")
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "")
            if error_code not in ("404", "NoSuchBucket"):
                logger.error(f"Error checking bucket {self.bucket_name}: {e}")
                raise
            if self.region_name == "us-east-1":
                self.s3_client.create_bucket(Bucket=self.bucket_name)
            else:
                self.s3_client.create_bucket(
                    Bucket=self.bucket_name,
                    CreateBucketConfiguration={"LocationConstraint": self.region_name}
                )
            logger.info(f"Created bucket: {self.bucket_name}")

    def upload(self, path: str, data: bytes, content_type: Optional[str] = None) -> str:
        """
        Store bytes under ``path`` and return their public URL.

        Raises:
            ClientError, BotoCoreError: on S3 failure
        """
        extra_args = {}
        if content_type:
            extra_args["ContentType"] = content_type
        try:
            self.s3_client.put_object(Bucket=self.bucket_name, Key=path, Body=data, **extra_args)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to upload {path} to S3: {e}")
            raise
        logger.info(f"Uploaded file to S3: s3://{self.bucket_name}/{path}")
        return self.get_public_url(path)

    def get_public_url(self, path: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{path}"
        if self.endpoint_url:
            return f"{self.endpoint_url.rstrip('/')}/{self.bucket_name}/{path}"
        return f"https://{self.bucket_name}.s3.{self.region_name}.amazonaws.com/{path}"

    def delete(self, path: str) -> bool:
        try:
            self.s3_client.delete_object(Bucket=self.bucket_name, Key=path)
            logger.info(f"Deleted file from S3: {self.bucket_name}/{path}")
            return True
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to delete file from S3: {e}")
            raise


class LocalStorage:
    """Local-disk storage with the same interface as ``S3Client``."""

    def __init__(self, root: Path, base_url: str = "/uploads"):
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")
        self.root.mkdir(parents=True, exist_ok=True)
        logger.info(f"Local storage initialized at {self.root}")

    def upload(self, path: str, data: bytes, content_type: Optional[str] = None) -> str:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        logger.info(f"Stored file locally: {target}")
        return self.get_public_url(path)

    def get_public_url(self, path: str) -> str:
        return f"{self.base_url}/{path}"

    def delete(self, path: str) -> bool:
        target = self._resolve(path)
        if target.exists():
            target.unlink()
            return True
        return False

    def _resolve(self, path: str) -> Path:
        target = (self.root / path).resolve()
        if self.root.resolve() not in target.parents:
            raise ValueError(f"Path escapes storage root: {path}")
        return target


def create_storage():
    """Build the configured storage backend (S3 when USE_S3, else local disk)."""
    if config.USE_S3:
        return S3Client(
            bucket_name=config.S3_BUCKET_NAME,
            aws_access_key_id=config.S3_ACCESS_KEY_ID,
            aws_secret_access_key=config.S3_SECRET_ACCESS_KEY,
            region_name=config.S3_REGION,
            endpoint_url=config.S3_ENDPOINT_URL,
            public_base_url=config.S3_PUBLIC_BASE_URL,
        )
    return LocalStorage(config.UPLOADS_DIR, config.LOCAL_MEDIA_BASE_URL)
