"""S3 Storage Adapter - Implementation of ObjectStoragePort using boto3.

Works against AWS S3, MinIO, Cloudflare R2 and other S3-compatible services.
Content bytes normally never pass through this process: the adapter only
presigns URLs and asks the store what it holds. The one exception is
put_object, used by the direct-upload fallback.

Architecture: Hexagonal - Adapter implementation in infrastructure layer
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from ...domain.files.ports.object_storage_port import (
    ObjectMetadata,
    ObjectStoragePort,
    WriteGrant,
)
from ...errors import StorageUnavailable
from .storage_config import StorageConfig

logger = logging.getLogger(__name__)

# Error codes S3-compatible stores use for "no such object" on HEAD
_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


def _error_code(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Code", "Unknown")


class S3StorageAdapter(ObjectStoragePort):
    """S3-compatible storage adapter using boto3.

    boto3 calls are blocking; each one is pushed to a worker thread so the
    event loop keeps serving other requests.

    Example:
        config = load_storage_config(settings)
        storage = S3StorageAdapter.from_config(config)
        grant = await storage.issue_write_grant(key, "application/pdf")
    """

    def __init__(
        self,
        endpoint_url: Optional[str],
        access_key: str,
        secret_key: str,
        bucket_name: str,
        region: str = "us-east-1",
        s3_client=None,
    ):
        """Initialize S3 storage adapter.

        Args:
            endpoint_url: S3 endpoint URL (None for AWS S3, URL for MinIO/R2)
            access_key: S3 access key ID
            secret_key: S3 secret access key
            bucket_name: S3 bucket name
            region: AWS region (default: 'us-east-1')
            s3_client: Pre-built client (tests)

        Raises:
            StorageUnavailable: If S3 client initialization fails
        """
        try:
            self.s3_client = s3_client or boto3.client(
                "s3",
                endpoint_url=endpoint_url,
                aws_access_key_id=access_key,
                aws_secret_access_key=secret_key,
                region_name=region,
                config=BotoConfig(signature_version="s3v4"),
            )
        except (BotoCoreError, ValueError) as e:
            raise StorageUnavailable(f"Failed to initialize S3 client: {e}")

        self.bucket_name = bucket_name
        self.region = region

        logger.info(
            f"Initialized S3 storage adapter: bucket={bucket_name}, "
            f"endpoint={endpoint_url or 'AWS S3'}, region={region}"
        )

    @classmethod
    def from_config(cls, config: StorageConfig) -> "S3StorageAdapter":
        return cls(
            endpoint_url=config.endpoint_url,
            access_key=config.access_key,
            secret_key=config.secret_key,
            bucket_name=config.bucket_name,
            region=config.region,
        )

    async def issue_write_grant(
        self,
        storage_key: str,
        content_type: str,
        expires_in_seconds: int = 900,
    ) -> WriteGrant:
        """Presign a PUT for exactly one key.

        The content type is part of the signature, so the client must send
        the same Content-Type header or the store rejects the request.
        """
        try:
            url = await asyncio.to_thread(
                self.s3_client.generate_presigned_url,
                "put_object",
                Params={
                    "Bucket": self.bucket_name,
                    "Key": storage_key,
                    "ContentType": content_type,
                },
                ExpiresIn=expires_in_seconds,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Presigned PUT generation failed: storage_key={storage_key}, error={e}")
            raise StorageUnavailable(f"Failed to issue upload URL: {e}")

        logger.info(
            f"Issued write grant: storage_key={storage_key}, "
            f"expires_in={expires_in_seconds}s"
        )
        return WriteGrant(
            url=url,
            storage_key=storage_key,
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in_seconds),
            headers={"Content-Type": content_type},
        )

    async def issue_read_grant(
        self,
        storage_key: str,
        expires_in_seconds: int = 3600,
    ) -> str:
        try:
            url = await asyncio.to_thread(
                self.s3_client.generate_presigned_url,
                "get_object",
                Params={
                    "Bucket": self.bucket_name,
                    "Key": storage_key,
                },
                ExpiresIn=expires_in_seconds,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Presigned GET generation failed: storage_key={storage_key}, error={e}")
            raise StorageUnavailable(f"Failed to issue download URL: {e}")

        logger.info(
            f"Issued read grant: storage_key={storage_key}, "
            f"expires_in={expires_in_seconds}s"
        )
        return url

    async def head_object(self, storage_key: str) -> Optional[ObjectMetadata]:
        """HEAD the object. Missing → None; anything else going wrong → StorageUnavailable."""
        try:
            response = await asyncio.to_thread(
                self.s3_client.head_object,
                Bucket=self.bucket_name,
                Key=storage_key,
            )
        except ClientError as e:
            error_code = _error_code(e)
            if error_code in _NOT_FOUND_CODES:
                return None
            logger.error(f"S3 head_object failed: storage_key={storage_key}, error={error_code}")
            raise StorageUnavailable(f"Failed to inspect object: {error_code}")
        except BotoCoreError as e:
            logger.error(f"S3 head_object failed: storage_key={storage_key}, error={e}")
            raise StorageUnavailable(f"Failed to inspect object: {e}")

        return ObjectMetadata(
            storage_key=storage_key,
            size_bytes=int(response.get("ContentLength", 0)),
            content_type=response.get("ContentType"),
            etag=(response.get("ETag") or "").strip('"') or None,
            last_modified=response.get("LastModified"),
        )

    async def list_objects(self, prefix: str, max_keys: int = 1000) -> List[ObjectMetadata]:
        try:
            response = await asyncio.to_thread(
                self.s3_client.list_objects_v2,
                Bucket=self.bucket_name,
                Prefix=prefix,
                MaxKeys=max_keys,
            )
        except ClientError as e:
            error_code = _error_code(e)
            logger.error(f"S3 list_objects failed: prefix={prefix}, error={error_code}")
            raise StorageUnavailable(f"Failed to list objects: {error_code}")
        except BotoCoreError as e:
            logger.error(f"S3 list_objects failed: prefix={prefix}, error={e}")
            raise StorageUnavailable(f"Failed to list objects: {e}")

        return [
            ObjectMetadata(
                storage_key=item["Key"],
                size_bytes=int(item.get("Size", 0)),
                etag=(item.get("ETag") or "").strip('"') or None,
                last_modified=item.get("LastModified"),
            )
            for item in response.get("Contents", [])
        ]

    async def put_object(
        self,
        storage_key: str,
        data: bytes,
        content_type: str,
    ) -> ObjectMetadata:
        try:
            response = await asyncio.to_thread(
                self.s3_client.put_object,
                Bucket=self.bucket_name,
                Key=storage_key,
                Body=data,
                ContentType=content_type,
            )
        except ClientError as e:
            error_code = _error_code(e)
            logger.error(f"S3 upload failed: storage_key={storage_key}, error={error_code}")
            raise StorageUnavailable(f"Failed to upload file: {error_code}")
        except BotoCoreError as e:
            logger.error(f"S3 upload failed: storage_key={storage_key}, error={e}")
            raise StorageUnavailable(f"Failed to upload file: {e}")

        logger.info(
            f"Uploaded file: storage_key={storage_key}, "
            f"size={len(data)}, mime_type={content_type}"
        )
        return ObjectMetadata(
            storage_key=storage_key,
            size_bytes=len(data),
            content_type=content_type,
            etag=(response.get("ETag") or "").strip('"') or None,
        )

    async def verify_bucket_exists(self) -> bool:
        """Check the configured bucket is reachable (readiness check).

        Raises:
            StorageUnavailable: If bucket check fails or bucket doesn't exist
        """
        try:
            await asyncio.to_thread(self.s3_client.head_bucket, Bucket=self.bucket_name)
            return True
        except ClientError as e:
            error_code = _error_code(e)
            if error_code in _NOT_FOUND_CODES:
                raise StorageUnavailable(
                    f"Bucket '{self.bucket_name}' does not exist. "
                    f"Create it first or update S3_BUCKET_NAME."
                )
            raise StorageUnavailable(f"Failed to verify bucket: {error_code}")
        except BotoCoreError as e:
            raise StorageUnavailable(f"Failed to verify bucket: {e}")
