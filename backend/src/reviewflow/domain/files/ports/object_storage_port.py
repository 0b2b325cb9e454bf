"""Object Storage Port - Domain interface for S3-compatible storage.

This port defines the capability the upload broker needs from object storage.
Adapters implement it for S3, MinIO, R2, or an in-memory fake in tests.

Architecture: Hexagonal - Port interface in domain layer
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional


@dataclass
class WriteGrant:
    """Time-limited authorization to write exactly one storage key.

    Attributes:
        url: Presigned URL the client sends the bytes to
        storage_key: The only key the grant can write
        method: HTTP method the client must use
        headers: Headers the client must send unchanged (signed into the URL)
        expires_at: Moment after which the URL is rejected by the store
    """
    url: str
    storage_key: str
    expires_at: datetime
    method: str = "PUT"
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass
class ObjectMetadata:
    """Metadata the store reports for an object it holds.

    Attributes:
        storage_key: Key of the object
        size_bytes: Observed content length
        content_type: Observed content type (None if the store has none)
        etag: Store-assigned entity tag
        last_modified: Last write time reported by the store
    """
    storage_key: str
    size_bytes: int
    content_type: Optional[str] = None
    etag: Optional[str] = None
    last_modified: Optional[datetime] = None


class ObjectStoragePort(ABC):
    """Port interface for S3-compatible object storage operations.

    Key Design Principles:
    - The port never chooses keys; callers derive them (tenant isolation lives there)
    - head_object returns None for a missing object and raises only on
      infrastructure failure (StorageUnavailable)
    - Adapters are constructed explicitly and injected, never module singletons

    Example Usage:
        storage = S3StorageAdapter(...)
        grant = await storage.issue_write_grant(key, "application/pdf", 900)
        # client PUTs to grant.url ...
        meta = await storage.head_object(key)
    """

    @abstractmethod
    async def issue_write_grant(
        self,
        storage_key: str,
        content_type: str,
        expires_in_seconds: int = 900,
    ) -> WriteGrant:
        """Presign a PUT for exactly `storage_key` constrained to `content_type`.

        Raises:
            StorageUnavailable: If the URL cannot be generated
        """

    @abstractmethod
    async def issue_read_grant(
        self,
        storage_key: str,
        expires_in_seconds: int = 3600,
    ) -> str:
        """Presign a GET for `storage_key`.

        Raises:
            StorageUnavailable: If the URL cannot be generated
        """

    @abstractmethod
    async def head_object(self, storage_key: str) -> Optional[ObjectMetadata]:
        """Return metadata for `storage_key`, or None if it does not exist.

        Raises:
            StorageUnavailable: On any failure other than "not found"
        """

    @abstractmethod
    async def list_objects(self, prefix: str, max_keys: int = 1000) -> List[ObjectMetadata]:
        """List objects under `prefix` (at most `max_keys`).

        Raises:
            StorageUnavailable: If listing fails
        """

    @abstractmethod
    async def put_object(
        self,
        storage_key: str,
        data: bytes,
        content_type: str,
    ) -> ObjectMetadata:
        """Write `data` server-side. Used only by the direct-upload fallback.

        Raises:
            StorageUnavailable: If the write fails
        """

    async def verify_bucket_exists(self) -> bool:
        """Readiness check. Adapters backed by a remote store override this.

        Raises:
            StorageUnavailable: If the store cannot be reached
        """
        return True
