"""Upload API request/response schemas"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import Field

from ..schemas.common import CamelModel, FileRecord


class UploadUrlRequest(CamelModel):
    """Declared metadata of a file the client wants to upload"""
    filename: str = Field(..., min_length=1, description="Original filename")
    content_type: str = Field(..., min_length=1, description="Declared MIME type")
    size: int = Field(..., description="Declared size in bytes")
    project_id: Optional[UUID] = Field(None, description="Project to file the upload into")

    class Config:
        json_schema_extra = {
            "example": {
                "filename": "brief.pdf",
                "contentType": "application/pdf",
                "size": 2000000,
            }
        }


class UploadUrlResponse(CamelModel):
    """Write grant plus the pending file record"""
    upload_url: str = Field(..., description="Presigned PUT URL")
    method: str = Field("PUT", description="HTTP method to use with uploadUrl")
    headers: dict = Field(default_factory=dict, description="Headers the PUT must carry")
    expires_at: datetime
    file_record: FileRecord
    warnings: List[str] = Field(default_factory=list, description="Validation warnings")


class UploadUrlBatchRequest(CamelModel):
    files: List[UploadUrlRequest] = Field(..., description="Files to upload")
    project_id: Optional[UUID] = None


class FailedUpload(CamelModel):
    """One file of a batch that was not accepted"""
    filename: str
    error: str
    reasons: List[str] = Field(default_factory=list)


class UploadUrlBatchResponse(CamelModel):
    grants: List[UploadUrlResponse]
    failed: List[FailedUpload]


class UploadConfirmRequest(CamelModel):
    """Identifies a completed upload by the key its grant was issued for

    originalName, contentType, size and projectId are accepted for client
    compatibility; the recorded values come from the upload request and the
    object store.
    """
    key: str = Field(..., min_length=1, description="Storage key from the write grant")
    original_name: Optional[str] = None
    content_type: Optional[str] = None
    size: Optional[int] = None
    project_id: Optional[UUID] = None


class FileRecordResponse(CamelModel):
    file_record: FileRecord


class DirectUploadBatchResponse(CamelModel):
    uploaded: List[FileRecord]
    failed: List[FailedUpload]
