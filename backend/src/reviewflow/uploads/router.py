"""Upload API endpoints

Two ways to get content in:

- Presigned: POST /upload-url issues a write grant, the client PUTs the bytes
  to the object store, POST /upload-confirm records completion.
- Direct (fallback): POST /upload-direct sends the bytes through the API.

Multi-tenant isolation: tenant_id comes from the bearer token; storage keys
are always derived under the caller's tenant prefix.
"""

import logging
from typing import Annotated, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File as FormFile, Form, UploadFile
from sqlalchemy.orm import Session

from ..auth.dependencies import Principal, require_role
from ..auth.roles import UserRole
from ..database import get_db
from ..dependencies import get_storage
from ..domain.files.ports.object_storage_port import ObjectStoragePort
from ..domain.files.validation import UploadCandidate
from ..schemas.common import FileRecord, error_responses
from . import broker
from .schemas import (
    DirectUploadBatchResponse,
    FailedUpload,
    FileRecordResponse,
    UploadConfirmRequest,
    UploadUrlBatchRequest,
    UploadUrlBatchResponse,
    UploadUrlRequest,
    UploadUrlResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Uploads"], responses=error_responses(400, 404, 409, 503))

Contributor = Annotated[Principal, Depends(require_role(UserRole.CONTRIBUTOR))]
Db = Annotated[Session, Depends(get_db)]
Storage = Annotated[ObjectStoragePort, Depends(get_storage)]


def _ticket_response(ticket: broker.UploadTicket) -> UploadUrlResponse:
    return UploadUrlResponse(
        upload_url=ticket.grant.url,
        method=ticket.grant.method,
        headers=ticket.grant.headers,
        expires_at=ticket.grant.expires_at,
        file_record=FileRecord.from_file(ticket.file),
        warnings=ticket.warnings,
    )


def _failed(failures: List[broker.UploadFailure]) -> List[FailedUpload]:
    return [FailedUpload(filename=f.filename, error=f.error, reasons=f.reasons) for f in failures]


@router.post("/upload-url", response_model=UploadUrlResponse)
async def request_upload_url(
    body: UploadUrlRequest,
    principal: Contributor,
    db: Db,
    storage: Storage,
):
    """Validate a declared upload and return a presigned PUT URL

    Example:
        curl -X POST https://api.example.com/api/v1/upload-url \\
             -H "Authorization: Bearer $TOKEN" \\
             -d '{"filename": "brief.pdf", "contentType": "application/pdf", "size": 2000000}'
    """
    ticket = await broker.request_upload(
        db,
        storage,
        tenant_id=principal.tenant_id,
        actor_id=principal.user_id,
        filename=body.filename,
        content_type=body.content_type,
        size_bytes=body.size,
        project_id=body.project_id,
    )
    return _ticket_response(ticket)


@router.post("/upload-url/batch", response_model=UploadUrlBatchResponse)
async def request_upload_url_batch(
    body: UploadUrlBatchRequest,
    principal: Contributor,
    db: Db,
    storage: Storage,
):
    """Issue write grants for several files; rejected files are reported, not fatal."""
    result = await broker.request_upload_batch(
        db,
        storage,
        tenant_id=principal.tenant_id,
        actor_id=principal.user_id,
        candidates=[
            UploadCandidate(filename=f.filename, content_type=f.content_type, size_bytes=f.size)
            for f in body.files
        ],
        project_id=body.project_id,
    )
    return UploadUrlBatchResponse(
        grants=[_ticket_response(ticket) for ticket in result.tickets],
        failed=_failed(result.failed),
    )


@router.post("/upload-confirm", response_model=FileRecordResponse)
async def confirm_upload(
    body: UploadConfirmRequest,
    principal: Contributor,
    db: Db,
    storage: Storage,
):
    """Record that the client's PUT completed. Safe to call more than once."""
    file = await broker.confirm_upload_by_key(
        db,
        storage,
        tenant_id=principal.tenant_id,
        storage_key=body.key,
        actor_id=principal.user_id,
    )
    return FileRecordResponse(file_record=FileRecord.from_file(file))


@router.post("/upload-direct", response_model=FileRecordResponse, status_code=201)
async def upload_direct(
    principal: Contributor,
    db: Db,
    storage: Storage,
    file: UploadFile = FormFile(...),
    project_id: Optional[UUID] = Form(None, alias="projectId"),
):
    """Upload through the API when the client cannot PUT to the object store.

    Example:
        curl -X POST https://api.example.com/api/v1/upload-direct \\
             -H "Authorization: Bearer $TOKEN" \\
             -F "file=@brief.pdf"
    """
    data = await file.read()
    record = await broker.direct_upload(
        db,
        storage,
        tenant_id=principal.tenant_id,
        actor_id=principal.user_id,
        filename=file.filename or "",
        content_type=file.content_type or "application/octet-stream",
        data=data,
        project_id=project_id,
    )
    return FileRecordResponse(file_record=FileRecord.from_file(record))


@router.post("/upload-direct/batch", response_model=DirectUploadBatchResponse)
async def upload_direct_batch(
    principal: Contributor,
    db: Db,
    storage: Storage,
    files: List[UploadFile] = FormFile(...),
    project_id: Optional[UUID] = Form(None, alias="projectId"),
):
    """Direct-upload several files; each one succeeds or fails on its own."""
    items = [
        broker.DirectUploadItem(
            filename=upload.filename or "",
            content_type=upload.content_type or "application/octet-stream",
            data=await upload.read(),
        )
        for upload in files
    ]
    result = await broker.direct_upload_batch(
        db,
        storage,
        tenant_id=principal.tenant_id,
        actor_id=principal.user_id,
        items=items,
        project_id=project_id,
    )
    return DirectUploadBatchResponse(
        uploaded=[FileRecord.from_file(f) for f in result.uploaded],
        failed=_failed(result.failed),
    )
