"""Upload broker.

Moves content into object storage without routing the bytes through this
process:

1. request_upload validates what the client declares, derives a storage key,
   records a PENDING File and hands back a presigned PUT for that key only
2. the client PUTs the bytes straight to the object store
3. confirm_upload asks the store whether the object landed; if so the File
   enters stage UPLOADED and the first ledger row is written

direct_upload is the fallback for clients that cannot PUT to the store: the
bytes come through the API and are written server-side, then confirmed in the
same transaction.

Files that are never confirmed stay PENDING and inert. Cleaning them up is
the job of an external housekeeping process (see list_stale_pending_files).
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Sequence
from uuid import UUID, uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..audit.service import log_audit_event
from ..config import get_settings
from ..database import is_lock_contention
from ..dependencies import TenantQuery
from ..domain.files.ports.object_storage_port import ObjectMetadata, ObjectStoragePort, WriteGrant
from ..domain.files.signatures import HEAD_BYTES
from ..domain.files.upload_status import UploadStatus, can_transition
from ..domain.files.validation import (
    UploadCandidate,
    ValidationConfig,
    ValidationResult,
    sanitize_filename,
    validate_batch,
    validate_upload,
)
from ..domain.workflow.actions import SystemStage, WorkflowAction
from ..errors import (
    Busy,
    InvalidUpload,
    NotFound,
    PersistenceUnavailable,
    ReviewFlowError,
    StorageUnavailable,
    UploadIncomplete,
)
from ..ledger.ledger import TransitionLedger
from ..models.file import File
from ..models.project import Project
from ..observability.metrics import upload_size_bytes, uploads_total, validation_warnings_total

logger = logging.getLogger(__name__)

UNFILED_PROJECT_SEGMENT = "unfiled"


@dataclass
class UploadTicket:
    """A pending File plus the grant the client uses to send its bytes."""
    file: File
    grant: WriteGrant
    warnings: List[str] = field(default_factory=list)


@dataclass
class UploadFailure:
    """One file of a batch that was not accepted."""
    filename: str
    error: str
    reasons: List[str] = field(default_factory=list)


@dataclass
class BatchTicketResult:
    tickets: List[UploadTicket] = field(default_factory=list)
    failed: List[UploadFailure] = field(default_factory=list)


@dataclass
class DirectBatchResult:
    uploaded: List[File] = field(default_factory=list)
    failed: List[UploadFailure] = field(default_factory=list)


@dataclass
class DirectUploadItem:
    """One file received through the direct-upload fallback."""
    filename: str
    content_type: str
    data: bytes


def derive_storage_key(tenant_id: UUID, project_id: Optional[UUID], filename: str) -> str:
    """Storage key: {tenant}/{project|unfiled}/{unique id}/{sanitized filename}

    The unique segment makes keys collision-free even for identical names;
    the tenant prefix keeps every tenant's objects under its own prefix.

    Example:
        >>> derive_storage_key(tenant, None, "brief (final).pdf")
        '5c3e.../unfiled/9f1c0b.../brief_final_.pdf'
    """
    project_segment = str(project_id) if project_id else UNFILED_PROJECT_SEGMENT
    return f"{tenant_id}/{project_segment}/{uuid4().hex}/{sanitize_filename(filename)}"


def _validation_config() -> ValidationConfig:
    return ValidationConfig.from_settings(get_settings())


def _reject(operation: str, result: ValidationResult) -> InvalidUpload:
    uploads_total.labels(operation=operation, outcome="rejected").inc()
    return InvalidUpload(result.errors[0], reasons=result.reasons)


def _require_project(db: Session, tenant_id: UUID, project_id: Optional[UUID]) -> None:
    if project_id is not None:
        TenantQuery.get_or_404(db, Project, project_id, tenant_id)


def _commit(db: Session, what: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        if is_lock_contention(e):
            raise Busy(f"Concurrent update while {what}; retry shortly")
        logger.error(f"Database error while {what}: {e}", exc_info=True)
        raise PersistenceUnavailable(f"Failed to persist upload while {what}")


def _mark_confirmed(db: Session, file: File, observed: ObjectMetadata, now: datetime) -> None:
    """Promote a pending file into the workflow and write its first ledger row."""
    if not can_transition(UploadStatus(file.upload_status), UploadStatus.CONFIRMED):
        raise ReviewFlowError(f"File {file.id} cannot be confirmed from {file.upload_status}")

    file.upload_status = UploadStatus.CONFIRMED.value
    file.size_bytes = observed.size_bytes
    if observed.content_type:
        file.mime_type = observed.content_type
    file.current_stage = SystemStage.UPLOADED.value
    file.confirmed_at = now
    file.updated_at = now
    db.flush()

    # Ingestion is the only transition without a from-stage or an actor
    TransitionLedger(db).append(
        tenant_id=file.tenant_id,
        file_id=file.id,
        from_stage=None,
        to_stage=SystemStage.UPLOADED.value,
        action=WorkflowAction.ASSIGN,
        actor_id=None,
        created_at=now,
    )


def _new_pending_file(
    tenant_id: UUID,
    actor_id: Optional[UUID],
    project_id: Optional[UUID],
    filename: str,
    content_type: str,
    size_bytes: int,
    storage_key: str,
    now: datetime,
) -> File:
    return File(
        tenant_id=tenant_id,
        project_id=project_id,
        original_name=filename,
        mime_type=content_type,
        size_bytes=size_bytes,
        storage_key=storage_key,
        upload_status=UploadStatus.PENDING.value,
        current_stage=None,
        revision_count=0,
        uploaded_by=actor_id,
        created_at=now,
        updated_at=now,
    )


async def request_upload(
    db: Session,
    storage: ObjectStoragePort,
    tenant_id: UUID,
    actor_id: Optional[UUID],
    filename: str,
    content_type: str,
    size_bytes: int,
    project_id: Optional[UUID] = None,
    config: Optional[ValidationConfig] = None,
) -> UploadTicket:
    """Validate a declared upload and issue a write grant for it.

    Raises:
        InvalidUpload: Validation rejected the request (nothing is recorded)
        NotFound: project_id is unknown or belongs to another tenant
        StorageUnavailable: The grant could not be issued
        PersistenceUnavailable: The pending File could not be recorded
    """
    settings = get_settings()
    result = validate_upload(
        UploadCandidate(filename=filename, content_type=content_type, size_bytes=size_bytes),
        config or _validation_config(),
    )
    if not result.accepted:
        logger.info(
            f"Upload request rejected: {result.errors}",
            extra={"tenant_id": tenant_id, "user_id": actor_id},
        )
        raise _reject("request", result)
    if result.warnings:
        validation_warnings_total.inc()

    _require_project(db, tenant_id, project_id)

    storage_key = derive_storage_key(tenant_id, project_id, filename)
    now = datetime.now(timezone.utc)
    file = _new_pending_file(
        tenant_id, actor_id, project_id, filename, content_type, size_bytes, storage_key, now
    )
    db.add(file)
    try:
        db.flush()
        log_audit_event(
            db=db,
            tenant_id=tenant_id,
            action="UPLOAD_REQUESTED",
            actor_id=actor_id,
            entity_type="file",
            entity_id=file.id,
            metadata={
                "original_name": filename,
                "mime_type": content_type,
                "size_bytes": size_bytes,
                "warnings": result.warnings,
            },
        )
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to record pending file: {e}", exc_info=True)
        raise PersistenceUnavailable("Failed to record upload request")

    # The row exists before the grant does, so every key that can be written
    # is visible to housekeeping
    try:
        grant = await storage.issue_write_grant(
            storage_key, content_type, settings.UPLOAD_URL_EXPIRY_SECONDS
        )
    except ReviewFlowError:
        db.rollback()
        uploads_total.labels(operation="request", outcome="error").inc()
        raise
    _commit(db, "recording upload request")
    db.refresh(file)

    uploads_total.labels(operation="request", outcome="success").inc()
    logger.info(
        f"Issued write grant for {filename}",
        extra={"tenant_id": tenant_id, "file_id": file.id, "storage_key": storage_key},
    )
    return UploadTicket(file=file, grant=grant, warnings=result.warnings)


async def request_upload_batch(
    db: Session,
    storage: ObjectStoragePort,
    tenant_id: UUID,
    actor_id: Optional[UUID],
    candidates: Sequence[UploadCandidate],
    project_id: Optional[UUID] = None,
) -> BatchTicketResult:
    """Issue write grants for several files; each file succeeds or fails alone.

    Raises:
        InvalidUpload: Batch-level errors (empty, too many files, duplicate names)
        NotFound: project_id is unknown or belongs to another tenant
    """
    config = _validation_config()
    batch = validate_batch(candidates, config)
    if batch.aborted:
        uploads_total.labels(operation="request", outcome="rejected").inc()
        raise InvalidUpload(batch.batch_errors[0], reasons=batch.batch_errors)

    _require_project(db, tenant_id, project_id)

    outcome = BatchTicketResult()
    for candidate in candidates:
        try:
            ticket = await request_upload(
                db,
                storage,
                tenant_id,
                actor_id,
                candidate.filename,
                candidate.content_type,
                candidate.size_bytes,
                project_id=project_id,
                config=config,
            )
        except (InvalidUpload, StorageUnavailable, PersistenceUnavailable) as e:
            reasons = getattr(e, "reasons", [])
            outcome.failed.append(UploadFailure(candidate.filename, e.message, reasons))
            continue
        outcome.tickets.append(ticket)
    return outcome


async def confirm_upload(
    db: Session,
    storage: ObjectStoragePort,
    tenant_id: UUID,
    file_id: UUID,
    actor_id: Optional[UUID] = None,
) -> File:
    """Confirm that the client's PUT landed and move the file into UPLOADED.

    Idempotent: confirming a confirmed file returns it unchanged and writes
    no second ledger row.

    Raises:
        NotFound: Unknown file or file of another tenant
        UploadIncomplete: The object is not in storage (yet)
        StorageUnavailable: The store could not be asked
        InvalidUpload: The stored object is empty or larger than the upload limit
    """
    file = TenantQuery.get_or_404(db, File, file_id, tenant_id)
    if not file.is_pending:
        return file

    # Ask the store before taking the row lock; no lock is held across I/O
    observed = await storage.head_object(file.storage_key)
    if observed is None:
        uploads_total.labels(operation="confirm", outcome="incomplete").inc()
        raise UploadIncomplete(
            "Upload has not completed: object not found in storage",
            details={"file_id": str(file.id)},
        )

    if observed.size_bytes <= 0:
        uploads_total.labels(operation="confirm", outcome="rejected").inc()
        raise InvalidUpload(
            "Stored object is empty (0 bytes)",
            reasons=[f"Observed size {observed.size_bytes} bytes"],
        )

    max_size = get_settings().MAX_UPLOAD_SIZE_BYTES
    if observed.size_bytes > max_size:
        uploads_total.labels(operation="confirm", outcome="rejected").inc()
        raise InvalidUpload(
            f"Stored object exceeds maximum size of {max_size} bytes",
            reasons=[f"Observed size {observed.size_bytes} bytes"],
        )

    file = (
        db.query(File)
        .filter(File.id == file_id, File.tenant_id == tenant_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if not file.is_pending:
        # A concurrent confirm won the race
        return file

    now = datetime.now(timezone.utc)
    try:
        _mark_confirmed(db, file, observed, now)
        log_audit_event(
            db=db,
            tenant_id=tenant_id,
            action="UPLOAD_CONFIRMED",
            actor_id=actor_id,
            entity_type="file",
            entity_id=file.id,
            metadata={"size_bytes": observed.size_bytes, "mime_type": file.mime_type},
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        if not is_lock_contention(e):
            logger.error(f"Failed to confirm file {file_id}: {e}", exc_info=True)
            raise PersistenceUnavailable("Failed to confirm upload")
        # Lost the version check to a concurrent confirm
        file = TenantQuery.get_or_404(db, File, file_id, tenant_id)
        if file.is_pending:
            raise Busy("Upload is being confirmed by another request; retry shortly")
        return file
    except ReviewFlowError:
        db.rollback()
        raise

    db.refresh(file)
    uploads_total.labels(operation="confirm", outcome="success").inc()
    upload_size_bytes.observe(file.size_bytes)
    logger.info(
        f"Confirmed upload {file.original_name}",
        extra={"tenant_id": tenant_id, "file_id": file.id, "storage_key": file.storage_key},
    )
    return file


async def confirm_upload_by_key(
    db: Session,
    storage: ObjectStoragePort,
    tenant_id: UUID,
    storage_key: str,
    actor_id: Optional[UUID] = None,
) -> File:
    """Confirm an upload identified by the storage key its grant was issued for."""
    file = (
        db.query(File)
        .filter(File.tenant_id == tenant_id, File.storage_key == storage_key)
        .first()
    )
    if not file:
        raise NotFound("File not found")
    return await confirm_upload(db, storage, tenant_id, file.id, actor_id=actor_id)


def _store_direct_upload(
    db: Session,
    tenant_id: UUID,
    actor_id: Optional[UUID],
    project_id: Optional[UUID],
    item: DirectUploadItem,
    storage_key: str,
    observed: ObjectMetadata,
    warnings: List[str],
) -> File:
    now = datetime.now(timezone.utc)
    file = _new_pending_file(
        tenant_id, actor_id, project_id, item.filename, item.content_type,
        len(item.data), storage_key, now,
    )
    db.add(file)
    try:
        db.flush()
        _mark_confirmed(db, file, observed, now)
        log_audit_event(
            db=db,
            tenant_id=tenant_id,
            action="UPLOAD_CONFIRMED",
            actor_id=actor_id,
            entity_type="file",
            entity_id=file.id,
            metadata={
                "original_name": item.filename,
                "size_bytes": observed.size_bytes,
                "direct": True,
                "warnings": warnings,
            },
        )
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to record direct upload {item.filename}: {e}", exc_info=True)
        raise PersistenceUnavailable("Failed to record upload")
    except ReviewFlowError:
        db.rollback()
        raise
    _commit(db, "recording direct upload")
    db.refresh(file)

    uploads_total.labels(operation="direct", outcome="success").inc()
    upload_size_bytes.observe(file.size_bytes)
    return file


async def direct_upload(
    db: Session,
    storage: ObjectStoragePort,
    tenant_id: UUID,
    actor_id: Optional[UUID],
    filename: str,
    content_type: str,
    data: bytes,
    project_id: Optional[UUID] = None,
) -> File:
    """Validate, store server-side and confirm in one call.

    The real leading bytes are available here, so the byte-signature check
    always runs.

    Raises:
        InvalidUpload: Validation rejected the file
        NotFound: project_id is unknown or belongs to another tenant
        StorageUnavailable: The object could not be written
    """
    item = DirectUploadItem(filename=filename, content_type=content_type, data=data)
    result = validate_upload(
        UploadCandidate(filename, content_type, len(data), head=data[:HEAD_BYTES]),
        _validation_config(),
    )
    if not result.accepted:
        raise _reject("direct", result)
    if result.warnings:
        validation_warnings_total.inc()

    _require_project(db, tenant_id, project_id)

    storage_key = derive_storage_key(tenant_id, project_id, filename)
    observed = await storage.put_object(storage_key, data, content_type)
    return _store_direct_upload(
        db, tenant_id, actor_id, project_id, item, storage_key, observed, result.warnings
    )


async def direct_upload_batch(
    db: Session,
    storage: ObjectStoragePort,
    tenant_id: UUID,
    actor_id: Optional[UUID],
    items: Sequence[DirectUploadItem],
    project_id: Optional[UUID] = None,
) -> DirectBatchResult:
    """Direct-upload several files. Storage writes run concurrently; each file
    is recorded in its own transaction so one failure never sinks the rest.

    Raises:
        InvalidUpload: Batch-level errors (empty, too many files, duplicate names)
        NotFound: project_id is unknown or belongs to another tenant
    """
    candidates = [
        UploadCandidate(item.filename, item.content_type, len(item.data), head=item.data[:HEAD_BYTES])
        for item in items
    ]
    batch = validate_batch(candidates, _validation_config())
    if batch.aborted:
        uploads_total.labels(operation="direct", outcome="rejected").inc()
        raise InvalidUpload(batch.batch_errors[0], reasons=batch.batch_errors)

    _require_project(db, tenant_id, project_id)

    outcome = DirectBatchResult()
    accepted = []
    for item, result in zip(items, batch.results):
        if result.accepted:
            accepted.append((item, result, derive_storage_key(tenant_id, project_id, item.filename)))
        else:
            uploads_total.labels(operation="direct", outcome="rejected").inc()
            outcome.failed.append(UploadFailure(item.filename, result.errors[0], result.reasons))

    writes = await asyncio.gather(
        *(storage.put_object(key, item.data, item.content_type) for item, _, key in accepted),
        return_exceptions=True,
    )

    for (item, result, key), written in zip(accepted, writes):
        if isinstance(written, StorageUnavailable):
            uploads_total.labels(operation="direct", outcome="error").inc()
            outcome.failed.append(UploadFailure(item.filename, written.message))
            continue
        if isinstance(written, Exception):
            uploads_total.labels(operation="direct", outcome="error").inc()
            logger.error(
                f"Storage write for {item.filename} failed: {written}",
                extra={"tenant_id": tenant_id, "storage_key": key},
                exc_info=written,
            )
            outcome.failed.append(UploadFailure(item.filename, "Failed to store file"))
            continue
        if isinstance(written, BaseException):
            raise written
        try:
            file = _store_direct_upload(
                db, tenant_id, actor_id, project_id, item, key, written, result.warnings
            )
        except (PersistenceUnavailable, Busy) as e:
            uploads_total.labels(operation="direct", outcome="error").inc()
            outcome.failed.append(UploadFailure(item.filename, e.message))
            continue
        outcome.uploaded.append(file)

    logger.info(
        f"Direct upload batch complete: uploaded={len(outcome.uploaded)}, failed={len(outcome.failed)}",
        extra={"tenant_id": tenant_id},
    )
    return outcome


def list_stale_pending_files(
    db: Session,
    tenant_id: UUID,
    older_than: timedelta,
    limit: int = 500,
) -> List[File]:
    """Pending files whose grant was issued more than `older_than` ago.

    For the external housekeeping process; this service never deletes.
    """
    cutoff = datetime.now(timezone.utc) - older_than
    return (
        db.query(File)
        .filter(
            File.tenant_id == tenant_id,
            File.upload_status == UploadStatus.PENDING.value,
            File.created_at < cutoff,
        )
        .order_by(File.created_at.asc())
        .limit(limit)
        .all()
    )


async def issue_download_url(
    db: Session,
    storage: ObjectStoragePort,
    tenant_id: UUID,
    file_id: UUID,
) -> str:
    """Presigned GET for a confirmed file of the tenant.

    Raises:
        NotFound: Unknown, pending, or other-tenant file
    """
    file = TenantQuery.get_or_404(db, File, file_id, tenant_id)
    if file.is_pending:
        raise NotFound("File not found")
    return await storage.issue_read_grant(
        file.storage_key, get_settings().DOWNLOAD_URL_EXPIRY_SECONDS
    )


def attach_to_project(
    db: Session,
    tenant_id: UUID,
    file_id: UUID,
    project_id: UUID,
    actor_id: Optional[UUID] = None,
) -> File:
    """File a confirmed file into a project of the same tenant.

    The storage key is immutable and keeps its original project segment.

    Raises:
        NotFound: File or project unknown, pending, or of another tenant
    """
    file = TenantQuery.get_or_404(db, File, file_id, tenant_id)
    if file.is_pending:
        raise NotFound("File not found")
    _require_project(db, tenant_id, project_id)

    if file.project_id == project_id:
        return file

    previous = file.project_id
    file.project_id = project_id
    try:
        db.flush()
        log_audit_event(
            db=db,
            tenant_id=tenant_id,
            action="FILE_ATTACHED_TO_PROJECT",
            actor_id=actor_id,
            entity_type="file",
            entity_id=file.id,
            metadata={
                "from_project_id": str(previous) if previous else None,
                "to_project_id": str(project_id),
            },
        )
    except SQLAlchemyError as e:
        db.rollback()
        if is_lock_contention(e):
            raise Busy("File is being updated by another request; retry shortly")
        raise PersistenceUnavailable("Failed to attach file to project")
    _commit(db, "attaching file to project")
    db.refresh(file)
    return file
