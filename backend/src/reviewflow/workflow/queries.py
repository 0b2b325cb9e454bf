"""Read-side queries over files and their workflow state."""

from dataclasses import dataclass
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy.orm import Session

from ..dependencies import TenantQuery
from ..domain.files.upload_status import UploadStatus
from ..domain.workflow.actions import QCReviewStatus, WorkflowAction
from ..domain.workflow.transitions import StageSequence, allowed_actions
from ..errors import InvalidStageConfiguration, LedgerIntegrityError, NotFound
from ..ledger.ledger import TransitionLedger
from ..models.file import File
from ..models.qc_review import QCReview
from ..models.stage_transition import StageTransition
from .stages import load_stage_sequence


@dataclass
class WorkflowStatus:
    """A file's position in the workflow plus everything that explains it."""
    file: File
    history: List[StageTransition]
    allowed_actions: List[WorkflowAction]
    open_review: Optional[QCReview]
    ledger_consistent: bool


def get_file(db: Session, tenant_id: UUID, file_id: UUID) -> File:
    """Any file of the tenant, pending or confirmed."""
    return TenantQuery.get_or_404(db, File, file_id, tenant_id)


def get_workflow_file(db: Session, tenant_id: UUID, file_id: UUID) -> File:
    """A confirmed file of the tenant. Pending uploads are not in the workflow."""
    file = get_file(db, tenant_id, file_id)
    if file.is_pending:
        raise NotFound("File not found")
    return file


def list_files(
    db: Session,
    tenant_id: UUID,
    stage: Optional[str] = None,
    assigned_to: Optional[UUID] = None,
    project_id: Optional[UUID] = None,
    upload_status: Optional[str] = UploadStatus.CONFIRMED.value,
    limit: int = 50,
    offset: int = 0,
) -> Tuple[List[File], int]:
    """Files of a tenant, newest first, with the unpaginated total."""
    query = TenantQuery.scoped_query(db, File, tenant_id)
    if upload_status:
        query = query.filter(File.upload_status == upload_status)
    if stage:
        query = query.filter(File.current_stage == stage)
    if assigned_to:
        query = query.filter(File.assigned_to == assigned_to)
    if project_id:
        query = query.filter(File.project_id == project_id)

    total = query.count()
    items = (
        query.order_by(File.created_at.desc(), File.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return items, total


def get_history(db: Session, tenant_id: UUID, file_id: UUID) -> List[StageTransition]:
    file = get_workflow_file(db, tenant_id, file_id)
    return TransitionLedger(db).list_for_file(tenant_id, file.id)


def get_workflow_status(db: Session, tenant_id: UUID, file_id: UUID) -> WorkflowStatus:
    file = get_workflow_file(db, tenant_id, file_id)
    ledger = TransitionLedger(db)

    try:
        stages = load_stage_sequence(db, tenant_id)
    except InvalidStageConfiguration:
        stages = StageSequence([])

    try:
        ledger.verify(file)
        consistent = True
    except LedgerIntegrityError:
        consistent = False

    open_review = (
        db.query(QCReview)
        .filter(
            QCReview.tenant_id == tenant_id,
            QCReview.file_id == file.id,
            QCReview.status == QCReviewStatus.PENDING.value,
        )
        .order_by(QCReview.created_at.desc())
        .first()
    )

    return WorkflowStatus(
        file=file,
        history=ledger.list_for_file(tenant_id, file.id),
        allowed_actions=allowed_actions(file.current_stage, stages),
        open_review=open_review,
        ledger_consistent=consistent,
    )


def list_qc_reviews(
    db: Session,
    tenant_id: UUID,
    file_id: Optional[UUID] = None,
    status: Optional[str] = None,
    stage: Optional[str] = None,
    project_id: Optional[UUID] = None,
    reviewer_id: Optional[UUID] = None,
    limit: int = 50,
    offset: int = 0,
) -> Tuple[List[QCReview], int]:
    """Reviewer decision records of a tenant, newest first, with the total.

    project_id filters on the reviewed file's project.
    """
    query = TenantQuery.scoped_query(db, QCReview, tenant_id)
    if file_id:
        query = query.filter(QCReview.file_id == file_id)
    if status:
        query = query.filter(QCReview.status == status)
    if stage:
        query = query.filter(QCReview.stage == stage)
    if reviewer_id:
        query = query.filter(QCReview.reviewer_id == reviewer_id)
    if project_id:
        query = query.join(File, File.id == QCReview.file_id).filter(
            File.tenant_id == tenant_id, File.project_id == project_id
        )

    total = query.count()
    items = (
        query.order_by(QCReview.created_at.desc(), QCReview.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return items, total
