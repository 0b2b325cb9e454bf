"""Workflow API endpoints: transitions, history and file queries"""

import logging
from typing import Annotated, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from ..auth.dependencies import Principal, get_current_principal, require_role
from ..auth.roles import UserRole
from ..config import get_settings
from ..database import get_db
from ..dependencies import get_storage
from ..domain.files.ports.object_storage_port import ObjectStoragePort
from ..domain.workflow.actions import ADMIN_ACTIONS
from ..schemas.common import FileRecord, TransitionRecord, error_responses
from ..uploads import broker
from . import queries
from .engine import apply_action, reassign_file
from .schemas import (
    AttachProjectRequest,
    DownloadUrlResponse,
    FileListResponse,
    HistoryResponse,
    QCReviewRecord,
    ReassignRequest,
    TransitionRequest,
    TransitionResponse,
    WorkflowStatusResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/files", tags=["Workflow"], responses=error_responses(404, 409, 503))

Db = Annotated[Session, Depends(get_db)]
Viewer = Annotated[Principal, Depends(get_current_principal)]


@router.get("", response_model=FileListResponse)
def list_files(
    principal: Viewer,
    db: Db,
    stage: Optional[str] = Query(None, description="Filter by current stage"),
    assigned_to: Optional[UUID] = Query(None, alias="assignedTo"),
    project_id: Optional[UUID] = Query(None, alias="projectId"),
    include_pending: bool = Query(False, alias="includePending"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    """List the tenant's files, newest first."""
    items, total = queries.list_files(
        db,
        principal.tenant_id,
        stage=stage,
        assigned_to=assigned_to,
        project_id=project_id,
        upload_status=None if include_pending else "CONFIRMED",
        limit=limit,
        offset=offset,
    )
    return FileListResponse(
        items=[FileRecord.from_file(f) for f in items],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/{file_id}", response_model=FileRecord)
def get_file(file_id: UUID, principal: Viewer, db: Db):
    return FileRecord.from_file(queries.get_file(db, principal.tenant_id, file_id))


@router.post("/{file_id}/transition", response_model=TransitionResponse)
def transition_file(
    file_id: UUID,
    body: TransitionRequest,
    principal: Annotated[Principal, Depends(require_role(UserRole.REVIEWER))],
    db: Db,
):
    """Apply a workflow action.

    409 InvalidTransition when the action is not legal from the current stage
    or expectedStage / expectedVersion is stale; 409 Busy with Retry-After
    when another transition holds the file.
    """
    if body.action in ADMIN_ACTIONS and not principal.has_role(UserRole.ADMIN):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Action {body.action.value} requires role ADMIN",
        )

    result = apply_action(
        db,
        tenant_id=principal.tenant_id,
        file_id=file_id,
        actor_id=principal.user_id,
        action=body.action,
        comment=body.comment,
        expected_stage=body.expected_stage,
        assign_to=body.assign_to,
        expected_version=body.expected_version,
    )
    return TransitionResponse(
        new_stage=result.new_stage,
        revision_count=result.file.revision_count,
        transition=TransitionRecord.from_transition(result.transition),
    )


@router.post("/{file_id}/assignee", response_model=FileRecord)
def reassign_file_reviewer(
    file_id: UUID,
    body: ReassignRequest,
    principal: Annotated[Principal, Depends(require_role(UserRole.REVIEWER))],
    db: Db,
):
    """Hand a file to another reviewer within its current stage.

    The file does not move and no ledger row is written.
    """
    file = reassign_file(
        db,
        tenant_id=principal.tenant_id,
        file_id=file_id,
        actor_id=principal.user_id,
        assignee_id=body.assignee_id,
        expected_version=body.expected_version,
    )
    return FileRecord.from_file(file)


@router.get("/{file_id}/history", response_model=HistoryResponse)
def file_history(file_id: UUID, principal: Viewer, db: Db):
    """Ordered transition ledger of a file."""
    transitions = queries.get_history(db, principal.tenant_id, file_id)
    return HistoryResponse(
        file_id=file_id,
        current_stage=transitions[-1].to_stage if transitions else None,
        transitions=[TransitionRecord.from_transition(t) for t in transitions],
    )


@router.get("/{file_id}/workflow", response_model=WorkflowStatusResponse)
def file_workflow_status(file_id: UUID, principal: Viewer, db: Db):
    """Current stage, allowed actions, open review and full history."""
    workflow = queries.get_workflow_status(db, principal.tenant_id, file_id)
    allowed = workflow.allowed_actions
    if not principal.has_role(UserRole.ADMIN):
        allowed = [a for a in allowed if a not in ADMIN_ACTIONS]

    review = workflow.open_review
    return WorkflowStatusResponse(
        file_record=FileRecord.from_file(workflow.file),
        allowed_actions=allowed,
        open_review=QCReviewRecord.from_review(review) if review else None,
        ledger_consistent=workflow.ledger_consistent,
        history=[TransitionRecord.from_transition(t) for t in workflow.history],
    )


@router.get("/{file_id}/download-url", response_model=DownloadUrlResponse)
async def file_download_url(
    file_id: UUID,
    principal: Viewer,
    db: Db,
    storage: Annotated[ObjectStoragePort, Depends(get_storage)],
):
    url = await broker.issue_download_url(db, storage, principal.tenant_id, file_id)
    return DownloadUrlResponse(
        download_url=url,
        expires_in=get_settings().DOWNLOAD_URL_EXPIRY_SECONDS,
    )


@router.post("/{file_id}/project", response_model=FileRecord)
def attach_file_to_project(
    file_id: UUID,
    body: AttachProjectRequest,
    principal: Annotated[Principal, Depends(require_role(UserRole.CONTRIBUTOR))],
    db: Db,
):
    """File a confirmed file into one of the tenant's projects."""
    file = broker.attach_to_project(
        db,
        tenant_id=principal.tenant_id,
        file_id=file_id,
        project_id=body.project_id,
        actor_id=principal.user_id,
    )
    return FileRecord.from_file(file)
