"""Workflow API request/response schemas"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import Field

from ..domain.workflow.actions import WorkflowAction
from ..models.qc_review import QCReview
from ..schemas.common import CamelModel, FileRecord, TransitionRecord


class TransitionRequest(CamelModel):
    """A reviewer action on one file"""
    action: WorkflowAction = Field(..., description="ASSIGN, APPROVE, FAIL, REVISE, REOPEN or ARCHIVE")
    comment: Optional[str] = Field(None, max_length=5000)
    expected_stage: Optional[str] = Field(
        None, description="Stage the caller believes the file is in; rejected if stale"
    )
    assign_to: Optional[UUID] = Field(None, description="New assignee")
    expected_version: Optional[int] = Field(
        None, description="File version the caller acted on; rejected if the file changed since"
    )

    class Config:
        json_schema_extra = {
            "example": {
                "action": "APPROVE",
                "comment": "Colours match the brief",
                "expectedStage": "QC",
                "expectedVersion": 3,
            }
        }


class TransitionResponse(CamelModel):
    new_stage: str
    revision_count: int
    transition: TransitionRecord


class HistoryResponse(CamelModel):
    file_id: UUID
    current_stage: Optional[str] = None
    transitions: List[TransitionRecord]


class QCReviewRecord(CamelModel):
    id: UUID
    file_id: UUID
    stage: str
    status: str
    action: Optional[str] = None
    reviewer_id: Optional[UUID] = None
    comment: Optional[str] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @classmethod
    def from_review(cls, review: QCReview) -> "QCReviewRecord":
        return cls(
            id=review.id,
            file_id=review.file_id,
            stage=review.stage,
            status=review.status,
            action=review.action,
            reviewer_id=review.reviewer_id,
            comment=review.comment,
            created_at=review.created_at,
            completed_at=review.completed_at,
        )


class QCReviewListResponse(CamelModel):
    items: List[QCReviewRecord]
    total: int
    limit: int
    offset: int


class ReassignRequest(CamelModel):
    """Hand a file to another reviewer; null clears the assignment"""
    assignee_id: Optional[UUID] = None
    expected_version: Optional[int] = None


class WorkflowStatusResponse(CamelModel):
    file_record: FileRecord
    allowed_actions: List[WorkflowAction]
    open_review: Optional[QCReviewRecord] = None
    ledger_consistent: bool
    history: List[TransitionRecord]


class FileListResponse(CamelModel):
    items: List[FileRecord]
    total: int
    limit: int
    offset: int


class DownloadUrlResponse(CamelModel):
    download_url: str
    expires_in: int


class AttachProjectRequest(CamelModel):
    project_id: UUID


class StageRecord(CamelModel):
    id: UUID
    name: str
    display_name: str
    order_index: int
    is_active: bool


class StageCreateRequest(CamelModel):
    name: str = Field(..., min_length=1, max_length=32)
    display_name: str = Field(..., min_length=1, max_length=200)
    order_index: int = Field(..., ge=0)
    is_active: bool = True


class StageUpdateRequest(CamelModel):
    display_name: Optional[str] = Field(None, min_length=1, max_length=200)
    order_index: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None
