"""QC review record endpoints"""

from typing import Annotated, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth.dependencies import Principal, get_current_principal
from ..database import get_db
from ..domain.workflow.actions import QCReviewStatus
from ..schemas.common import error_responses
from . import queries
from .schemas import QCReviewListResponse, QCReviewRecord

router = APIRouter(prefix="/qc-reviews", tags=["QC Reviews"], responses=error_responses(503))

Db = Annotated[Session, Depends(get_db)]


@router.get("", response_model=QCReviewListResponse)
def list_qc_reviews(
    principal: Annotated[Principal, Depends(get_current_principal)],
    db: Db,
    file_id: Optional[UUID] = Query(None, alias="fileId"),
    review_status: Optional[QCReviewStatus] = Query(None, alias="status"),
    stage: Optional[str] = Query(None),
    project_id: Optional[UUID] = Query(None, alias="projectId"),
    reviewer_id: Optional[UUID] = Query(None, alias="reviewerId"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    """List reviewer decision records, newest first."""
    items, total = queries.list_qc_reviews(
        db,
        principal.tenant_id,
        file_id=file_id,
        status=review_status.value if review_status else None,
        stage=stage,
        project_id=project_id,
        reviewer_id=reviewer_id,
        limit=limit,
        offset=offset,
    )
    return QCReviewListResponse(
        items=[QCReviewRecord.from_review(r) for r in items],
        total=total,
        limit=limit,
        offset=offset,
    )
