"""Workflow stage administration endpoints"""

from typing import Annotated, List
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from ..auth.dependencies import Principal, get_current_principal, require_role
from ..auth.roles import UserRole
from ..database import get_db
from ..schemas.common import error_responses
from . import stages
from .schemas import StageCreateRequest, StageRecord, StageUpdateRequest

router = APIRouter(
    prefix="/workflow-stages",
    tags=["Workflow Stages"],
    responses=error_responses(404, 409),
)

Db = Annotated[Session, Depends(get_db)]
Admin = Annotated[Principal, Depends(require_role(UserRole.ADMIN))]


def _record(stage) -> StageRecord:
    return StageRecord(
        id=stage.id,
        name=stage.name,
        display_name=stage.display_name,
        order_index=stage.order_index,
        is_active=stage.is_active,
    )


@router.get("", response_model=List[StageRecord])
def list_workflow_stages(
    principal: Annotated[Principal, Depends(get_current_principal)],
    db: Db,
    include_inactive: bool = Query(True, alias="includeInactive"),
):
    """The tenant's stages in review order."""
    return [
        _record(s)
        for s in stages.list_stages(db, principal.tenant_id, include_inactive=include_inactive)
    ]


@router.post("", response_model=StageRecord, status_code=status.HTTP_201_CREATED)
def create_workflow_stage(body: StageCreateRequest, principal: Admin, db: Db):
    stage = stages.create_stage(
        db,
        tenant_id=principal.tenant_id,
        name=body.name,
        display_name=body.display_name,
        order_index=body.order_index,
        is_active=body.is_active,
        actor_id=principal.user_id,
    )
    return _record(stage)


@router.patch("/{stage_id}", response_model=StageRecord)
def update_workflow_stage(stage_id: UUID, body: StageUpdateRequest, principal: Admin, db: Db):
    """Change display name or order, or (de)activate a stage.

    Deactivating a stage that still holds files, or the last active stage,
    is rejected with 409 InvalidStageConfiguration.
    """
    stage = stages.update_stage(
        db,
        tenant_id=principal.tenant_id,
        stage_id=stage_id,
        display_name=body.display_name,
        order_index=body.order_index,
        is_active=body.is_active,
        actor_id=principal.user_id,
    )
    return _record(stage)
