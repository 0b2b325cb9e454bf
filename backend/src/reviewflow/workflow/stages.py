"""Per-tenant review stage configuration.

A tenant's review pipeline is its active WorkflowStage rows ordered by
order_index. UPLOADED, COMPLETED and ARCHIVED are system stages owned by the
engine and can never be configured.
"""

import logging
import re
from typing import List, Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Query, Session

from ..audit.service import log_audit_event
from ..domain.files.upload_status import UploadStatus
from ..domain.workflow.actions import SYSTEM_STAGE_NAMES
from ..domain.workflow.transitions import StageSequence
from ..errors import InvalidStageConfiguration, NotFound
from ..models.file import File
from ..models.workflow_stage import WorkflowStage

logger = logging.getLogger(__name__)

# (name, display_name, order_index)
DEFAULT_STAGES = [
    ("QC", "Quality Control", 1),
    ("R1", "Revision 1", 2),
    ("R2", "Revision 2", 3),
    ("R3", "Revision 3", 4),
    ("R4", "Revision 4", 5),
]

STAGE_NAME_PATTERN = re.compile(r"^[A-Z][A-Z0-9_]{0,31}$")


def provision_default_stages(
    db: Session,
    tenant_id: UUID,
    actor_id: Optional[UUID] = None,
) -> List[WorkflowStage]:
    """Install QC, R1..R4 for a tenant that has no stages yet.

    Idempotent: a tenant that already has stages keeps them. Flushes only;
    the caller owns the transaction.
    """
    existing = list_stages(db, tenant_id)
    if existing:
        return existing

    stages = [
        WorkflowStage(
            tenant_id=tenant_id,
            name=name,
            display_name=display_name,
            order_index=order_index,
            is_active=True,
        )
        for name, display_name, order_index in DEFAULT_STAGES
    ]
    db.add_all(stages)
    db.flush()

    log_audit_event(
        db=db,
        tenant_id=tenant_id,
        action="STAGES_PROVISIONED",
        actor_id=actor_id,
        entity_type="workflow_stage",
        metadata={"stages": [name for name, _, _ in DEFAULT_STAGES]},
    )
    logger.info(f"Provisioned default workflow stages for tenant {tenant_id}")
    return stages


def list_stages(db: Session, tenant_id: UUID, include_inactive: bool = True) -> List[WorkflowStage]:
    query = db.query(WorkflowStage).filter(WorkflowStage.tenant_id == tenant_id)
    if not include_inactive:
        query = query.filter(WorkflowStage.is_active.is_(True))
    return query.order_by(WorkflowStage.order_index.asc()).all()


def active_stages_query(db: Session, tenant_id: UUID, lock: bool = False) -> Query:
    """Active stages of a tenant in review order.

    With lock=True the rows are read FOR SHARE: a transition holds them until
    it commits, so update_stage (which takes the stage row FOR UPDATE) cannot
    deactivate a stage while a file is being moved into it.
    """
    query = (
        db.query(WorkflowStage)
        .filter(WorkflowStage.tenant_id == tenant_id, WorkflowStage.is_active.is_(True))
        .order_by(WorkflowStage.order_index.asc())
    )
    if lock:
        query = query.with_for_update(read=True)
    return query


def get_active_stages(db: Session, tenant_id: UUID, lock: bool = False) -> List[WorkflowStage]:
    """Active stages in review order.

    Raises:
        InvalidStageConfiguration: If the tenant has no active stage
    """
    stages = active_stages_query(db, tenant_id, lock=lock).all()
    if not stages:
        raise InvalidStageConfiguration(
            "Tenant has no active workflow stages; configure at least one before review"
        )
    return stages


def load_stage_sequence(db: Session, tenant_id: UUID, lock: bool = False) -> StageSequence:
    return StageSequence([stage.name for stage in get_active_stages(db, tenant_id, lock=lock)])


def create_stage(
    db: Session,
    tenant_id: UUID,
    name: str,
    display_name: str,
    order_index: int,
    is_active: bool = True,
    actor_id: Optional[UUID] = None,
) -> WorkflowStage:
    """Add a review stage to a tenant's pipeline.

    Raises:
        InvalidStageConfiguration: Reserved or malformed name, duplicate name,
            or an order_index already used by another stage
    """
    name = (name or "").strip().upper()
    if not STAGE_NAME_PATTERN.match(name):
        raise InvalidStageConfiguration(
            f"Invalid stage name {name!r}: use 1-32 upper-case letters, digits or underscores"
        )
    if name in SYSTEM_STAGE_NAMES:
        raise InvalidStageConfiguration(f"Stage name {name} is reserved by the system")
    if order_index < 0:
        raise InvalidStageConfiguration("order_index must not be negative")

    existing = list_stages(db, tenant_id)
    if any(stage.name == name for stage in existing):
        raise InvalidStageConfiguration(f"Stage {name} already exists")
    if any(stage.order_index == order_index for stage in existing):
        raise InvalidStageConfiguration(f"order_index {order_index} is already used")

    stage = WorkflowStage(
        tenant_id=tenant_id,
        name=name,
        display_name=(display_name or name).strip(),
        order_index=order_index,
        is_active=is_active,
    )
    db.add(stage)
    try:
        db.flush()
    except IntegrityError:
        # Lost a race with a concurrent create
        db.rollback()
        raise InvalidStageConfiguration(f"Stage {name} or order_index {order_index} already exists")

    log_audit_event(
        db=db,
        tenant_id=tenant_id,
        action="STAGE_CREATED",
        actor_id=actor_id,
        entity_type="workflow_stage",
        entity_id=stage.id,
        metadata={"name": name, "order_index": order_index, "is_active": is_active},
    )
    db.commit()
    db.refresh(stage)
    logger.info(f"Created workflow stage {name} (order {order_index}) for tenant {tenant_id}")
    return stage


def count_files_in_stage(db: Session, tenant_id: UUID, stage_name: str) -> int:
    return (
        db.query(File)
        .filter(
            File.tenant_id == tenant_id,
            File.current_stage == stage_name,
            File.upload_status == UploadStatus.CONFIRMED.value,
        )
        .count()
    )


def update_stage(
    db: Session,
    tenant_id: UUID,
    stage_id: UUID,
    display_name: Optional[str] = None,
    order_index: Optional[int] = None,
    is_active: Optional[bool] = None,
    actor_id: Optional[UUID] = None,
) -> WorkflowStage:
    """Rename (display name only), reorder, activate or deactivate a stage.

    The stage name is immutable: ledger rows refer to it.

    Raises:
        NotFound: Unknown stage or stage of another tenant
        InvalidStageConfiguration: Deactivating an occupied stage or the last
            active stage, or reordering onto a used order_index
    """
    stage = (
        db.query(WorkflowStage)
        .filter(WorkflowStage.id == stage_id, WorkflowStage.tenant_id == tenant_id)
        .with_for_update()
        .first()
    )
    if not stage:
        raise NotFound("WorkflowStage not found")

    before = {
        "display_name": stage.display_name,
        "order_index": stage.order_index,
        "is_active": stage.is_active,
    }

    if order_index is not None and order_index != stage.order_index:
        if order_index < 0:
            raise InvalidStageConfiguration("order_index must not be negative")
        clash = (
            db.query(WorkflowStage)
            .filter(
                WorkflowStage.tenant_id == tenant_id,
                WorkflowStage.order_index == order_index,
                WorkflowStage.id != stage.id,
            )
            .first()
        )
        if clash:
            raise InvalidStageConfiguration(
                f"order_index {order_index} is already used by stage {clash.name}"
            )

    if display_name is not None and not display_name.strip():
        raise InvalidStageConfiguration("display_name must not be empty")

    if is_active is False and stage.is_active:
        occupied = count_files_in_stage(db, tenant_id, stage.name)
        if occupied:
            raise InvalidStageConfiguration(
                f"Cannot deactivate stage {stage.name}: {occupied} file(s) are in it",
                details={"stage": stage.name, "files": occupied},
            )
        other_active = [
            s for s in list_stages(db, tenant_id, include_inactive=False) if s.id != stage.id
        ]
        if not other_active:
            raise InvalidStageConfiguration("At least one workflow stage must remain active")

    # All checks passed; nothing is mutated before this point
    if order_index is not None:
        stage.order_index = order_index
    if is_active is not None:
        stage.is_active = is_active
    if display_name is not None:
        stage.display_name = display_name.strip()

    db.flush()
    log_audit_event(
        db=db,
        tenant_id=tenant_id,
        action="STAGE_UPDATED",
        actor_id=actor_id,
        entity_type="workflow_stage",
        entity_id=stage.id,
        metadata={
            "name": stage.name,
            "before": before,
            "after": {
                "display_name": stage.display_name,
                "order_index": stage.order_index,
                "is_active": stage.is_active,
            },
        },
    )
    db.commit()
    db.refresh(stage)
    logger.info(f"Updated workflow stage {stage.name} for tenant {tenant_id}")
    return stage
