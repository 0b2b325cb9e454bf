"""Workflow engine: applies reviewer actions to files.

One call to apply_action is one database transaction:

1. Load the file scoped to the tenant and lock its row
   (SELECT ... FOR UPDATE with a bounded lock_timeout on PostgreSQL)
2. Check that the locked row is still the version the caller acted on:
   expected_version when given, otherwise the version read just before the
   lock was requested. A transition that committed while this one waited for
   the lock makes the action stale
3. Resolve the action against the tenant's active stages, read FOR SHARE so
   none of them can be deactivated before the commit
4. Update the file (stage, revision count, assignee); the version column
   turns a lost update into a conflict
5. Append the ledger row
6. Close the open QCReview of the stage being left, open one for the stage
   being entered
7. Commit

Lock timeouts, deadlocks and version conflicts surface as Busy; the caller may
retry. Illegal actions surface as InvalidTransition and leave nothing behind.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Union
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import get_settings
from ..database import is_lock_contention, is_postgresql
from ..audit.service import log_audit_event
from ..domain.workflow.actions import TERMINAL_STAGES, QCReviewStatus, WorkflowAction
from ..domain.workflow.transitions import StageSequence, resolve_move
from ..errors import Busy, InvalidTransition, NotFound, PersistenceUnavailable, ReviewFlowError
from ..ledger.ledger import TransitionLedger
from ..models.file import File
from ..models.qc_review import QCReview
from ..models.stage_transition import StageTransition
from ..observability.metrics import (
    workflow_busy_total,
    workflow_transition_duration_seconds,
    workflow_transitions_total,
)
from .stages import load_stage_sequence

logger = logging.getLogger(__name__)


@dataclass
class TransitionResult:
    """Outcome of a successful apply_action call."""
    file: File
    previous_stage: str
    new_stage: str
    transition: StageTransition


def parse_action(action: Union[str, WorkflowAction]) -> WorkflowAction:
    """Coerce a caller-supplied action name.

    Raises:
        InvalidTransition: If the name is not a known action
    """
    if isinstance(action, WorkflowAction):
        return action
    try:
        return WorkflowAction(str(action).upper())
    except ValueError:
        raise InvalidTransition(
            f"Unknown workflow action: {action}",
            details={"allowed": [a.value for a in WorkflowAction]},
        )


def read_version(db: Session, tenant_id: UUID, file_id: UUID) -> Optional[int]:
    """Committed version of a file, read without locking."""
    return (
        db.query(File.version)
        .filter(File.id == file_id, File.tenant_id == tenant_id)
        .scalar()
    )


def lock_file(db: Session, tenant_id: UUID, file_id: UUID, lock_timeout_ms: int) -> File:
    """Load a confirmed file of the tenant and lock its row.

    Pending files are reported as NotFound: they are not in the workflow yet.
    """
    if is_postgresql(db):
        # SET LOCAL does not take bind parameters
        db.execute(text(f"SET LOCAL lock_timeout = {int(lock_timeout_ms)}"))

    file = (
        db.query(File)
        .filter(File.id == file_id, File.tenant_id == tenant_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if not file or file.is_pending:
        raise NotFound("File not found")
    return file


def _check_version(file: File, expected_version: Optional[int]) -> None:
    if expected_version is not None and file.version != expected_version:
        raise InvalidTransition(
            f"File changed since version {expected_version} (now {file.version}); reload and retry",
            details={
                "current_stage": file.current_stage,
                "expected_version": expected_version,
                "current_version": file.version,
            },
        )


def _lock_for_update(
    db: Session,
    tenant_id: UUID,
    file_id: UUID,
    expected_version: Optional[int],
    lock_timeout_ms: int,
) -> File:
    # Without an explicit precondition the caller acted on what is committed
    # now; anything that commits while the lock is awaited makes it stale
    if expected_version is None:
        expected_version = read_version(db, tenant_id, file_id)
    file = lock_file(db, tenant_id, file_id, lock_timeout_ms)
    _check_version(file, expected_version)
    return file


def _open_review(
    db: Session,
    file: File,
    stage: str,
    now: datetime,
) -> Optional[QCReview]:
    existing = (
        db.query(QCReview)
        .filter(
            QCReview.file_id == file.id,
            QCReview.stage == stage,
            QCReview.status == QCReviewStatus.PENDING.value,
        )
        .first()
    )
    if existing:
        return existing

    review = QCReview(
        tenant_id=file.tenant_id,
        file_id=file.id,
        stage=stage,
        reviewer_id=file.assigned_to,
        status=QCReviewStatus.PENDING.value,
        created_at=now,
    )
    db.add(review)
    return review


def _close_review(
    db: Session,
    file: File,
    stage: str,
    action: WorkflowAction,
    actor_id: Optional[UUID],
    comment: Optional[str],
    now: datetime,
) -> Optional[QCReview]:
    review = (
        db.query(QCReview)
        .filter(
            QCReview.file_id == file.id,
            QCReview.stage == stage,
            QCReview.status == QCReviewStatus.PENDING.value,
        )
        .first()
    )
    if not review:
        return None

    review.status = QCReviewStatus.COMPLETED.value
    review.action = action.value
    review.comment = comment
    review.completed_at = now
    if actor_id is not None:
        review.reviewer_id = actor_id
    return review


def _apply(
    db: Session,
    tenant_id: UUID,
    file_id: UUID,
    actor_id: Optional[UUID],
    action: WorkflowAction,
    comment: Optional[str],
    expected_stage: Optional[str],
    expected_version: Optional[int],
    assign_to: Optional[UUID],
    lock_timeout_ms: int,
) -> TransitionResult:
    file = _lock_for_update(db, tenant_id, file_id, expected_version, lock_timeout_ms)
    current_stage = file.current_stage

    if expected_stage is not None and expected_stage != current_stage:
        raise InvalidTransition(
            f"File is in stage {current_stage}, not {expected_stage}",
            details={"current_stage": current_stage, "expected_stage": expected_stage},
        )

    if action == WorkflowAction.ARCHIVE:
        stages = StageSequence([])
    else:
        stages = load_stage_sequence(db, tenant_id, lock=True)

    move = resolve_move(current_stage, action, stages)
    now = datetime.now(timezone.utc)

    file.current_stage = move.to_stage
    file.revision_count = (file.revision_count or 0) + move.revision_increment
    if assign_to is not None:
        file.assigned_to = assign_to
    file.updated_at = now

    # Emits UPDATE ... WHERE version = :old; raises StaleDataError on conflict
    db.flush()

    transition = TransitionLedger(db).append(
        tenant_id=tenant_id,
        file_id=file.id,
        from_stage=current_stage,
        to_stage=move.to_stage,
        action=action,
        actor_id=actor_id,
        comment=comment,
        created_at=now,
    )

    # Closed before the next one is opened: FAIL re-enters the same stage
    _close_review(db, file, current_stage, action, actor_id, comment, now)
    db.flush()

    if stages.is_review_stage(move.to_stage):
        _open_review(db, file, move.to_stage, now)

    db.commit()
    return TransitionResult(
        file=file,
        previous_stage=current_stage,
        new_stage=move.to_stage,
        transition=transition,
    )


def apply_action(
    db: Session,
    tenant_id: UUID,
    file_id: UUID,
    actor_id: Optional[UUID],
    action: Union[str, WorkflowAction],
    comment: Optional[str] = None,
    expected_stage: Optional[str] = None,
    assign_to: Optional[UUID] = None,
    expected_version: Optional[int] = None,
) -> TransitionResult:
    """Apply a workflow action to a file.

    Args:
        db: Database session (committed on success, rolled back on failure)
        tenant_id: Tenant of the caller; files of other tenants are NotFound
        file_id: File to move
        actor_id: Principal performing the action (recorded in the ledger)
        action: Action name or WorkflowAction
        comment: Free-text reviewer comment
        expected_stage: Stage the caller believes the file is in; a mismatch
            is rejected so a stale screen never applies an action twice
        assign_to: New assignee (kept if None)
        expected_version: File.version the caller acted on. FAIL and REOPEN
            leave the stage unchanged, so only the version tells two visits
            of the same stage apart

    Returns:
        TransitionResult with the updated file and the new ledger row

    Raises:
        NotFound: Unknown, pending, or other-tenant file
        InvalidTransition: Action not legal from the current stage, or the
            file changed since the caller's view of it
        InvalidStageConfiguration: Tenant has no active stages
        Busy: Another transition holds the file; retry later
        PersistenceUnavailable: Database failure
    """
    action = parse_action(action)
    settings = get_settings()
    start = time.time()

    try:
        result = _apply(
            db,
            tenant_id,
            file_id,
            actor_id,
            action,
            comment,
            expected_stage,
            expected_version,
            assign_to,
            settings.WORKFLOW_LOCK_TIMEOUT_MS,
        )
    except ReviewFlowError as e:
        db.rollback()
        outcome = "invalid" if isinstance(e, InvalidTransition) else "error"
        workflow_transitions_total.labels(action=action.value, outcome=outcome).inc()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        if is_lock_contention(e):
            workflow_busy_total.inc()
            workflow_transitions_total.labels(action=action.value, outcome="busy").inc()
            logger.warning(
                f"Workflow action {action.value} on file {file_id} hit a concurrent transition",
                extra={"tenant_id": tenant_id, "file_id": file_id, "action": action.value},
            )
            raise Busy(
                "File is being updated by another request; retry shortly",
                details={"retry_after_seconds": settings.WORKFLOW_BUSY_RETRY_AFTER_SECONDS},
            )
        workflow_transitions_total.labels(action=action.value, outcome="error").inc()
        logger.error(f"Workflow action {action.value} on file {file_id} failed: {e}", exc_info=True)
        raise PersistenceUnavailable("Failed to apply workflow action")

    workflow_transitions_total.labels(action=action.value, outcome="success").inc()
    workflow_transition_duration_seconds.observe(time.time() - start)
    logger.info(
        f"File {file_id}: {result.previous_stage} -> {result.new_stage} ({action.value})",
        extra={
            "tenant_id": tenant_id,
            "file_id": file_id,
            "action": action.value,
            "from_stage": result.previous_stage,
            "to_stage": result.new_stage,
        },
    )
    return result


def _reassign(
    db: Session,
    tenant_id: UUID,
    file_id: UUID,
    actor_id: Optional[UUID],
    assignee_id: Optional[UUID],
    expected_version: Optional[int],
    lock_timeout_ms: int,
) -> File:
    file = _lock_for_update(db, tenant_id, file_id, expected_version, lock_timeout_ms)
    if file.current_stage in TERMINAL_STAGES:
        raise InvalidTransition(
            f"Cannot reassign a file in stage {file.current_stage}",
            details={"current_stage": file.current_stage},
        )

    previous = file.assigned_to
    file.assigned_to = assignee_id
    file.updated_at = datetime.now(timezone.utc)

    review = (
        db.query(QCReview)
        .filter(
            QCReview.file_id == file.id,
            QCReview.stage == file.current_stage,
            QCReview.status == QCReviewStatus.PENDING.value,
        )
        .first()
    )
    if review:
        review.reviewer_id = assignee_id
    db.flush()

    log_audit_event(
        db=db,
        tenant_id=tenant_id,
        action="FILE_REASSIGNED",
        actor_id=actor_id,
        entity_type="file",
        entity_id=file.id,
        metadata={
            "stage": file.current_stage,
            "from_assignee": str(previous) if previous else None,
            "to_assignee": str(assignee_id) if assignee_id else None,
        },
    )
    db.commit()
    db.refresh(file)
    return file


def reassign_file(
    db: Session,
    tenant_id: UUID,
    file_id: UUID,
    actor_id: Optional[UUID],
    assignee_id: Optional[UUID],
    expected_version: Optional[int] = None,
) -> File:
    """Hand a file to another reviewer without moving it.

    Updates File.assigned_to and the reviewer of the open QCReview of the
    current stage. The stage does not change, so nothing is written to the
    transition ledger; the change is audited instead.

    Raises:
        NotFound: Unknown, pending, or other-tenant file
        InvalidTransition: File is COMPLETED or ARCHIVED, or changed since
            expected_version
        Busy: Another transition holds the file; retry later
        PersistenceUnavailable: Database failure
    """
    settings = get_settings()
    try:
        file = _reassign(
            db,
            tenant_id,
            file_id,
            actor_id,
            assignee_id,
            expected_version,
            settings.WORKFLOW_LOCK_TIMEOUT_MS,
        )
    except ReviewFlowError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        if is_lock_contention(e):
            workflow_busy_total.inc()
            raise Busy(
                "File is being updated by another request; retry shortly",
                details={"retry_after_seconds": settings.WORKFLOW_BUSY_RETRY_AFTER_SECONDS},
            )
        logger.error(f"Reassigning file {file_id} failed: {e}", exc_info=True)
        raise PersistenceUnavailable("Failed to reassign file")

    logger.info(
        f"File {file_id} reassigned to {assignee_id}",
        extra={"tenant_id": tenant_id, "file_id": file_id, "stage": file.current_stage},
    )
    return file
