"""Transition ledger.

Every stage movement of a file is one StageTransition row. Rows are only ever
inserted; the file's current_stage column is a denormalised copy of the last
row's to_stage and verify() checks the two agree.

Order within a file is (created_at, id): the autoincrementing id breaks ties
between transitions recorded within the same clock tick.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID

from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

from ..database import is_lock_contention
from ..domain.workflow.actions import WorkflowAction
from ..errors import LedgerIntegrityError, PersistenceUnavailable
from ..models.file import File
from ..models.stage_transition import StageTransition

logger = logging.getLogger(__name__)


class TransitionLedger:
    """Read and append access to the stage_transition table.

    The ledger never commits; it writes inside the caller's transaction so a
    transition and the file update it describes land together or not at all.
    """

    def __init__(self, db: Session):
        self.db = db

    def append(
        self,
        tenant_id: UUID,
        file_id: UUID,
        from_stage: Optional[str],
        to_stage: str,
        action: WorkflowAction,
        actor_id: Optional[UUID] = None,
        comment: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> StageTransition:
        """Record one transition and flush it to obtain its sequence id.

        Raises:
            PersistenceUnavailable: If the row cannot be written
        """
        transition = StageTransition(
            tenant_id=tenant_id,
            file_id=file_id,
            from_stage=from_stage,
            to_stage=to_stage,
            action=action.value if isinstance(action, WorkflowAction) else action,
            actor_id=actor_id,
            comment=comment,
            created_at=created_at or datetime.now(timezone.utc),
        )
        self.db.add(transition)
        try:
            self.db.flush()
        except DBAPIError as e:
            if is_lock_contention(e):
                # Caller maps contention to Busy
                raise
            logger.error(f"Failed to append transition for file {file_id}: {e}")
            raise PersistenceUnavailable("Failed to record workflow transition")

        return transition

    def list_for_file(self, tenant_id: UUID, file_id: UUID) -> List[StageTransition]:
        """All transitions of a file, oldest first."""
        return (
            self.db.query(StageTransition)
            .filter(
                StageTransition.tenant_id == tenant_id,
                StageTransition.file_id == file_id,
            )
            .order_by(StageTransition.created_at.asc(), StageTransition.id.asc())
            .all()
        )

    def last_for_file(self, tenant_id: UUID, file_id: UUID) -> Optional[StageTransition]:
        return (
            self.db.query(StageTransition)
            .filter(
                StageTransition.tenant_id == tenant_id,
                StageTransition.file_id == file_id,
            )
            .order_by(StageTransition.created_at.desc(), StageTransition.id.desc())
            .first()
        )

    def current_stage(self, tenant_id: UUID, file_id: UUID) -> Optional[str]:
        """Stage reconstructed from the ledger (None if nothing was recorded)."""
        last = self.last_for_file(tenant_id, file_id)
        return last.to_stage if last else None

    def verify(self, file: File) -> None:
        """Check the file row agrees with its ledger.

        Raises:
            LedgerIntegrityError: If the denormalised stage and the ledger differ
        """
        ledger_stage = self.current_stage(file.tenant_id, file.id)
        if ledger_stage != file.current_stage:
            logger.error(
                f"Ledger mismatch for file {file.id}: "
                f"file.current_stage={file.current_stage}, ledger={ledger_stage}"
            )
            raise LedgerIntegrityError(
                "File stage does not match its transition ledger",
                details={
                    "file_id": str(file.id),
                    "file_stage": file.current_stage,
                    "ledger_stage": ledger_stage,
                },
            )
