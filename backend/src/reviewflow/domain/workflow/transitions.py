"""Review workflow transition table.

State flow (stage names between UPLOADED and COMPLETED are tenant-configured):

    UPLOADED → QC → R1 → R2 → R3 → R4 → COMPLETED
    any stage → ARCHIVED (administrative)

| Current stage        | Action  | Next stage                           | revision_count |
|----------------------|---------|--------------------------------------|----------------|
| UPLOADED             | ASSIGN  | first active stage                   | unchanged      |
| review stage         | APPROVE | next active stage, COMPLETED if last | unchanged      |
| review stage         | FAIL    | same stage (new review opened)       | +1             |
| review stage (not 1) | REVISE  | previous active stage                | +1             |
| any stage            | REOPEN  | first active stage                   | unchanged      |
| any but ARCHIVED     | ARCHIVE | ARCHIVED                             | unchanged      |

Everything here is pure: callers supply the tenant's active stage names in
order and get back a StageMove or an InvalidTransition.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence

from ...errors import InvalidTransition
from .actions import REVISION_ACTIONS, SystemStage, WorkflowAction


@dataclass(frozen=True)
class StageMove:
    """Result of resolving an action against a stage ordering."""
    from_stage: str
    to_stage: str
    action: WorkflowAction
    revision_increment: int = 0


class StageSequence:
    """Ordered, tenant-scoped list of active review stage names."""

    def __init__(self, names: Sequence[str]):
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate stage names in sequence: {list(names)}")
        self._names: List[str] = list(names)

    def __iter__(self):
        return iter(self._names)

    def __len__(self) -> int:
        return len(self._names)

    def __contains__(self, name: object) -> bool:
        return name in self._names

    @property
    def names(self) -> List[str]:
        return list(self._names)

    def first(self) -> str:
        if not self._names:
            raise InvalidTransition(
                "No active workflow stages are configured for this tenant"
            )
        return self._names[0]

    def next_after(self, name: str) -> str:
        index = self._names.index(name)
        if index + 1 < len(self._names):
            return self._names[index + 1]
        return SystemStage.COMPLETED.value

    def previous_before(self, name: str) -> Optional[str]:
        index = self._names.index(name)
        return self._names[index - 1] if index > 0 else None

    def is_review_stage(self, name: Optional[str]) -> bool:
        return name in self._names


def _illegal(current_stage: str, action: WorkflowAction) -> InvalidTransition:
    return InvalidTransition(
        f"Action {action.value} is not allowed from stage {current_stage}",
        details={"current_stage": current_stage, "action": action.value},
    )


def resolve_move(
    current_stage: str,
    action: WorkflowAction,
    stages: StageSequence,
) -> StageMove:
    """Compute the stage a file moves to when `action` is applied.

    Raises:
        InvalidTransition: If the (stage, action) pair is not in the table

    Example:
        >>> resolve_move("QC", WorkflowAction.APPROVE, StageSequence(["QC", "R1"])).to_stage
        'R1'
        >>> resolve_move("R1", WorkflowAction.APPROVE, StageSequence(["QC", "R1"])).to_stage
        'COMPLETED'
    """
    increment = 1 if action in REVISION_ACTIONS else 0

    if action == WorkflowAction.REOPEN:
        return StageMove(current_stage, stages.first(), action)

    if action == WorkflowAction.ARCHIVE:
        if current_stage == SystemStage.ARCHIVED.value:
            raise _illegal(current_stage, action)
        return StageMove(current_stage, SystemStage.ARCHIVED.value, action)

    if current_stage == SystemStage.UPLOADED.value:
        if action == WorkflowAction.ASSIGN:
            return StageMove(current_stage, stages.first(), action)
        raise _illegal(current_stage, action)

    if not stages.is_review_stage(current_stage):
        # COMPLETED, ARCHIVED, or a stage no longer in the active list
        raise _illegal(current_stage, action)

    if action == WorkflowAction.APPROVE:
        return StageMove(current_stage, stages.next_after(current_stage), action)

    if action == WorkflowAction.FAIL:
        return StageMove(current_stage, current_stage, action, increment)

    if action == WorkflowAction.REVISE:
        previous = stages.previous_before(current_stage)
        if previous is None:
            raise _illegal(current_stage, action)
        return StageMove(current_stage, previous, action, increment)

    raise _illegal(current_stage, action)


def allowed_actions(current_stage: str, stages: StageSequence) -> List[WorkflowAction]:
    """List the actions that resolve_move would accept for `current_stage`."""
    allowed = []
    for action in WorkflowAction:
        try:
            resolve_move(current_stage, action, stages)
        except InvalidTransition:
            continue
        allowed.append(action)
    return allowed
