"""Workflow domain module - actions, system stages, transition table"""

from .actions import (
    ADMIN_ACTIONS,
    QCReviewStatus,
    SYSTEM_STAGE_NAMES,
    SystemStage,
    TERMINAL_STAGES,
    WorkflowAction,
)
from .transitions import StageMove, StageSequence, allowed_actions, resolve_move

__all__ = [
    "ADMIN_ACTIONS",
    "QCReviewStatus",
    "SYSTEM_STAGE_NAMES",
    "SystemStage",
    "TERMINAL_STAGES",
    "WorkflowAction",
    "StageMove",
    "StageSequence",
    "allowed_actions",
    "resolve_move",
]
