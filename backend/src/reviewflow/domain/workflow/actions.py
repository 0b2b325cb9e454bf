"""Closed vocabularies of the review workflow."""

from enum import Enum


class WorkflowAction(str, Enum):
    """Actions a reviewer (or the system) can apply to a file.

    ARCHIVE is administrative only; everything else is a reviewer action.
    """
    ASSIGN = "ASSIGN"
    APPROVE = "APPROVE"
    FAIL = "FAIL"
    REVISE = "REVISE"
    REOPEN = "REOPEN"
    ARCHIVE = "ARCHIVE"


class SystemStage(str, Enum):
    """Stages owned by the engine rather than configured per tenant."""
    UPLOADED = "UPLOADED"
    COMPLETED = "COMPLETED"
    ARCHIVED = "ARCHIVED"


SYSTEM_STAGE_NAMES = frozenset(stage.value for stage in SystemStage)

TERMINAL_STAGES = frozenset({SystemStage.COMPLETED.value, SystemStage.ARCHIVED.value})

# Actions that count as a rejection cycle
REVISION_ACTIONS = frozenset({WorkflowAction.FAIL, WorkflowAction.REVISE})

ADMIN_ACTIONS = frozenset({WorkflowAction.ARCHIVE})


class QCReviewStatus(str, Enum):
    """Lifecycle of a reviewer decision record"""
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
