"""SQLAlchemy Models for ReviewFlow"""

from .base import Base
from .tenant import Tenant
from .project import Project
from .file import File
from .workflow_stage import WorkflowStage
from .stage_transition import StageTransition
from .qc_review import QCReview
from .audit_log import AuditLog

__all__ = [
    "Base",
    "Tenant",
    "Project",
    "File",
    "WorkflowStage",
    "StageTransition",
    "QCReview",
    "AuditLog",
]
