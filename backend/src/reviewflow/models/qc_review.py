"""QCReview SQLAlchemy model"""

from uuid import uuid4

from sqlalchemy import Column, ForeignKey, Index, Text, func, text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID

from ..domain.workflow.actions import QCReviewStatus
from .base import Base


class QCReview(Base):
    """A reviewer decision record for one visit of a file to a stage.

    Opened PENDING when the file enters a review stage, closed COMPLETED by the
    action that moves it on. The partial unique index keeps at most one open
    review per (file, stage).
    """
    __tablename__ = "qc_review"
    __table_args__ = (
        Index("ix_qc_review_tenant_id", "tenant_id"),
        Index(
            "uq_qc_review_open_per_stage",
            "file_id",
            "stage",
            unique=True,
            postgresql_where=text("status = 'PENDING'"),
            sqlite_where=text("status = 'PENDING'"),
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenant.id", ondelete="RESTRICT"), nullable=False)
    file_id = Column(UUID(as_uuid=True), ForeignKey("file.id", ondelete="RESTRICT"), nullable=False)
    stage = Column(Text, nullable=False)
    action = Column(Text, nullable=True)  # Set when the review is closed
    reviewer_id = Column(UUID(as_uuid=True), nullable=True)
    status = Column(Text, nullable=False, default=QCReviewStatus.PENDING.value)
    comment = Column(Text, nullable=True)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())
    completed_at = Column(TIMESTAMP(timezone=True), nullable=True)

    def to_dict(self):
        """Convert review to dictionary representation"""
        return {
            "id": str(self.id),
            "file_id": str(self.file_id),
            "stage": self.stage,
            "action": self.action,
            "reviewer_id": str(self.reviewer_id) if self.reviewer_id else None,
            "status": self.status,
            "comment": self.comment,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
