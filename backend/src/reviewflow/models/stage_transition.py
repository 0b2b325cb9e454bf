"""StageTransition SQLAlchemy model"""

from sqlalchemy import Column, ForeignKey, Index, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID

from .base import Base, PortableBigIntPK


class StageTransition(Base):
    """One immutable ledger fact: a file moved from one stage to another.

    Rows are append-only. The autoincrementing id is the tie-breaker that
    totally orders transitions sharing a timestamp.
    """
    __tablename__ = "stage_transition"
    __table_args__ = (
        Index("ix_stage_transition_file_order", "file_id", "created_at", "id"),
        Index("ix_stage_transition_tenant_id", "tenant_id"),
    )

    id = Column(PortableBigIntPK, primary_key=True, autoincrement=True)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenant.id", ondelete="RESTRICT"), nullable=False)
    file_id = Column(UUID(as_uuid=True), ForeignKey("file.id", ondelete="RESTRICT"), nullable=False)
    from_stage = Column(Text, nullable=True)  # NULL only for the ingestion transition
    to_stage = Column(Text, nullable=False)
    action = Column(Text, nullable=False)
    actor_id = Column(UUID(as_uuid=True), nullable=True)  # NULL for system transitions
    comment = Column(Text, nullable=True)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)


    def to_dict(self):
        """Convert transition to dictionary representation"""
        return {
            "id": self.id,
            "file_id": str(self.file_id),
            "from_stage": self.from_stage,
            "to_stage": self.to_stage,
            "action": self.action,
            "actor_id": str(self.actor_id) if self.actor_id else None,
            "comment": self.comment,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
