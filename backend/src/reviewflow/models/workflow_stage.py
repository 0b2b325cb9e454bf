"""WorkflowStage SQLAlchemy model"""

from uuid import uuid4

from sqlalchemy import Boolean, Column, ForeignKey, Integer, Text, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import relationship

from .base import Base


class WorkflowStage(Base):
    """A named, ordered review step configured per tenant.

    order_index values are unique within a tenant (gaps allowed, ties not).
    """
    __tablename__ = "workflow_stage"
    __table_args__ = (
        UniqueConstraint("tenant_id", "name", name="uq_workflow_stage_tenant_name"),
        UniqueConstraint("tenant_id", "order_index", name="uq_workflow_stage_tenant_order"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenant.id", ondelete="RESTRICT"), nullable=False)
    name = Column(Text, nullable=False)
    display_name = Column(Text, nullable=False)
    order_index = Column(Integer, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())

    tenant = relationship("Tenant", back_populates="stages")

    def __repr__(self):
        return f"<WorkflowStage(name='{self.name}', order={self.order_index}, active={self.is_active})>"
