"""Project SQLAlchemy model"""

from uuid import uuid4

from sqlalchemy import Column, ForeignKey, Index, Text, func
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import relationship

from .base import Base


class Project(Base):
    """Tenant-owned grouping of files.

    Project management lives in the presentation layer; the core only needs
    projects to exist so that files can be filed into them without crossing
    the tenant boundary.
    """
    __tablename__ = "project"
    __table_args__ = (
        Index("ix_project_tenant_id", "tenant_id"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenant.id", ondelete="RESTRICT"), nullable=False)
    name = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())

    tenant = relationship("Tenant", back_populates="projects")
    files = relationship("File", back_populates="project")
