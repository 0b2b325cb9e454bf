"""File SQLAlchemy model

A File is one unit of reviewable content. It is created PENDING when a write
grant is issued, promoted to stage UPLOADED once the object is seen in storage,
and from then on moved only by the workflow engine.
"""

from uuid import uuid4

from sqlalchemy import BigInteger, Column, ForeignKey, Index, Integer, Text, func
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import relationship

from ..domain.files.upload_status import UploadStatus
from .base import Base


class File(Base):
    """File model.

    current_stage is a denormalised copy of the last ledger entry's to_stage
    and is NULL while the upload is pending. version backs the optimistic
    concurrency check on every workflow update.
    """
    __tablename__ = "file"
    __table_args__ = (
        Index("ix_file_tenant_id", "tenant_id"),
        Index("ix_file_tenant_stage", "tenant_id", "current_stage"),
        Index("ix_file_tenant_upload_status_created", "tenant_id", "upload_status", "created_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenant.id", ondelete="RESTRICT"), nullable=False)
    project_id = Column(UUID(as_uuid=True), ForeignKey("project.id", ondelete="SET NULL"), nullable=True)
    original_name = Column(Text, nullable=False)
    mime_type = Column(Text, nullable=False)
    size_bytes = Column(BigInteger, nullable=False)
    storage_key = Column(Text, nullable=False, unique=True)
    upload_status = Column(Text, nullable=False, default=UploadStatus.PENDING.value)
    current_stage = Column(Text, nullable=True)
    revision_count = Column(Integer, nullable=False, default=0)
    assigned_to = Column(UUID(as_uuid=True), nullable=True)
    uploaded_by = Column(UUID(as_uuid=True), nullable=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
    confirmed_at = Column(TIMESTAMP(timezone=True), nullable=True)

    __mapper_args__ = {"version_id_col": version}

    project = relationship("Project", back_populates="files")

    @property
    def is_pending(self) -> bool:
        return self.upload_status == UploadStatus.PENDING.value

    def to_dict(self):
        """Convert file to dictionary representation"""
        return {
            "id": str(self.id),
            "tenant_id": str(self.tenant_id),
            "project_id": str(self.project_id) if self.project_id else None,
            "original_name": self.original_name,
            "mime_type": self.mime_type,
            "size_bytes": self.size_bytes,
            "storage_key": self.storage_key,
            "upload_status": self.upload_status,
            "current_stage": self.current_stage,
            "revision_count": self.revision_count,
            "assigned_to": str(self.assigned_to) if self.assigned_to else None,
            "uploaded_by": str(self.uploaded_by) if self.uploaded_by else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "confirmed_at": self.confirmed_at.isoformat() if self.confirmed_at else None,
        }

    def __repr__(self):
        return f"<File(id={self.id}, stage={self.current_stage}, status={self.upload_status})>"
