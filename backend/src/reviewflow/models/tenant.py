"""Tenant model - Root entity for multi-tenant isolation"""

import re
from uuid import uuid4

from sqlalchemy import Column, Text, func
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import relationship, validates

from .base import Base, PortableJSONB


class Tenant(Base):
    """
    Tenant model - isolation boundary of the system.

    Every other table references tenant.id. No file, stage, transition or
    review is ever read or written outside its owning tenant.
    """
    __tablename__ = "tenant"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(Text, nullable=False)
    slug = Column(Text, nullable=False, unique=True)
    settings_json = Column(PortableJSONB, nullable=False, default=dict)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())

    projects = relationship("Project", back_populates="tenant")
    stages = relationship(
        "WorkflowStage",
        back_populates="tenant",
        order_by="WorkflowStage.order_index",
    )

    @validates("slug")
    def validate_slug(self, key, slug):
        if not re.fullmatch(r"[a-z0-9]+(?:-[a-z0-9]+)*", slug or ""):
            raise ValueError(f"Invalid tenant slug: {slug!r}")
        return slug

    def __repr__(self):
        return f"<Tenant(id={self.id}, slug='{self.slug}')>"
